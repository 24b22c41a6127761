from __future__ import annotations

from yomitori.markov import viterbi


def test_empty_observation_sequence():
    assert viterbi([0.5, 0.5], [[0.5, 0.4], [0.4, 0.5]], [0.1, 0.1], []) == []


def test_single_observation_uses_init_emission_and_end():
    # 0.6 * 0.5 * 0.1 < 0.4 * 0.5 * 0.9
    assert viterbi([0.6, 0.4], [[0.5, 0.4], [0.4, 0.5]], [0.1, 0.9], [[0.5, 0.5]]) == [1]


def test_emissions_drive_the_path():
    init = [0.5, 0.5]
    trans = [[0.7, 0.2], [0.2, 0.7]]
    end = [0.1, 0.1]
    emissions = [[0.9, 0.1], [0.9, 0.1], [0.1, 0.9], [0.1, 0.9]]

    assert viterbi(init, trans, end, emissions) == [0, 0, 1, 1]


def test_transitions_can_override_a_weak_emission():
    init = [1.0, 0.0]
    trans = [[0.9, 0.0], [0.0, 0.9]]
    end = [0.1, 0.1]
    emissions = [[0.5, 0.5], [0.4, 0.6], [0.5, 0.5]]

    assert viterbi(init, trans, end, emissions) == [0, 0, 0]


def test_ties_go_to_the_lowest_state():
    uniform = [1 / 3] * 3
    trans = [[0.3, 0.3, 0.3]] * 3

    assert viterbi(uniform, trans, [0.1] * 3, [[1.0, 1.0, 1.0]] * 4) == [0, 0, 0, 0]


def test_long_sequences_do_not_underflow():
    init = [0.5, 0.5]
    trans = [[0.5, 0.4], [0.4, 0.5]]
    end = [0.1, 0.1]
    emissions = [[1e-5, 2e-5]] * 500

    assert viterbi(init, trans, end, emissions) == [1] * 500
