from __future__ import annotations

from typing import Sequence

__all__ = ["viterbi"]


def _normalise(column: list[float]) -> list[float]:
    total = sum(column)
    if total <= 0.0:
        return column
    return [value / total for value in column]


def _argmax(values: Sequence[float]) -> int:
    best = 0
    for index in range(1, len(values)):
        if values[index] > values[best]:
            best = index
    return best


def viterbi(
    init: Sequence[float],
    trans: Sequence[Sequence[float]],
    end: Sequence[float],
    emissions: Sequence[Sequence[float]],
) -> list[int]:
    """
    Most likely state path for a sequence of observations.

    ``emissions[t][s]`` is the likelihood of observation ``t`` in state ``s``.
    ``end[s]`` weighs the final column before the best last state is picked,
    so it is kept apart from ``trans``. Each column is rescaled to sum to one,
    which leaves every arg-max unchanged. Ties go to the lowest state index.
    """
    if not emissions:
        return []
    n_states = len(init)
    column = _normalise([init[s] * emissions[0][s] for s in range(n_states)])
    backpointers: list[list[int]] = []
    for likelihood in emissions[1:]:
        step: list[float] = []
        pointers: list[int] = []
        for s in range(n_states):
            best_r = 0
            best_p = column[0] * trans[0][s]
            for r in range(1, n_states):
                p = column[r] * trans[r][s]
                if p > best_p:
                    best_r, best_p = r, p
            step.append(best_p * likelihood[s])
            pointers.append(best_r)
        column = _normalise(step)
        backpointers.append(pointers)

    state = _argmax([column[s] * end[s] for s in range(n_states)])
    path = [state]
    for pointers in reversed(backpointers):
        state = pointers[state]
        path.append(state)
    path.reverse()
    return path
