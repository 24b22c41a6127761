from __future__ import annotations

import math
from pathlib import Path

import pytest

from yomitori.roles import ROLES, Role, RoleModel, infer_roles
from yomitori.train import parse_corpus, read_corpus, train_role_model

CORPUS = """\
cover\t表紙
contents\t目次
main\t第一章 旅立ち
main\t第二章 再会
afterword\tあとがき
copyright\t奥付

contents\tCONTENTS
prologue\tプロローグ
main\t第一話
main\t第二話
epilogue\tエピローグ
copyright\t奥付
"""


def test_parse_corpus_splits_books_on_blank_lines():
    books = parse_corpus(CORPUS)

    assert len(books) == 2
    assert books[0][0] == (Role.COVER, "表紙")
    assert books[1][-1] == (Role.COPYRIGHT, "奥付")


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("main 第一章\n", "corpus.txt:1: expected 'role<TAB>title'"),
        ("main\t第一章\nappendix\t付録\n", "corpus.txt:2: Unknown role"),
    ],
)
def test_malformed_corpus(text, message):
    with pytest.raises(ValueError, match=message):
        parse_corpus(text, "corpus.txt")


def test_read_corpus(tmp_path: Path):
    path = tmp_path / "corpus.txt"
    path.write_text(CORPUS, encoding="utf-8")

    assert read_corpus(path) == parse_corpus(CORPUS)
    with pytest.raises(ValueError, match="Failed to read corpus"):
        read_corpus(tmp_path / "missing.txt")


def test_trained_tables_are_distributions():
    model = train_role_model(parse_corpus(CORPUS))

    assert model.states == ROLES
    assert math.isclose(math.fsum(model.init), 1.0, abs_tol=1e-9)
    for row, end in zip(model.trans, model.end):
        assert math.isclose(math.fsum(row) + end, 1.0, abs_tol=1e-9)
    for row in model.emit:
        assert math.isclose(math.fsum(row), 1.0, abs_tol=1e-9)
    assert model.init[Role.CONTENTS.index] > model.init[Role.MAIN.index]


def test_trained_model_survives_json_and_decodes():
    model = RoleModel.from_json(train_role_model(parse_corpus(CORPUS)).to_json())

    assert infer_roles(["目次", "第一章", "第二章", "あとがき", "奥付"], model) == [
        Role.CONTENTS,
        Role.MAIN,
        Role.MAIN,
        Role.AFTERWORD,
        Role.COPYRIGHT,
    ]


def test_reduced_state_training():
    books = [[(Role.MAIN, "第一章"), (Role.MAIN, "第二章"), (Role.AFTERWORD, "あとがき")]]

    model = train_role_model(books, states=(Role.MAIN, Role.AFTERWORD), alpha=0.5)

    assert model.states == (Role.MAIN, Role.AFTERWORD)
    assert len(model.emit[0]) == len(ROLES)
    # one transition main->main, one main->afterword, no end from main
    assert model.trans[0] == pytest.approx((1.5 / 3.5, 1.5 / 3.5))
    assert model.end[0] == pytest.approx(0.5 / 3.5)


@pytest.mark.parametrize(
    ("books", "kwargs", "message"),
    [
        ([], {}, "no books"),
        ([[(Role.MAIN, "第一章")]], {"alpha": 0}, "alpha must be positive"),
        ([[(Role.COVER, "表紙")]], {"states": (Role.MAIN,)}, "not one of the model states"),
    ],
)
def test_invalid_training_input(books, kwargs, message):
    with pytest.raises(ValueError, match=message):
        train_role_model(books, **kwargs)
