"""
Fit role model tables from a labelled corpus of tables of contents.

The corpus is UTF-8 text with one ``role<TAB>chapter title`` line per TOC
entry and a blank line between books. The result is the JSON document that
``RoleModel.from_json`` reads, so a fitted model can be handed to the
extractor with ``--role-model`` without touching the built-in tables.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from .roles import ROLES, Role, RoleModel, extract_features

__all__ = ["DEFAULT_ALPHA", "LabelledBook", "parse_corpus", "read_corpus", "train_role_model"]

logger = logging.getLogger(__name__)

DEFAULT_ALPHA = 0.1

LabelledBook = list[tuple[Role, str]]


def parse_corpus(text: str, name: str = "<corpus>") -> list[LabelledBook]:
    books: list[LabelledBook] = []
    current: LabelledBook = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            if current:
                books.append(current)
                current = []
            continue
        token, sep, title = line.partition("\t")
        if not sep:
            raise ValueError(f"{name}:{lineno}: expected 'role<TAB>title'")
        try:
            role = Role.from_token(token)
        except ValueError as exc:
            raise ValueError(f"{name}:{lineno}: {exc}") from None
        current.append((role, title.strip()))
    if current:
        books.append(current)
    return books


def read_corpus(path: Path) -> list[LabelledBook]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Failed to read corpus: {path}") from exc
    return parse_corpus(text, path.name)


def train_role_model(
    books: Sequence[Sequence[tuple[Role, str]]],
    *,
    states: Sequence[Role] = ROLES,
    alpha: float = DEFAULT_ALPHA,
) -> RoleModel:
    """Maximum-likelihood tables with additive smoothing ``alpha``."""
    if alpha <= 0:
        raise ValueError("alpha must be positive")
    if not books:
        raise ValueError("The corpus contains no books")
    position = {state: index for index, state in enumerate(states)}
    n = len(states)
    n_features = len(ROLES)

    init_counts = [0] * n
    trans_counts = [[0] * n for _ in range(n)]
    end_counts = [0] * n
    emit_counts = [[0] * n_features for _ in range(n)]

    for book in books:
        previous: int | None = None
        for role, title in book:
            if role not in position:
                raise ValueError(f"Role {role.token} is not one of the model states")
            state = position[role]
            if previous is None:
                init_counts[state] += 1
            else:
                trans_counts[previous][state] += 1
            for feature, fired in enumerate(extract_features(title)):
                if fired:
                    emit_counts[state][feature] += 1
            previous = state
        if previous is not None:
            end_counts[previous] += 1

    n_books = sum(init_counts)
    init = tuple((count + alpha) / (n_books + n * alpha) for count in init_counts)
    trans = []
    end = []
    for state in range(n):
        outgoing = sum(trans_counts[state]) + end_counts[state]
        denominator = outgoing + (n + 1) * alpha
        trans.append(tuple((count + alpha) / denominator for count in trans_counts[state]))
        end.append((end_counts[state] + alpha) / denominator)
    emit = []
    for state in range(n):
        fired = sum(emit_counts[state])
        denominator = fired + n_features * alpha
        emit.append(tuple((count + alpha) / denominator for count in emit_counts[state]))

    logger.info("Trained role model on %d books, %d chapters", n_books, sum(len(book) for book in books))
    return RoleModel(states=tuple(states), init=init, trans=tuple(trans), end=tuple(end), emit=tuple(emit))
