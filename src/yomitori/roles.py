from __future__ import annotations

import enum
import json
import logging
import math
import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Collection, Iterable, Mapping, Sequence

from .errors import ClassificationError
from .markov import viterbi

__all__ = [
    "Role",
    "ROLES",
    "CYCLIC_ROLES",
    "DEFAULT_SKIP_ROLES",
    "RELIABLE_TITLES",
    "RoleModel",
    "DEFAULT_ROLE_MODEL",
    "fold_title",
    "extract_features",
    "reliable_role",
    "assumed_order",
    "infer_roles",
    "is_skip",
    "load_role_model",
]

logger = logging.getLogger(__name__)


class Role(enum.Enum):
    COVER = "cover"
    BEFORE_EXTRA = "before_extra"
    FOREWORD = "foreword"
    CONTENTS = "contents"
    PROLOGUE = "prologue"
    PART_TITLE = "part_title"
    MAIN = "main"
    INTERLUDE = "interlude"
    EPILOGUE = "epilogue"
    BONUS_CHAPTER = "bonus_chapter"
    AFTERWORD = "afterword"
    AFTER_EXTRA = "after_extra"
    COPYRIGHT = "copyright"

    @property
    def token(self) -> str:
        return self.value

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def index(self) -> int:
        return ROLES.index(self)

    @classmethod
    def from_token(cls, token: str) -> Role:
        try:
            return cls(token.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown role {token!r}") from None


ROLES: tuple[Role, ...] = tuple(Role)

_RANKS = {
    Role.COVER: 0,
    Role.BEFORE_EXTRA: 1,
    Role.FOREWORD: 1,
    Role.CONTENTS: 1,
    Role.PROLOGUE: 2,
    Role.PART_TITLE: 3,
    Role.MAIN: 4,
    Role.INTERLUDE: 5,
    Role.EPILOGUE: 6,
    Role.BONUS_CHAPTER: 7,
    Role.AFTERWORD: 8,
    Role.AFTER_EXTRA: 8,
    Role.COPYRIGHT: 9,
}

# Parts and interludes recur inside the body, so these may follow each other in any order.
CYCLIC_ROLES = frozenset({Role.PART_TITLE, Role.MAIN, Role.INTERLUDE})

DEFAULT_SKIP_ROLES = frozenset(
    {
        Role.COVER,
        Role.BEFORE_EXTRA,
        Role.FOREWORD,
        Role.CONTENTS,
        Role.PART_TITLE,
        Role.AFTERWORD,
        Role.AFTER_EXTRA,
        Role.COPYRIGHT,
    }
)

_KANJI_DIGITS = str.maketrans(
    {
        "零": "0",
        "〇": "0",
        "一": "1",
        "壱": "1",
        "二": "2",
        "弍": "2",
        "弐": "2",
        "三": "3",
        "参": "3",
        "四": "4",
        "五": "5",
        "伍": "5",
        "六": "6",
        "陸": "6",
        "七": "7",
        "漆": "7",
        "八": "8",
        "捌": "8",
        "九": "9",
        "玖": "9",
        "十": "0",
        "拾": "0",
        "什": "0",
    }
)

# Keywords are matched against fold_title() output, so they are written folded.
_KEYWORDS: dict[Role, tuple[str, ...]] = {
    Role.COVER: ("表紙", "表題紙", "カバー", "cover"),
    Role.BEFORE_EXTRA: ("登場人物", "紹介", "口絵"),
    Role.FOREWORD: ("まえがき", "前書き", "はじめに", "序文"),
    Role.CONTENTS: ("目次", "もくじ", "contents", "menu"),
    Role.PROLOGUE: ("プロローグ", "序", "prologue"),
    Role.PART_TITLE: (),
    Role.MAIN: ("章", "chapter"),
    Role.INTERLUDE: ("幕間", "間章", "閑話", "インターミッション", "interlude"),
    Role.EPILOGUE: ("エピローグ", "終章", "終幕", "epilogue"),
    Role.BONUS_CHAPTER: ("外伝", "番外編", "特別編", "書き下ろし", "短編", "おまけ"),
    Role.AFTERWORD: ("あとがき", "後書", "afterword"),
    Role.AFTER_EXTRA: ("付録", "特典", "解説"),
    Role.COPYRIGHT: ("奥付", "copyright"),
}
_PART_TITLE = re.compile(r"第\d+部|part\s*\d")
_DIGIT = re.compile(r"\d")

RELIABLE_TITLES: dict[str, Role] = {
    "表紙": Role.COVER,
    "目次": Role.CONTENTS,
    "もくじ": Role.CONTENTS,
    "contents": Role.CONTENTS,
    "プロローグ": Role.PROLOGUE,
    "prologue": Role.PROLOGUE,
    "エピローグ": Role.EPILOGUE,
    "epilogue": Role.EPILOGUE,
    "あとがき": Role.AFTERWORD,
    "後書き": Role.AFTERWORD,
    "後書": Role.AFTERWORD,
    "afterword": Role.AFTERWORD,
    "奥付": Role.COPYRIGHT,
}


def _fold_numeral(char: str) -> str:
    # Roman numerals and circled numbers would otherwise fold to letters or stay symbols.
    if unicodedata.category(char) in ("Nl", "No"):
        value = unicodedata.numeric(char, None)
        if value is not None and float(value).is_integer():
            return str(int(value))
    return char


def fold_title(title: str) -> str:
    """Normalise a chapter title for keyword matching."""
    folded = "".join(_fold_numeral(char) for char in title.translate(_KANJI_DIGITS))
    folded = unicodedata.normalize("NFKC", folded)
    return folded.replace("〜", "~").lower().strip()


def extract_features(title: str) -> tuple[bool, ...]:
    """One flag per role, in ``ROLES`` order, saying whether the title looks like that role."""
    folded = fold_title(title)
    features = []
    for role in ROLES:
        if role is Role.PART_TITLE:
            hit = _PART_TITLE.search(folded) is not None
        elif role is Role.MAIN:
            hit = _DIGIT.search(folded) is not None or any(word in folded for word in _KEYWORDS[role])
        else:
            hit = any(word in folded for word in _KEYWORDS[role])
        features.append(hit)
    return tuple(features)


def reliable_role(title: str) -> Role | None:
    return RELIABLE_TITLES.get(fold_title(title))


# Rows and columns follow ROLES order.
_DEFAULT_INIT = (0.25, 0.08, 0.04, 0.15, 0.12, 0.04, 0.25, 0.005, 0.005, 0.01, 0.01, 0.01, 0.03)

_DEFAULT_TRANS = (
    (0.01, 0.12, 0.05, 0.25, 0.15, 0.05, 0.35, 0.002, 0.002, 0.002, 0.004, 0.004, 0.005),  # cover
    (0.005, 0.4, 0.05, 0.2, 0.1, 0.03, 0.195, 0.002, 0.002, 0.002, 0.003, 0.003, 0.003),  # before_extra
    (0.002, 0.05, 0.3, 0.2, 0.15, 0.05, 0.22, 0.002, 0.002, 0.002, 0.005, 0.005, 0.007),  # foreword
    (0.002, 0.06, 0.06, 0.05, 0.25, 0.08, 0.45, 0.003, 0.005, 0.005, 0.01, 0.005, 0.01),  # contents
    (0.001, 0.005, 0.002, 0.01, 0.05, 0.08, 0.785, 0.01, 0.02, 0.005, 0.01, 0.005, 0.007),  # prologue
    (0.001, 0.01, 0.002, 0.005, 0.05, 0.02, 0.88, 0.005, 0.005, 0.005, 0.005, 0.005, 0.002),  # part_title
    (0.001, 0.001, 0.001, 0.001, 0.002, 0.03, 0.78, 0.03, 0.04, 0.02, 0.04, 0.01, 0.02),  # main
    (0.001, 0.001, 0.001, 0.001, 0.002, 0.05, 0.7, 0.05, 0.06, 0.03, 0.04, 0.01, 0.02),  # interlude
    (0.001, 0.001, 0.001, 0.001, 0.001, 0.002, 0.04, 0.01, 0.05, 0.2, 0.4, 0.08, 0.14),  # epilogue
    (0.001, 0.001, 0.001, 0.001, 0.002, 0.003, 0.02, 0.01, 0.02, 0.35, 0.35, 0.08, 0.09),  # bonus_chapter
    (0.001, 0.001, 0.001, 0.001, 0.001, 0.001, 0.005, 0.001, 0.002, 0.05, 0.1, 0.15, 0.45),  # afterword
    (0.001, 0.001, 0.001, 0.001, 0.001, 0.001, 0.005, 0.001, 0.002, 0.04, 0.2, 0.15, 0.4),  # after_extra
    (0.001, 0.001, 0.001, 0.001, 0.001, 0.001, 0.002, 0.001, 0.001, 0.005, 0.02, 0.03, 0.035),  # copyright
)

_DEFAULT_END = (0.001, 0.005, 0.005, 0.01, 0.01, 0.005, 0.024, 0.034, 0.073, 0.071, 0.236, 0.196, 0.9)

# _DEFAULT_EMIT[state][feature]
_DEFAULT_EMIT = (
    (0.88, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01),  # cover
    (0.01, 0.8, 0.04, 0.04, 0.01, 0.01, 0.03, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01),  # before_extra
    (0.01, 0.04, 0.8, 0.02, 0.06, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01, 0.005, 0.005),  # foreword
    (0.01, 0.02, 0.01, 0.88, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01, 0.01, 0.005, 0.005),  # contents
    (0.005, 0.005, 0.005, 0.005, 0.815, 0.01, 0.12, 0.01, 0.005, 0.005, 0.005, 0.005, 0.005),  # prologue
    (0.005, 0.005, 0.005, 0.005, 0.01, 0.6, 0.33, 0.01, 0.005, 0.01, 0.005, 0.005, 0.005),  # part_title
    (0.001, 0.002, 0.002, 0.005, 0.02, 0.005, 0.875, 0.02, 0.03, 0.02, 0.005, 0.01, 0.005),  # main
    (0.005, 0.005, 0.005, 0.005, 0.01, 0.01, 0.15, 0.75, 0.02, 0.02, 0.005, 0.01, 0.005),  # interlude
    (0.005, 0.005, 0.005, 0.005, 0.01, 0.005, 0.15, 0.02, 0.75, 0.02, 0.01, 0.01, 0.005),  # epilogue
    (0.005, 0.005, 0.005, 0.005, 0.01, 0.005, 0.12, 0.02, 0.02, 0.75, 0.02, 0.03, 0.005),  # bonus_chapter
    (0.005, 0.005, 0.01, 0.005, 0.005, 0.005, 0.02, 0.005, 0.02, 0.02, 0.85, 0.03, 0.02),  # afterword
    (0.005, 0.02, 0.005, 0.005, 0.005, 0.005, 0.05, 0.005, 0.01, 0.04, 0.03, 0.8, 0.02),  # after_extra
    (0.005, 0.005, 0.005, 0.005, 0.005, 0.005, 0.01, 0.005, 0.005, 0.005, 0.01, 0.02, 0.915),  # copyright
)

_TOLERANCE = 1e-6


def _float_row(value: Any, what: str, width: int) -> tuple[float, ...]:
    if not isinstance(value, (list, tuple)) or len(value) != width:
        raise ValueError(f"{what} must be a list of {width} numbers")
    row = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            raise ValueError(f"{what} must only contain numbers")
        if item < 0 or not math.isfinite(item):
            raise ValueError(f"{what} must only contain finite non-negative probabilities")
        row.append(float(item))
    return tuple(row)


def _check_unity(total: float, what: str) -> None:
    if abs(total - 1.0) > _TOLERANCE:
        raise ValueError(f"{what} sums to {total}, not 1")


@dataclass(frozen=True)
class RoleModel:
    """
    Hidden Markov model over a subset of roles.

    ``trans[r]`` plus ``end[r]`` sums to one for every state. ``emit[s][f]``
    is the weight of feature ``f`` (``ROLES`` order, always full width)
    firing in state ``s``; a title's emission is the product over the
    features that fire.
    """

    states: tuple[Role, ...]
    init: tuple[float, ...]
    trans: tuple[tuple[float, ...], ...]
    end: tuple[float, ...]
    emit: tuple[tuple[float, ...], ...]

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        n = len(self.states)
        if n == 0:
            raise ValueError("A role model needs at least one state")
        if len(set(self.states)) != n:
            raise ValueError("Role model states must be unique")
        if len(self.init) != n or len(self.end) != n or len(self.trans) != n or len(self.emit) != n:
            raise ValueError(f"Role model tables must have one row per state ({n})")
        _check_unity(math.fsum(self.init), "init")
        for state, row, end in zip(self.states, self.trans, self.end):
            if len(row) != n:
                raise ValueError(f"trans row {state.token} must have {n} entries")
            _check_unity(math.fsum(row) + end, f"trans row {state.token} plus end")
        for state, row in zip(self.states, self.emit):
            if len(row) != len(ROLES):
                raise ValueError(f"emit row {state.token} must have {len(ROLES)} entries")
            _check_unity(math.fsum(row), f"emit row {state.token}")

    def emission(self, state_index: int, features: Sequence[bool]) -> float:
        weights = self.emit[state_index]
        likelihood = 1.0
        for feature, fired in enumerate(features):
            if fired:
                likelihood *= weights[feature]
        return likelihood

    def decode(self, titles: Sequence[str]) -> list[Role]:
        emissions = []
        for title in titles:
            features = extract_features(title)
            emissions.append([self.emission(s, features) for s in range(len(self.states))])
        path = viterbi(self.init, self.trans, self.end, emissions)
        return [self.states[index] for index in path]

    def to_dict(self) -> dict[str, Any]:
        return {
            "states": [state.token for state in self.states],
            "features": [role.token for role in ROLES],
            "init": list(self.init),
            "trans": [list(row) for row in self.trans],
            "end": list(self.end),
            "emit": [list(row) for row in self.emit],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2) + "\n"

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> RoleModel:
        if not isinstance(payload, Mapping):
            raise ValueError("A role model must be a JSON object")
        raw_states = payload.get("states")
        if not isinstance(raw_states, list) or not all(isinstance(item, str) for item in raw_states):
            raise ValueError("'states' must be a list of role names")
        states = tuple(Role.from_token(token) for token in raw_states)
        features = payload.get("features")
        if features is not None and features != [role.token for role in ROLES]:
            raise ValueError("'features' does not match the known roles")
        n = len(states)
        trans_rows = payload.get("trans")
        emit_rows = payload.get("emit")
        if not isinstance(trans_rows, list) or len(trans_rows) != n:
            raise ValueError(f"'trans' must have {n} rows")
        if not isinstance(emit_rows, list) or len(emit_rows) != n:
            raise ValueError(f"'emit' must have {n} rows")
        return cls(
            states=states,
            init=_float_row(payload.get("init"), "'init'", n),
            trans=tuple(_float_row(row, f"'trans' row {i}", n) for i, row in enumerate(trans_rows)),
            end=_float_row(payload.get("end"), "'end'", n),
            emit=tuple(_float_row(row, f"'emit' row {i}", len(ROLES)) for i, row in enumerate(emit_rows)),
        )

    @classmethod
    def from_json(cls, text: str) -> RoleModel:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid role model JSON: {exc}") from exc
        return cls.from_dict(payload)


DEFAULT_ROLE_MODEL = RoleModel(
    states=ROLES,
    init=_DEFAULT_INIT,
    trans=_DEFAULT_TRANS,
    end=_DEFAULT_END,
    emit=_DEFAULT_EMIT,
)


def load_role_model(path: Path) -> RoleModel:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Failed to read role model: {path}") from exc
    try:
        return RoleModel.from_json(text)
    except ValueError as exc:
        raise ValueError(f"{path.name}: {exc}") from exc


def _order_allows(role: Role, highest: Role) -> bool:
    if role.rank >= highest.rank:
        return True
    return role in CYCLIC_ROLES and highest in CYCLIC_ROLES


def assumed_order(
    titles: Sequence[str],
    roles: Sequence[Role],
    states: Collection[Role] = ROLES,
) -> list[Role]:
    """
    Enforce the narrative order on a decoded role path.

    A title that unambiguously names its role gets that role, or fails when
    the role would move the book backwards. Any other backwards step is
    replaced by the role of the previous chapter.
    """
    ordered: list[Role] = []
    highest: Role | None = None
    for title, role in zip(titles, roles):
        demanded = reliable_role(title)
        if demanded is not None and demanded in states:
            if highest is not None and not _order_allows(demanded, highest):
                raise ClassificationError(
                    f"Chapter {title!r} is clearly {demanded.token}, "
                    f"but it comes after a {highest.token} chapter"
                )
            if demanded is not role:
                logger.debug("Chapter %r: %s overridden by title as %s", title, role.token, demanded.token)
            role = demanded
        elif highest is not None and not _order_allows(role, highest):
            previous = ordered[-1]
            logger.info(
                "Chapter %r: %s would move backwards after %s; keeping %s",
                title,
                role.token,
                highest.token,
                previous.token,
            )
            role = previous
        ordered.append(role)
        if highest is None or role.rank > highest.rank:
            highest = role
    return ordered


def infer_roles(titles: Iterable[str], model: RoleModel = DEFAULT_ROLE_MODEL) -> list[Role]:
    titles = list(titles)
    decoded = model.decode(titles)
    return assumed_order(titles, decoded, model.states)


def is_skip(role: Role, skip_roles: Collection[Role] | None = None) -> bool:
    """Front and back matter is left out of the produced text."""
    if skip_roles is None:
        skip_roles = DEFAULT_SKIP_ROLES
    return role in skip_roles
