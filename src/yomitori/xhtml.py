from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Collection

from .errors import MarkupError

__all__ = [
    "TagKind",
    "Tag",
    "TagCursor",
    "parse_tag",
    "parse_attr",
    "de_entitify",
]

_NAME_END = re.compile(r"[ /\t\n\r>]")
_TAG_END_OR_QUOTE = re.compile(r"[>\"']")
_WHITESPACE = frozenset(" \t\n\r")
_NOT_ATTR_NAME = frozenset(" \t\n\r=>/'\"")
_ENTITY = re.compile(r"&(?:(amp|lt|gt|quot|apos)|#([0-9]+)|#[xX]([0-9a-fA-F]+));")
_NAMED_ENTITIES = {"amp": "&", "lt": "<", "gt": ">", "quot": '"', "apos": "'"}


class TagKind(enum.Enum):
    OPENING = "opening"
    CLOSING = "closing"
    SELF_CLOSING = "self_closing"


@dataclass(frozen=True)
class Tag:
    """
    A view of one tag inside ``source``.

    ``start``/``end`` delimit the tag's own markup; ``text_start`` is where the
    text preceding the tag begins (the position the scan started from), so
    ``leading_text`` is everything between the previous tag and this one.
    """

    name: str
    source: str = field(repr=False)
    start: int
    end: int
    text_start: int
    kind: TagKind

    @classmethod
    def root(cls, source: str) -> Tag:
        return cls(name="", source=source, start=0, end=0, text_start=0, kind=TagKind.OPENING)

    @classmethod
    def get_first(cls, source: str, name: str) -> Tag | None:
        return cls.root(source).cursor().next_by_el((name,))

    @property
    def span(self) -> tuple[int, int]:
        return self.start, self.end

    @property
    def leading_text(self) -> str:
        return self.source[self.text_start : self.start]

    @property
    def markup(self) -> str:
        return self.source[self.start : self.end]

    @property
    def is_declaration(self) -> bool:
        return self.name.startswith(("!", "?"))

    def cursor(self) -> TagCursor:
        return TagCursor(self)

    def get_first_child(self, name: str) -> Tag | None:
        if self.kind is not TagKind.OPENING:
            return None
        return self.cursor().next_by_el((name,))

    def get_end(self) -> tuple[Tag, str]:
        stepped = self.cursor().step_out(self)
        if stepped is None:
            return self, ""
        return stepped

    def get_attr(self, name: str) -> str | None:
        value = parse_attr(self.markup, name)
        if value is None:
            return None
        return de_entitify(value)

    def span_with(self, other: Tag) -> str:
        """Return the source text strictly between this tag and ``other``."""
        if self.end <= other.start:
            return self.source[self.end : other.start]
        return self.source[other.end : self.start]


def _quoted_span_end(source: str, pos: int) -> int:
    # Backslash-escaped quotes do not close the value; real-world EPUBs rely on it.
    quote = source[pos]
    search_from = pos + 1
    while True:
        found = source.find(quote, search_from)
        if found == -1:
            raise MarkupError("Unexpected end of input inside a quoted attribute")
        if source[found - 1] != "\\":
            return found + 1
        search_from = found + 1


def parse_tag(source: str, offset: int) -> Tag | None:
    """Return the first tag at or after ``offset``, or None when no ``<`` is left."""
    start = source.find("<", offset)
    if start == -1:
        return None

    if source.startswith("<!--", start):
        close = source.find("-->", start + 4)
        if close == -1:
            raise MarkupError("Cannot find the end of a comment")
        return Tag(
            name="!--",
            source=source,
            start=start,
            end=close + 3,
            text_start=offset,
            kind=TagKind.SELF_CLOSING,
        )

    pos = start + 1
    closing = source.startswith("/", pos)
    if closing:
        pos += 1

    name_end = _NAME_END.search(source, pos)
    if name_end is None:
        raise MarkupError("Malformed tag name")
    name = source[pos : name_end.start()]
    pos = name_end.start()

    while True:
        hit = _TAG_END_OR_QUOTE.search(source, pos)
        if hit is None:
            raise MarkupError(f"Cannot find the end of tag <{name}>")
        pos = hit.start()
        if source[pos] == ">":
            break
        pos = _quoted_span_end(source, pos)

    self_closing = source[pos - 1] == "/"
    pos += 1

    if closing and self_closing:
        raise MarkupError(f"Tag <{name}> is marked both closing and self-closing")
    if closing:
        kind = TagKind.CLOSING
    elif self_closing or name.startswith(("!", "?")):
        kind = TagKind.SELF_CLOSING
    else:
        kind = TagKind.OPENING
    return Tag(name=name, source=source, start=start, end=pos, text_start=offset, kind=kind)


def _skip(markup: str, pos: int, chars: frozenset[str], *, inside: bool) -> int:
    while pos < len(markup) and (markup[pos] in chars) == inside:
        pos += 1
    return pos


def parse_attr(markup: str, target: str) -> str | None:
    """Look up attribute ``target`` in the markup of a single tag (``<name ...>``)."""
    inner = markup[1:-1]
    pos = _skip(inner, 0, _NOT_ATTR_NAME, inside=False)
    while pos < len(inner):
        before = pos
        pos = _skip(inner, pos, _WHITESPACE, inside=True)
        name_end = _skip(inner, pos, _NOT_ATTR_NAME, inside=False)
        attr_name = inner[pos:name_end]
        pos = _skip(inner, name_end, _WHITESPACE, inside=True)
        value = attr_name
        if pos < len(inner) and inner[pos] == "=":
            pos = _skip(inner, pos + 1, _WHITESPACE, inside=True)
            if pos < len(inner) and inner[pos] in "\"'":
                value_end = _quoted_span_end(inner, pos)
                value = inner[pos + 1 : value_end - 1]
                pos = value_end
            else:
                value_end = _skip(inner, pos, _WHITESPACE, inside=False)
                value = inner[pos:value_end]
                pos = value_end
        if attr_name and attr_name == target:
            return value
        if pos == before:
            # stray "/" or quote outside an attribute
            pos += 1
    return None


def _replace_entity(match: re.Match[str]) -> str:
    named, decimal, hexadecimal = match.groups()
    if named:
        return _NAMED_ENTITIES[named]
    try:
        return chr(int(decimal) if decimal else int(hexadecimal, 16))
    except (ValueError, OverflowError):
        return match.group(0)


def de_entitify(text: str) -> str:
    if "&" not in text:
        return text
    return _ENTITY.sub(_replace_entity, text)


class TagCursor:
    """
    Streaming walk over the tags below ``root``.

    The cursor keeps a stack of ``(end offset, name)`` frames for every open
    tag. Opening tags push, closing tags pop and must match the name on top of
    the stack. When the walk started from :meth:`Tag.root`, the end of input
    acts as the synthetic closing tag of the root.
    """

    def __init__(self, root: Tag) -> None:
        self.root = root
        self._source = root.source
        self._stack: list[tuple[int, str]] = [(root.end, root.name)]
        self._pos = root.end

    @property
    def open_names(self) -> tuple[str, ...]:
        return tuple(name for _, name in self._stack)

    def _end_of_input(self) -> Tag:
        if len(self._stack) == 1 and self._stack[0][1] == "":
            end = len(self._source)
            return Tag(
                name="",
                source=self._source,
                start=end,
                end=end,
                text_start=self._pos,
                kind=TagKind.CLOSING,
            )
        raise MarkupError(f"Unexpected end of input: <{self._stack[-1][1]}> is never closed")

    def next_by_tag(self, targets: Collection[str] = ()) -> Tag | None:
        """Advance to the next tag named in ``targets`` (any tag when empty), closing tags included."""
        while self._stack:
            tag = parse_tag(self._source, self._pos)
            if tag is None:
                tag = self._end_of_input()
            self._pos = tag.end
            if tag.kind is TagKind.OPENING:
                self._stack.append((tag.end, tag.name))
            elif tag.kind is TagKind.CLOSING:
                _, expected = self._stack.pop()
                if expected != tag.name:
                    raise MarkupError(f"Closing tag </{tag.name}> does not match open <{expected}>")
            if not targets or tag.name in targets:
                return tag
        return None

    def next_by_el(self, targets: Collection[str] = ()) -> Tag | None:
        """Like :meth:`next_by_tag`, but only yields opening and self-closing tags."""
        while (tag := self.next_by_tag(targets)) is not None:
            if tag.kind is not TagKind.CLOSING:
                return tag
        return None

    def step_out(self, tag: Tag) -> tuple[Tag, str] | None:
        """
        Consume everything up to the closing tag that matches ``tag``'s depth.

        Returns the closing tag and the source between the two tags, or None
        for a self-closing tag, which has nothing to step out of.
        """
        if tag.kind is TagKind.SELF_CLOSING:
            return None
        depth = next(
            (index for index, frame in enumerate(self._stack) if frame == (tag.end, tag.name)),
            None,
        )
        if depth is None:
            raise MarkupError(f"<{tag.name}> at offset {tag.start} is not open in this cursor")
        while True:
            end_tag = self.next_by_tag((tag.name,))
            if end_tag is None:
                raise MarkupError(f"Unexpected end of input inside <{tag.name}>")
            if len(self._stack) == depth:
                return end_tag, self._source[tag.end : end_tag.start]
