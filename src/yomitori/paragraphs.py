from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterator, MutableMapping

from .errors import FormattingError, SchemaError
from .xhtml import Tag, TagCursor, TagKind, de_entitify

__all__ = [
    "ParagraphKind",
    "Paragraph",
    "FuriganaSpan",
    "TextBuffer",
    "classify",
    "iter_paragraphs",
    "strip_formatting",
    "PLACEHOLDER_GLYPH",
]

logger = logging.getLogger(__name__)

CONTAINER_TAGS = frozenset({"div", "section"})
HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
IMAGE_TAGS = frozenset({"img", "svg"})
RULE_TAGS = frozenset({"hr", "br"})
TEXT_BLOCK_TAGS = frozenset({"p", "a", "span"})
INLINE_TRANSPARENT_TAGS = frozenset({"span", "a", "em", "strong", "b", "i"})
GAIJI_CLASSES = frozenset({"gaiji", "gaiji-line"})
PLACEHOLDER_GLYPH = "�"


class ParagraphKind(enum.Enum):
    BODY_TEXT = "body_text"
    HEADER = "header"
    STANDALONE_IMAGE = "standalone_image"
    EMPTY = "empty"
    TRANSPARENT = "transparent"


@dataclass(frozen=True)
class Paragraph:
    text: str
    kind: ParagraphKind

    @property
    def has_text(self) -> bool:
        return self.kind in (ParagraphKind.BODY_TEXT, ParagraphKind.HEADER)


@dataclass(frozen=True)
class FuriganaSpan:
    """A reading attached to ``[start, end)``, UTF-8 byte offsets into the produced text."""

    start: int
    end: int
    reading: str

    def base_text(self, text: str | bytes) -> str:
        data = text.encode("utf-8") if isinstance(text, str) else text
        return data[self.start : self.end].decode("utf-8")


class TextBuffer:
    """Append-only text output that tracks its length in UTF-8 bytes."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._byte_length = 0

    @property
    def byte_length(self) -> int:
        return self._byte_length

    def write(self, text: str) -> None:
        if text:
            self._parts.append(text)
            self._byte_length += len(text.encode("utf-8"))

    def getvalue(self) -> str:
        return "".join(self._parts)


def _is_gaiji_image(tag: Tag) -> bool:
    classes = (tag.get_attr("class") or "").split()
    return bool(GAIJI_CLASSES.intersection(classes))


def _scan_inline_content(inner: str) -> tuple[bool, bool, bool]:
    has_text = has_image = has_break = False
    cursor = Tag.root(inner).cursor()
    while (tag := cursor.next_by_tag()) is not None:
        if tag.leading_text.strip():
            has_text = True
        if tag.kind is TagKind.CLOSING:
            continue
        if tag.name == "img" and _is_gaiji_image(tag):
            has_text = True
        elif tag.name in IMAGE_TAGS:
            has_image = True
            if tag.kind is TagKind.OPENING:
                cursor.step_out(tag)
        elif tag.name == "br":
            has_break = True
    return has_text, has_image, has_break


def classify(tag: Tag, inner: str) -> Paragraph:
    """Decide what a body-level tag is, given the markup between it and its closing tag."""
    text = inner.strip()
    if tag.name in CONTAINER_TAGS:
        return Paragraph(text="", kind=ParagraphKind.TRANSPARENT)
    if tag.name in HEADING_TAGS:
        return Paragraph(text=text, kind=ParagraphKind.HEADER)
    if tag.name in IMAGE_TAGS:
        return Paragraph(text=text, kind=ParagraphKind.STANDALONE_IMAGE)
    if tag.name in RULE_TAGS:
        return Paragraph(text=text, kind=ParagraphKind.EMPTY)
    if tag.name not in TEXT_BLOCK_TAGS:
        raise FormattingError(f"unknown formatting: <{tag.name}>")

    has_text, has_image, has_break = _scan_inline_content(text)
    if not has_text and has_image:
        return Paragraph(text=text, kind=ParagraphKind.STANDALONE_IMAGE)
    if not has_text and has_break:
        return Paragraph(text=text, kind=ParagraphKind.EMPTY)
    return Paragraph(text=text, kind=ParagraphKind.BODY_TEXT)


def iter_paragraphs(source: str) -> Iterator[Paragraph]:
    """Yield the paragraphs of a content document's ``<body>``; containers are walked into."""
    body = Tag.get_first(source, "body")
    if body is None:
        raise SchemaError("unschematic: missing <body>")
    cursor = body.cursor()
    while (tag := cursor.next_by_tag()) is not None:
        stray = de_entitify(tag.leading_text).strip()
        if stray:
            raise FormattingError(f"unknown formatting: text outside a paragraph: {stray[:20]!r}")
        if tag.kind is TagKind.CLOSING or tag.is_declaration:
            continue
        inner = ""
        if tag.kind is TagKind.OPENING and tag.name not in CONTAINER_TAGS:
            _, inner = cursor.step_out(tag)  # type: ignore[misc]
        paragraph = classify(tag, inner)
        if paragraph.kind is ParagraphKind.TRANSPARENT:
            continue
        yield paragraph


class _Stripper:
    def __init__(
        self,
        gaiji: MutableMapping[str, str],
        spans: list[FuriganaSpan],
        out: TextBuffer,
    ) -> None:
        self.gaiji = gaiji
        self.spans = spans
        self.out = out

    def write_inline(self, source: str) -> None:
        cursor = Tag.root(source).cursor()
        while (tag := cursor.next_by_tag()) is not None:
            self.out.write(de_entitify(tag.leading_text))
            if tag.kind is TagKind.CLOSING or tag.name == "!--":
                continue
            if tag.kind is TagKind.SELF_CLOSING:
                if tag.name == "br":
                    self.out.write("\n")
                elif tag.name == "img":
                    self.write_glyph(tag)
                else:
                    raise FormattingError(f"unknown formatting: <{tag.name}/>")
            elif tag.name in INLINE_TRANSPARENT_TAGS:
                continue
            elif tag.name == "ruby":
                self.write_ruby(tag, cursor)
            else:
                raise FormattingError(f"unknown formatting: <{tag.name}>")

    def write_glyph(self, tag: Tag) -> None:
        src = tag.get_attr("src")
        if src is None:
            raise FormattingError("unknown formatting: <img> without src")
        glyph = self.gaiji.get(src)
        if glyph is None:
            if not _is_gaiji_image(tag):
                raise FormattingError(f"unknown formatting: inline image {src!r} is not marked as gaiji")
            glyph = PLACEHOLDER_GLYPH
            self.gaiji[src] = glyph
            logger.info("Registered new gaiji %s", src)
        self.out.write(glyph)

    def plain_text(self, source: str) -> str:
        buffer = TextBuffer()
        _Stripper(self.gaiji, [], buffer).write_inline(source)
        return buffer.getvalue()

    def write_ruby(self, ruby: Tag, cursor: TagCursor) -> None:
        end_tag, _ = cursor.step_out(ruby)  # type: ignore[misc]
        children = ruby.cursor()
        pending_bases: deque[tuple[int, int]] = deque()
        last_rt = self.out.byte_length
        while (child := children.next_by_el()) is not None:
            self.out.write(de_entitify(child.leading_text))
            if child.kind is TagKind.SELF_CLOSING:
                if child.name == "img":
                    self.write_glyph(child)
                elif child.name != "!--":
                    raise FormattingError(f"unknown formatting: <{child.name}/> inside <ruby>")
                continue
            _, inner = children.step_out(child)  # type: ignore[misc]
            if child.name == "rb":
                start = self.out.byte_length
                self.write_inline(inner)
                pending_bases.append((start, self.out.byte_length))
            elif child.name == "rt":
                if pending_bases:
                    start, end = pending_bases.popleft()
                else:
                    start, end = last_rt, self.out.byte_length
                self.spans.append(FuriganaSpan(start=start, end=end, reading=self.plain_text(inner)))
                last_rt = self.out.byte_length
            elif child.name == "rp":
                continue
            elif child.name in INLINE_TRANSPARENT_TAGS:
                self.write_inline(inner)
            else:
                raise FormattingError(f"unknown formatting: <{child.name}> inside <ruby>")
        self.out.write(de_entitify(end_tag.leading_text))


def strip_formatting(
    text: str,
    gaiji: MutableMapping[str, str],
    spans: list[FuriganaSpan],
    out: TextBuffer,
) -> None:
    """
    Append ``text`` to ``out`` with its inline markup removed, followed by a newline.

    Ruby readings are appended to ``spans`` against the base text's byte
    offsets in ``out``; gaiji images are replaced through ``gaiji``, which
    grows when an image explicitly marked as gaiji has no mapping yet.
    """
    _Stripper(gaiji, spans, out).write_inline(text)
    out.write("\n")
