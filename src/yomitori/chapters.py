from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Collection, Sequence

from .books import Book
from .document import EpubDocument
from .errors import SchemaError
from .roles import DEFAULT_ROLE_MODEL, Role, RoleModel, infer_roles, is_skip

__all__ = [
    "Chapter",
    "DEFAULT_COVER_TITLES",
    "resolve_spine_index",
    "generate_chapters",
]

logger = logging.getLogger(__name__)

# Many containers leave the cover page out of the manifest; these TOC titles fall back to spine index 0.
DEFAULT_COVER_TITLES = frozenset({"表紙"})


@dataclass
class Chapter:
    book_name: str
    name: str
    start: int
    end: int
    files: list[str] = field(default_factory=list)
    role: Role = Role.MAIN
    skip: bool = False

    @property
    def spine_range(self) -> range:
        return range(self.start, self.end)


def resolve_spine_index(
    document: EpubDocument,
    href: str,
    title: str,
    cover_titles: Collection[str] = DEFAULT_COVER_TITLES,
) -> int:
    index = document.spine_index(href)
    if index is not None:
        return index
    if title.strip() in cover_titles:
        return 0
    raise SchemaError(f"No manifest href corresponds to the TOC href {href!r} ({title})")


def _make_chapter(
    book_name: str,
    title: str,
    start: int,
    end: int,
    hrefs: Sequence[str],
    role: Role,
    skip_roles: Collection[Role] | None,
) -> Chapter:
    if end < start:
        logger.debug("Chapter %r ends before it starts (%d..%d); skipping it", title, start, end)
        return Chapter(book_name=book_name, name=title, start=start, end=end, files=[], role=role, skip=True)
    return Chapter(
        book_name=book_name,
        name=title,
        start=start,
        end=end,
        files=list(hrefs[start:end]),
        role=role,
        skip=is_skip(role, skip_roles),
    )


def generate_chapters(
    document: EpubDocument,
    books: Sequence[Book],
    *,
    model: RoleModel = DEFAULT_ROLE_MODEL,
    cover_titles: Collection[str] = DEFAULT_COVER_TITLES,
    skip_roles: Collection[Role] | None = None,
) -> list[Chapter]:
    """
    Cut every book into chapters at its table-of-contents entries.

    Consecutive entries delimit half-open spine ranges and the last entry of
    a book runs to the book's end. Roles are inferred once per book.
    """
    if not document.toc:
        raise SchemaError("The table of contents has no entries")
    entries = [
        (title, resolve_spine_index(document, href, title, cover_titles))
        for title, href in document.toc
    ]
    hrefs = document.hrefs
    chapters: list[Chapter] = []
    for book in books:
        book_entries = [(title, index) for title, index in entries if book.start <= index < book.end]
        if not book_entries:
            logger.warning("Book %r has no table of contents entries; nothing to extract", book.name)
            continue
        roles = infer_roles((title for title, _ in book_entries), model)
        for position, ((title, start), role) in enumerate(zip(book_entries, roles)):
            if position + 1 < len(book_entries):
                end = book_entries[position + 1][1]
            else:
                end = book.end
            chapters.append(_make_chapter(book.name, title, start, end, hrefs, role, skip_roles))
    return chapters
