from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from .books import Book, BookMeta
from .chapters import Chapter
from .errors import SideFileError
from .roles import Role

__all__ = [
    "SEP",
    "CHAPTERS_FILENAME",
    "BOOKS_FILENAME",
    "GAIJI_FILENAME",
    "META_FILENAME",
    "BookOutput",
    "read_chapters",
    "write_chapters",
    "read_books",
    "write_books",
    "read_gaiji",
    "write_gaiji",
    "read_meta",
    "write_meta",
    "book_output_paths",
    "write_book_outputs",
]

logger = logging.getLogger(__name__)

SEP = "\t"
CHAPTERS_FILENAME = "chapters.txt"
BOOKS_FILENAME = "books.txt"
GAIJI_FILENAME = "gaiji.txt"
META_FILENAME = "meta.txt"
TEXT_SUFFIX = ".txt"
YOMI_SUFFIX = ".ruby.yomi"

_META_KEYS = ("asin", "title", "author", "label", "publisher", "pub_date")


@dataclass
class BookOutput:
    name: str
    text_path: Path
    yomi_path: Path


def _field(value: str) -> str:
    return value.replace(SEP, " ").replace("\r", " ").replace("\n", " ")


def _records(path: Path) -> Iterator[tuple[int, list[str]]]:
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        yield lineno, line.split(SEP)


def _read_text(path: Path) -> str | None:
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8")


def _index(path: Path, lineno: int, value: str, what: str) -> int:
    try:
        index = int(value)
    except ValueError:
        raise SideFileError(f"{path.name}:{lineno}: invalid {what} {value!r}") from None
    if index < 0:
        raise SideFileError(f"{path.name}:{lineno}: negative {what} {value!r}")
    return index


def read_chapters(path: Path) -> list[Chapter] | None:
    """Load a chapters file; None when it does not exist yet."""
    if not path.exists():
        return None
    chapters: list[Chapter] = []
    for lineno, fields in _records(path):
        if len(fields) < 6:
            raise SideFileError(f"{path.name}:{lineno}: expected at least 6 fields, got {len(fields)}")
        book_name, name, role_token, skip_token, start, end, *files = fields
        try:
            role = Role.from_token(role_token)
        except ValueError as exc:
            raise SideFileError(f"{path.name}:{lineno}: {exc}") from None
        if skip_token not in ("SKIP", "TAKE"):
            raise SideFileError(f"{path.name}:{lineno}: expected SKIP or TAKE, got {skip_token!r}")
        chapters.append(
            Chapter(
                book_name=book_name,
                name=name,
                start=_index(path, lineno, start, "start index"),
                end=_index(path, lineno, end, "end index"),
                files=files,
                role=role,
                skip=skip_token == "SKIP",
            )
        )
    return chapters


def write_chapters(chapters: Iterable[Chapter], path: Path) -> None:
    lines = []
    for chapter in chapters:
        fields = [
            _field(chapter.book_name),
            _field(chapter.name),
            chapter.role.token,
            "SKIP" if chapter.skip else "TAKE",
            str(chapter.start),
            str(chapter.end),
            *chapter.files,
        ]
        lines.append(SEP.join(fields))
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")


def read_books(path: Path) -> list[Book] | None:
    if not path.exists():
        return None
    books: list[Book] = []
    for lineno, fields in _records(path):
        if len(fields) < 5:
            raise SideFileError(f"{path.name}:{lineno}: expected at least 5 fields, got {len(fields)}")
        name, author, publisher, start, end, *files = fields
        books.append(
            Book(
                name=name,
                author=author,
                publisher=publisher,
                start=_index(path, lineno, start, "start index"),
                end=_index(path, lineno, end, "end index"),
                files=files,
            )
        )
    return books


def write_books(books: Iterable[Book], path: Path) -> None:
    lines = []
    for book in books:
        fields = [_field(book.name), _field(book.author), _field(book.publisher)]
        fields += [str(book.start), str(book.end), *book.files]
        lines.append(SEP.join(fields))
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")


def read_gaiji(path: Path) -> dict[str, str] | None:
    """Load ``image-ref:char`` lines; the image reference may itself contain colons."""
    text = _read_text(path)
    if text is None:
        return None
    gaiji: dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        src, sep, glyph = line.rpartition(":")
        if not sep or not src:
            raise SideFileError(f"{path.name}:{lineno}: expected 'image:character'")
        if len(glyph) != 1:
            raise SideFileError(f"{path.name}:{lineno}: replacement {glyph!r} is not a single character")
        gaiji[src] = glyph
    return gaiji


def write_gaiji(gaiji: Mapping[str, str], path: Path) -> None:
    path.write_text("".join(f"{src}:{glyph}\n" for src, glyph in sorted(gaiji.items())), encoding="utf-8")


def read_meta(path: Path) -> BookMeta | None:
    if not path.exists():
        return None
    values: dict[str, str] = {}
    for lineno, fields in _records(path):
        if len(fields) != 2 or fields[0] not in _META_KEYS:
            raise SideFileError(f"{path.name}:{lineno}: expected one of {', '.join(_META_KEYS)} and a value")
        values[fields[0]] = fields[1]
    return BookMeta(
        title=values.get("title", ""),
        author=values.get("author", ""),
        asin=values.get("asin") or None,
        label=values.get("label") or None,
        publisher=values.get("publisher", ""),
        pub_date=values.get("pub_date", ""),
    )


def write_meta(meta: BookMeta, path: Path) -> None:
    values = {
        "asin": meta.asin or "",
        "title": meta.title,
        "author": meta.author,
        "label": meta.label or "",
        "publisher": meta.publisher,
        "pub_date": meta.pub_date,
    }
    path.write_text("".join(f"{key}{SEP}{_field(values[key])}\n" for key in _META_KEYS), encoding="utf-8")


def _slugify_for_filename(text: str) -> str:
    cleaned_chars: list[str] = []
    for ch in text.strip():
        if ch in {"/", "\\", ":", "*", "?", '"', "<", ">", "|"}:
            cleaned_chars.append("_")
            continue
        if ord(ch) < 32:
            continue
        cleaned_chars.append(ch)
    slug = re.sub(r"_+", "_", "".join(cleaned_chars)).strip("_ .")
    return slug[:120]


def book_output_paths(output_dir: Path, book_name: str) -> tuple[Path, Path]:
    stem = _slugify_for_filename(book_name) or "book"
    return output_dir / f"{stem}{TEXT_SUFFIX}", output_dir / f"{stem}{YOMI_SUFFIX}"


def write_book_outputs(output_dir: Path, book_name: str, text: str, yomi_lines: Iterable[str]) -> BookOutput:
    text_path, yomi_path = book_output_paths(output_dir, book_name)
    output_dir.mkdir(parents=True, exist_ok=True)
    # Written as bytes so the yomi offsets stay valid on every platform.
    text_path.write_bytes(text.encode("utf-8"))
    yomi_path.write_text("".join(line + "\n" for line in yomi_lines), encoding="utf-8")
    logger.info("Wrote %s and %s", text_path, yomi_path)
    return BookOutput(name=book_name, text_path=text_path, yomi_path=yomi_path)
