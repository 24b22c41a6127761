from __future__ import annotations

import logging
from itertools import groupby
from pathlib import Path
from typing import Callable, MutableMapping, Sequence

from .book_io import (
    BOOKS_FILENAME,
    CHAPTERS_FILENAME,
    GAIJI_FILENAME,
    META_FILENAME,
    BookOutput,
    read_books,
    read_chapters,
    read_gaiji,
    write_book_outputs,
    write_books,
    write_chapters,
    write_gaiji,
    write_meta,
)
from .books import Book, BookMeta, generate_books
from .chapters import Chapter, generate_chapters
from .config import BookConfig, load_book_config
from .document import EpubDocument, read_epub
from .errors import ProcessingContext, SchemaError
from .paragraphs import FuriganaSpan, ParagraphKind, TextBuffer, iter_paragraphs, strip_formatting
from .yomi import format_yomi

__all__ = [
    "ProgressCallback",
    "ProcessingContext",
    "BookOutput",
    "default_output_dir",
    "prepare",
    "produce_text",
    "extract_book",
]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, object]], None]


def default_output_dir(epub_path: Path) -> Path:
    return epub_path.with_suffix("")


def prepare(
    epub_path: Path,
    output_dir: Path,
    *,
    config: BookConfig | None = None,
    regenerate: bool = False,
    ctx: ProcessingContext | None = None,
) -> tuple[EpubDocument, list[Book], list[Chapter]]:
    """
    Read the container and settle its books and chapters.

    Existing ``books.txt``/``chapters.txt`` files in ``output_dir`` are used
    as they are, so hand corrections survive reruns; missing ones are
    generated and written for the next run.
    """
    ctx = ctx or ProcessingContext(epub_path)
    config = config or BookConfig()
    document = read_epub(epub_path, ctx)
    output_dir.mkdir(parents=True, exist_ok=True)

    with ctx.stage("books"):
        books_path = output_dir / BOOKS_FILENAME
        books = None if regenerate else read_books(books_path)
        if books is None:
            books = generate_books(document)
            logger.info("No books file found. Writing %s", books_path)
            write_books(books, books_path)

        meta_path = output_dir / META_FILENAME
        if regenerate or not meta_path.exists():
            write_meta(BookMeta.from_document(document), meta_path)

    with ctx.stage("chapters"):
        chapters_path = output_dir / CHAPTERS_FILENAME
        chapters = None if regenerate else read_chapters(chapters_path)
        if chapters is None:
            chapters = generate_chapters(
                document,
                books,
                model=config.role_model,
                cover_titles=config.cover_titles,
                skip_roles=config.skip_roles,
            )
            logger.info("No chapters file found. Writing %s", chapters_path)
            write_chapters(chapters, chapters_path)

    return document, books, chapters


def produce_text(
    document: EpubDocument,
    chapters: Sequence[Chapter],
    gaiji: MutableMapping[str, str],
    *,
    ctx: ProcessingContext | None = None,
    progress: ProgressCallback | None = None,
) -> tuple[str, list[FuriganaSpan]]:
    """
    Concatenate the text of every chapter that is not skipped.

    Chapters are separated by a blank line. Furigana spans point at UTF-8
    byte offsets in the returned text.
    """
    out = TextBuffer()
    spans: list[FuriganaSpan] = []
    taken = 0
    for index, chapter in enumerate(chapters):
        if not chapter.skip:
            if taken:
                out.write("\n")
            taken += 1
            for spine_index in chapter.spine_range:
                if spine_index >= len(document.spine_texts):
                    raise SchemaError(
                        f"Chapter {chapter.name!r} refers to spine index {spine_index}, "
                        f"but the spine has {len(document.spine_texts)} documents"
                    )
                href, source = document.spine_texts[spine_index]
                if ctx is None:
                    _produce_document(source, gaiji, spans, out)
                else:
                    with ctx.stage(f"produce: {href}"):
                        _produce_document(source, gaiji, spans, out)
        if progress is not None:
            progress(
                {
                    "event": "chapter_done",
                    "book": chapter.book_name,
                    "index": index + 1,
                    "total": len(chapters),
                    "chapter": chapter.name,
                    "skipped": chapter.skip,
                }
            )
    return out.getvalue(), spans


def _produce_document(
    source: str,
    gaiji: MutableMapping[str, str],
    spans: list[FuriganaSpan],
    out: TextBuffer,
) -> None:
    for paragraph in iter_paragraphs(source):
        if paragraph.has_text:
            strip_formatting(paragraph.text, gaiji, spans, out)
        elif paragraph.kind is ParagraphKind.EMPTY:
            out.write("\n")


def extract_book(
    epub_path: Path,
    output_dir: Path | None = None,
    *,
    regenerate: bool = False,
    role_model_path: Path | None = None,
    progress: ProgressCallback | None = None,
) -> list[BookOutput]:
    """Run the whole pipeline for one EPUB and write one text and one yomi file per book."""
    output_dir = output_dir or default_output_dir(epub_path)
    ctx = ProcessingContext(epub_path)
    config = load_book_config(output_dir, role_model_path)
    document, _, chapters = prepare(epub_path, output_dir, config=config, regenerate=regenerate, ctx=ctx)

    gaiji_path = output_dir / GAIJI_FILENAME
    with ctx.stage("gaiji"):
        gaiji = read_gaiji(gaiji_path) or {}
    known_gaiji = len(gaiji)

    produced: list[tuple[str, str, list[str]]] = []
    for book_name, group in groupby(chapters, key=lambda chapter: chapter.book_name):
        book_chapters = list(group)
        if progress is not None:
            progress({"event": "book_start", "book": book_name, "total_chapters": len(book_chapters)})
        text, spans = produce_text(document, book_chapters, gaiji, ctx=ctx, progress=progress)
        with ctx.stage(f"yomi: {book_name}"):
            yomi_lines = format_yomi(spans, text, config.small_kana_exceptions)
        produced.append((book_name, text, yomi_lines))
        if progress is not None:
            progress(
                {
                    "event": "book_done",
                    "book": book_name,
                    "chapters_taken": sum(1 for chapter in book_chapters if not chapter.skip),
                    "furigana": len(spans),
                }
            )

    # Nothing is written until every book has been produced.
    outputs = [write_book_outputs(output_dir, name, text, lines) for name, text, lines in produced]
    if len(gaiji) != known_gaiji:
        logger.warning("New gaiji found! Updating %s", gaiji_path)
        write_gaiji(gaiji, gaiji_path)
    return outputs
