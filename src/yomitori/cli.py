from __future__ import annotations

import argparse
import logging
import sys
from importlib import metadata
from pathlib import Path

import tomllib
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .core import default_output_dir, extract_book
from .errors import YomitoriError
from .logging_utils import build_console, configure_logging
from .roles import ROLES, Role
from .train import DEFAULT_ALPHA, read_corpus, train_role_model

logger = logging.getLogger(__name__)


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("yomitori")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"yomitori {__version__}",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description=(
            "EPUB → plain narrative text plus a furigana table. "
            "Use `yomitori train-roles` to fit a chapter role model."
        ),
    )
    _add_version_flag(ap)
    ap.add_argument(
        "input_path",
        help="Path to an .epub file or a directory containing .epub files",
    )
    ap.add_argument(
        "-o",
        "--output-dir",
        help=(
            "Where to write outputs and side files (default: next to the EPUB, named after it). "
            "With a directory input, one subdirectory per EPUB is created inside it."
        ),
    )
    ap.add_argument(
        "--regenerate",
        action="store_true",
        help="Ignore existing books.txt/chapters.txt/meta.txt and generate them again.",
    )
    ap.add_argument(
        "--role-model",
        help="JSON role model written by `yomitori train-roles` (overrides yomitori.json).",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging, including role decisions.",
    )
    return ap


def build_train_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="yomitori train-roles",
        description="Fit chapter role model tables from a labelled corpus (role<TAB>title per line, blank line between books).",
    )
    _add_version_flag(ap)
    ap.add_argument("corpus", help="Labelled corpus file")
    ap.add_argument(
        "-o",
        "--output",
        help="Write the model JSON here instead of stdout.",
    )
    ap.add_argument(
        "--alpha",
        type=float,
        default=DEFAULT_ALPHA,
        help=f"Additive smoothing constant (default: {DEFAULT_ALPHA}).",
    )
    ap.add_argument(
        "--states",
        help=(
            "Comma-separated roles to model, in order (default: all of "
            + ", ".join(role.token for role in ROLES)
            + ")."
        ),
    )
    ap.add_argument("--debug", action="store_true", help="Verbose logging.")
    return ap


class _RichProgress:
    """Chapter progress bars for the extraction pipeline; disabled when stderr is not a terminal."""

    def __init__(self, console: Console, enabled: bool = True) -> None:
        self.console = console
        self.enabled = enabled and console.is_terminal
        self.progress: Progress | None = None
        self.task_by_book: dict[str, TaskID] = {}
        if not self.enabled:
            return
        self.progress = Progress(
            TextColumn("{task.description}", justify="left"),
            BarColumn(bar_width=None),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[detail]}", justify="left"),
            console=self.console,
            transient=False,
        )

    def __enter__(self) -> _RichProgress:
        if self.progress is not None:
            self.progress.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.progress is not None:
            self.progress.stop()

    @staticmethod
    def _truncate(text: str, width: int = 24) -> str:
        text = text.strip()
        if len(text) <= width:
            return text
        return text[: max(0, width - 1)] + "…"

    def handle(self, event: dict[str, object]) -> bool:
        if self.progress is None:
            return False
        event_type = event.get("event")
        book = str(event.get("book", ""))
        if event_type == "book_start":
            total = event.get("total_chapters")
            self.task_by_book[book] = self.progress.add_task(
                self._truncate(book),
                total=total if isinstance(total, int) else None,
                detail="",
            )
            return True
        task_id = self.task_by_book.get(book)
        if task_id is None:
            return False
        if event_type == "chapter_done":
            chapter = self._truncate(str(event.get("chapter", "")), 18)
            detail = f"{chapter} (skipped)" if event.get("skipped") else chapter
            self.progress.update(task_id, advance=1, detail=detail)
            return True
        if event_type == "book_done":
            self.progress.update(task_id, detail=f"{event.get('chapters_taken')} chapters taken")
            return True
        return False


def _fallback_log(event: dict[str, object]) -> None:
    event_type = event.get("event")
    if event_type == "book_start":
        logger.info("%s: %s chapters", event.get("book"), event.get("total_chapters"))
    elif event_type == "chapter_done":
        status = "skip" if event.get("skipped") else "take"
        logger.debug("[%s/%s] %s (%s)", event.get("index"), event.get("total"), event.get("chapter"), status)
    elif event_type == "book_done":
        logger.info("%s: %s chapters taken", event.get("book"), event.get("chapters_taken"))


def _resolve_inputs(input_path: Path, output_dir: Path | None) -> list[tuple[Path, Path]]:
    if not input_path.exists():
        raise SystemExit(f"Input path not found: {input_path}")
    if input_path.is_dir():
        epubs = sorted(p for p in input_path.iterdir() if p.suffix.lower() == ".epub")
        if not epubs:
            raise SystemExit(f"No .epub files found in directory: {input_path}")
        if output_dir is None:
            return [(epub, default_output_dir(epub)) for epub in epubs]
        return [(epub, output_dir / epub.stem) for epub in epubs]
    return [(input_path, output_dir or default_output_dir(input_path))]


def _run_extract(args: argparse.Namespace) -> int:
    console = build_console()
    configure_logging(args.debug, console)
    output_dir = Path(args.output_dir).expanduser() if args.output_dir else None
    role_model = Path(args.role_model).expanduser() if args.role_model else None
    targets = _resolve_inputs(Path(args.input_path).expanduser(), output_dir)

    with _RichProgress(console) as progress_handler:

        def _progress(event: dict[str, object]) -> None:
            if not progress_handler.handle(event):
                _fallback_log(event)

        for epub_path, book_dir in targets:
            try:
                outputs = extract_book(
                    epub_path,
                    book_dir,
                    regenerate=args.regenerate,
                    role_model_path=role_model,
                    progress=_progress,
                )
            except (YomitoriError, ValueError, OSError) as exc:
                raise SystemExit(str(exc)) from exc
            for output in outputs:
                print(f"{output.name}: {output.text_path}")
    return 0


def _parse_states(raw: str | None) -> tuple[Role, ...]:
    if not raw:
        return ROLES
    try:
        return tuple(Role.from_token(token.strip()) for token in raw.split(",") if token.strip())
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


def _run_train(args: argparse.Namespace) -> int:
    configure_logging(args.debug)
    try:
        books = read_corpus(Path(args.corpus).expanduser())
        model = train_role_model(books, states=_parse_states(args.states), alpha=args.alpha)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    payload = model.to_json()
    if args.output:
        output_path = Path(args.output).expanduser()
        output_path.write_text(payload, encoding="utf-8")
        print(f"Wrote role model to {output_path}")
    else:
        sys.stdout.write(payload)
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "train-roles":
        train_parser = build_train_parser()
        train_args = train_parser.parse_args(argv[1:])
        return _run_train(train_args)

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)
    return _run_extract(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
