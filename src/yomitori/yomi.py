from __future__ import annotations

from typing import Collection, Iterable, TextIO

from .paragraphs import FuriganaSpan

__all__ = ["SMALL_KANA_EXCEPTIONS", "fix_little_yomi", "format_yomi", "write_yomi"]

# Bases whose readings really are written with a full-size や/ゆ/よ.
SMALL_KANA_EXCEPTIONS = frozenset({"清", "日和"})

_I_ROW_KANA = frozenset("きぎしじちぢにひびぴみり")
_SMALL_KANA = {"や": "ゃ", "ゆ": "ゅ", "よ": "ょ"}


def _first_full_size_ya(reading: str) -> int | None:
    for index, char in enumerate(reading):
        if char in _SMALL_KANA:
            return index
    return None


def fix_little_yomi(
    base: str,
    reading: str,
    exceptions: Collection[str] = SMALL_KANA_EXCEPTIONS,
) -> str:
    """
    Contract a full-size や/ゆ/よ that follows an i-row kana into its small form.

    Only the first や/ゆ/よ is considered. Readings spaced out mora by mora
    ("お や じ") cannot be contracted reliably; their spaces are dropped instead.
    """
    index = _first_full_size_ya(reading)
    if index is None:
        return reading
    head = reading[:index].encode("utf-8")
    if len(head) < 3:
        return reading
    # Kana are three UTF-8 bytes wide; landing mid-character means narrow
    # characters (spaces) are mixed into the reading.
    try:
        previous = head[-3:].decode("utf-8")
    except UnicodeDecodeError:
        return reading.replace(" ", "")
    if previous not in _I_ROW_KANA:
        return reading
    if base in exceptions:
        return reading
    return reading[:index] + _SMALL_KANA[reading[index]] + reading[index + 1 :]


def format_yomi(
    spans: Iterable[FuriganaSpan],
    text: str,
    exceptions: Collection[str] = SMALL_KANA_EXCEPTIONS,
) -> list[str]:
    """Render ``start:end:base:reading`` lines for spans over the produced ``text``."""
    data = text.encode("utf-8")
    lines = []
    for span in spans:
        base = span.base_text(data)
        reading = fix_little_yomi(base, span.reading, exceptions)
        lines.append(f"{span.start}:{span.end}:{base}:{reading}")
    return lines


def write_yomi(
    spans: Iterable[FuriganaSpan],
    handle: TextIO,
    text: str,
    exceptions: Collection[str] = SMALL_KANA_EXCEPTIONS,
) -> None:
    for line in format_yomi(spans, text, exceptions):
        handle.write(line + "\n")
