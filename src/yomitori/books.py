from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field

from .document import EpubDocument

__all__ = ["Book", "BookMeta", "parse_book_title", "n_books", "generate_books"]

logger = logging.getLogger(__name__)

# (opening, keyword, closing): a bracketed note around the keyword is cut out of the title.
_EDITION_NOTES = (
    ("【", "版", "】"),
    ("【", "付", "】"),
    ("【", "入", "】"),
    ("【", "セット", "】"),
    ("【", "シリーズ", "】"),
    ("【", "小説", "】"),
    ("［", "版", "］"),
    ("〈", "版", "〉"),
    ("(", "版", ")"),
    ("（", "版", "）"),
    (" ", "シリーズ", " "),
)
_EDITION_WORDS = ("新装版", "(幅広)")
_LABEL_NOTES = (
    ("(", "文庫", ")"),
    ("（", "文庫", "）"),
    ("(", "ノベル", ")"),
    ("（", "ノベル", "）"),
    ("(", "ブックス", ")"),
    ("(", "BOOKS", ")"),
    ("(", "NOVELS", ")"),
    ("(", "書庫", ")"),
    ("(", "小説", ")"),
    ("(", "書店", ")"),
    ("(", "キス", ")"),
    ("(", "ファンタジー", ")"),
    ("(", "社", ")"),
    ("(", "文芸", ")"),
    (" ", "文庫", " "),
    ("(", "Kindle Single", ")"),
    ("(", "アイリスNEO", ")"),
    ("(", "サーガフォレスト", ")"),
    ("（", "サーガフォレスト", "）"),
    ("(", "アース・スター ルナ", ")"),
)

_VOLUME_COUNT = re.compile(r"全\s*([0-9０-９〇一二三四五六七八九十]+)\s*巻")
_KANJI_VALUES = {"〇": 0, "一": 1, "二": 2, "三": 3, "四": 4, "五": 5, "六": 6, "七": 7, "八": 8, "九": 9}


@dataclass
class Book:
    name: str
    author: str
    publisher: str
    start: int
    end: int
    files: list[str] = field(default_factory=list)

    @property
    def spine_range(self) -> range:
        return range(self.start, self.end)


def _cut_notes(title: str, opening: str, keyword: str, closing: str, removed: list[str]) -> str:
    pos = 0
    while (mid := title.find(keyword, pos)) != -1:
        # Search outwards from the keyword so the shortest enclosing note is cut.
        start = title.rfind(opening, 0, mid)
        end = title.find(closing, mid + len(keyword))
        if start != -1 and end != -1:
            removed.append(title[start + len(opening) : end])
            title = title[:start] + title[end + len(closing) :]
            pos = start
            continue
        pos = mid + len(keyword)
    return title


def parse_book_title(title: str) -> tuple[str, str | None]:
    """
    Split a store title into the book's name and its publisher label.

    Edition notes such as 【SS付き電子限定版】 are dropped. When more than
    one label note is found, the first one wins.
    """
    # Padding lets space-delimited notes match at either end of the title.
    padded = f" {title} "
    for opening, keyword, closing in _EDITION_NOTES:
        padded = _cut_notes(padded, opening, keyword, closing, [])
    for word in _EDITION_WORDS:
        padded = padded.replace(word, "")

    labels: list[str] = []
    for opening, keyword, closing in _LABEL_NOTES:
        padded = _cut_notes(padded, opening, keyword, closing, labels)
    if len(labels) > 1:
        logger.warning("Title %r carries several labels (%s); keeping %r", title, ", ".join(labels), labels[0])
    return padded.strip(), labels[0].strip() if labels else None


def _parse_count(text: str) -> int:
    text = unicodedata.normalize("NFKC", text)
    if text.isdigit():
        return int(text)
    total = digit = 0
    for char in text:
        if char == "十":
            total += (digit or 1) * 10
            digit = 0
        else:
            digit = int(char) if char.isdigit() else _KANJI_VALUES[char]
    return total + digit


def n_books(title: str) -> int:
    """Number of volumes bundled in an omnibus edition, 1 for an ordinary book."""
    if "合本版" not in title and "セット" not in title:
        return 1
    match = _VOLUME_COUNT.search(title)
    if match is None:
        return 1
    return max(_parse_count(match.group(1)), 1)


@dataclass
class BookMeta:
    title: str
    author: str
    asin: str | None = None
    label: str | None = None
    publisher: str = ""
    pub_date: str = ""

    @classmethod
    def from_document(cls, document: EpubDocument) -> BookMeta:
        title, label = parse_book_title(document.title)
        return cls(
            title=title,
            author=document.author,
            asin=document.asin,
            label=label,
            publisher=document.publisher,
            pub_date=document.pub_date,
        )


def generate_books(document: EpubDocument) -> list[Book]:
    """One book spanning the whole spine; omnibus editions are only reported."""
    name, _ = parse_book_title(document.title)
    count = n_books(document.title)
    if count > 1:
        logger.warning(
            "%r bundles %d volumes; split books.txt by hand to get one text per volume",
            document.title,
            count,
        )
    return [
        Book(
            name=name or document.title,
            author=document.author,
            publisher=document.publisher,
            start=0,
            end=len(document.spine_texts),
            files=document.hrefs,
        )
    ]
