from __future__ import annotations

from pathlib import Path

import pytest

from yomitori.book_io import (
    book_output_paths,
    read_books,
    read_chapters,
    read_gaiji,
    read_meta,
    write_book_outputs,
    write_books,
    write_chapters,
    write_gaiji,
    write_meta,
)
from yomitori.books import Book, BookMeta
from yomitori.chapters import Chapter
from yomitori.errors import SideFileError
from yomitori.roles import Role


def test_missing_side_files_read_as_none(tmp_path: Path):
    assert read_chapters(tmp_path / "chapters.txt") is None
    assert read_books(tmp_path / "books.txt") is None
    assert read_gaiji(tmp_path / "gaiji.txt") is None
    assert read_meta(tmp_path / "meta.txt") is None


def test_chapters_file_layout(tmp_path: Path):
    path = tmp_path / "chapters.txt"
    chapters = [
        Chapter("本", "表紙", 0, 1, ["cover.xhtml"], Role.COVER, True),
        Chapter("本", "第一章\t旅立ち", 1, 3, ["c1.xhtml", "c1b.xhtml"], Role.MAIN, False),
    ]

    write_chapters(chapters, path)

    assert path.read_text(encoding="utf-8").splitlines() == [
        "本\t表紙\tcover\tSKIP\t0\t1\tcover.xhtml",
        "本\t第一章 旅立ち\tmain\tTAKE\t1\t3\tc1.xhtml\tc1b.xhtml",
    ]
    loaded = read_chapters(path)
    assert loaded is not None
    assert loaded[0] == chapters[0]
    assert loaded[1].name == "第一章 旅立ち"
    assert loaded[1].files == ["c1.xhtml", "c1b.xhtml"]


def test_hand_edited_chapters_file(tmp_path: Path):
    path = tmp_path / "chapters.txt"
    path.write_text("本\t口絵\tBEFORE_EXTRA\tTAKE\t0\t1\n\n本\t第一章\tmain\tSKIP\t1\t2\tc1.xhtml\n", encoding="utf-8")

    chapters = read_chapters(path)

    assert chapters is not None
    assert [(c.role, c.skip, c.files) for c in chapters] == [
        (Role.BEFORE_EXTRA, False, []),
        (Role.MAIN, True, ["c1.xhtml"]),
    ]


@pytest.mark.parametrize(
    ("line", "message"),
    [
        ("本\t第一章\tmain\tTAKE\t1", "chapters.txt:1: expected at least 6 fields"),
        ("本\t第一章\tappendix\tTAKE\t1\t2", "chapters.txt:1: Unknown role"),
        ("本\t第一章\tmain\tyes\t1\t2", "chapters.txt:1: expected SKIP or TAKE"),
        ("本\t第一章\tmain\tTAKE\tone\t2", "chapters.txt:1: invalid start index"),
        ("本\t第一章\tmain\tTAKE\t1\t-2", "chapters.txt:1: negative end index"),
    ],
)
def test_malformed_chapters_file(tmp_path: Path, line: str, message: str):
    path = tmp_path / "chapters.txt"
    path.write_text(line + "\n", encoding="utf-8")

    with pytest.raises(SideFileError, match=message):
        read_chapters(path)


def test_books_file(tmp_path: Path):
    path = tmp_path / "books.txt"
    books = [Book("上巻", "作者", "ほげ社", 0, 2, ["a.xhtml", "b.xhtml"]), Book("下巻", "作者", "", 2, 3, ["c.xhtml"])]

    write_books(books, path)

    assert path.read_text(encoding="utf-8") == "上巻\t作者\tほげ社\t0\t2\ta.xhtml\tb.xhtml\n下巻\t作者\t\t2\t3\tc.xhtml\n"
    assert read_books(path) == books


def test_malformed_books_file(tmp_path: Path):
    path = tmp_path / "books.txt"
    path.write_text("上巻\t作者\t0\t1\n", encoding="utf-8")

    with pytest.raises(SideFileError, match="books.txt:1: expected at least 5 fields"):
        read_books(path)


def test_gaiji_file(tmp_path: Path):
    path = tmp_path / "gaiji.txt"
    path.write_text("../Images/g:02.png:﨑\n\nimages/g01.png:髙\n", encoding="utf-8")

    gaiji = read_gaiji(path)

    assert gaiji == {"../Images/g:02.png": "﨑", "images/g01.png": "髙"}
    write_gaiji(gaiji, path)
    assert path.read_text(encoding="utf-8") == "../Images/g:02.png:﨑\nimages/g01.png:髙\n"


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("no separator\n", "gaiji.txt:1: expected 'image:character'"),
        ("a.png:ab\n", "gaiji.txt:1: replacement 'ab' is not a single character"),
        ("a.png:\n", "not a single character"),
    ],
)
def test_malformed_gaiji_file(tmp_path: Path, content: str, message: str):
    path = tmp_path / "gaiji.txt"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(SideFileError, match=message):
        read_gaiji(path)


def test_meta_file(tmp_path: Path):
    path = tmp_path / "meta.txt"
    meta = BookMeta(title="剣と盾", author="作者", asin=None, label="ほげ文庫", publisher="", pub_date="2021")

    write_meta(meta, path)

    assert path.read_text(encoding="utf-8").splitlines()[:3] == ["asin\t", "title\t剣と盾", "author\t作者"]
    assert read_meta(path) == meta


def test_malformed_meta_file(tmp_path: Path):
    path = tmp_path / "meta.txt"
    path.write_text("isbn\t12345\n", encoding="utf-8")

    with pytest.raises(SideFileError, match="meta.txt:1"):
        read_meta(path)


def test_output_paths_are_filesystem_safe(tmp_path: Path):
    text_path, yomi_path = book_output_paths(tmp_path, "剣/盾: 第2巻?")

    assert text_path == tmp_path / "剣_盾_ 第2巻.txt"
    assert yomi_path == tmp_path / "剣_盾_ 第2巻.ruby.yomi"
    assert book_output_paths(tmp_path, "???")[0] == tmp_path / "book.txt"


def test_write_book_outputs(tmp_path: Path):
    output = write_book_outputs(tmp_path / "out", "本", "山\n", ["0:3:山:やま"])

    assert output.text_path.read_bytes() == "山\n".encode("utf-8")
    assert output.yomi_path.read_text(encoding="utf-8") == "0:3:山:やま\n"
    assert output.name == "本"
