from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable, Sequence

import pytest

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

XHTML_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>{title}</title><link rel="stylesheet" type="text/css" href="style.css"/></head>
<body>
{body}
</body>
</html>
"""


def _opf(title: str, author: str, spine: Sequence[tuple[str, str]], extra_metadata: str) -> str:
    items = "\n".join(
        f'    <item id="item{index}" href="{href}" media-type="application/xhtml+xml"/>'
        for index, (href, _) in enumerate(spine)
    )
    itemrefs = "\n".join(f'    <itemref idref="item{index}"/>' for index in range(len(spine)))
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="BookId">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:title>{title}</dc:title>
    <dc:creator opf:role="aut">{author}</dc:creator>
{extra_metadata}
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
{items}
  </manifest>
  <spine toc="ncx">
{itemrefs}
  </spine>
</package>
"""


def _ncx(toc: Sequence[tuple[str, str]]) -> str:
    points = "\n".join(
        f"""    <navPoint id="nav{index}" playOrder="{index + 1}">
      <navLabel><text>{title}</text></navLabel>
      <content src="{href}"/>
    </navPoint>"""
        for index, (title, href) in enumerate(toc)
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE ncx PUBLIC "-//NISO//DTD ncx 2005-1//EN" "http://www.daisy.org/z3986/2005/ncx-2005-1.dtd">
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head><meta name="dtb:uid" content="urn:uuid:0"/></head>
  <docTitle><text>toc</text></docTitle>
  <navMap>
{points}
  </navMap>
</ncx>
"""


def build_epub(
    target: Path,
    spine: Sequence[tuple[str, str]],
    toc: Sequence[tuple[str, str]],
    *,
    title: str = "テスト本",
    author: str = "著者",
    opf_dir: str = "OEBPS",
    extra_metadata: str = "",
    compression: int = zipfile.ZIP_DEFLATED,
) -> Path:
    """
    Write an EPUB whose spine documents are ``(href, body markup)`` pairs.

    ``toc`` hrefs are relative to the package document, like the spine hrefs.
    """
    prefix = f"{opf_dir}/" if opf_dir else ""
    opf_path = f"{prefix}content.opf"
    with zipfile.ZipFile(target, "w", compression=compression) as zf:
        zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        zf.writestr("META-INF/container.xml", CONTAINER_XML.format(opf_path=opf_path))
        zf.writestr(opf_path, _opf(title, author, spine, extra_metadata))
        zf.writestr(f"{prefix}toc.ncx", _ncx(toc))
        for href, body in spine:
            zf.writestr(f"{prefix}{href}", XHTML_TEMPLATE.format(title=href, body=body))
    return target


EpubFactory = Callable[..., Path]


@pytest.fixture
def make_epub(tmp_path: Path) -> EpubFactory:
    def _make(spine, toc, name: str = "book.epub", **kwargs) -> Path:
        return build_epub(tmp_path / name, spine, toc, **kwargs)

    return _make
