from __future__ import annotations

import posixpath
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

from .archive import ArchiveMember, read_members
from .errors import ProcessingContext, SchemaError
from .xhtml import Tag, de_entitify

__all__ = [
    "EpubDocument",
    "get_manifest",
    "get_manifest_media_types",
    "get_spine",
    "get_toc",
    "get_title",
    "get_author",
    "get_publisher",
    "get_date",
    "get_asin",
    "find_opf_path",
    "read_epub",
]

CONTAINER_PATH = "META-INF/container.xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"


def _unschematic(what: str) -> SchemaError:
    return SchemaError(f"unschematic: {what}")


def _required(tag: Tag | None, what: str) -> Tag:
    if tag is None:
        raise _unschematic(f"missing <{what}>")
    return tag


def _required_attr(tag: Tag, name: str) -> str:
    value = tag.get_attr(name)
    if value is None:
        raise _unschematic(f"<{tag.name}> without {name}=")
    return value


def _element_text(source: str, name: str) -> str | None:
    tag = Tag.get_first(source, name)
    if tag is None:
        return None
    _, inner = tag.get_end()
    return de_entitify(inner).strip()


def get_manifest(source: str) -> dict[str, str]:
    """Map manifest item ids to their hrefs."""
    manifest = _required(Tag.get_first(source, "manifest"), "manifest").cursor()
    id_map: dict[str, str] = {}
    while (item := manifest.next_by_el(("item",))) is not None:
        id_map[_required_attr(item, "id")] = _required_attr(item, "href")
    return id_map


def get_manifest_media_types(source: str) -> dict[str, str]:
    """Map manifest hrefs to media types; items without one are left out."""
    manifest = _required(Tag.get_first(source, "manifest"), "manifest").cursor()
    media_types: dict[str, str] = {}
    while (item := manifest.next_by_el(("item",))) is not None:
        media_type = item.get_attr("media-type")
        if media_type:
            media_types[_required_attr(item, "href")] = media_type
    return media_types


def get_spine(source: str) -> list[str]:
    """Return the spine's idrefs in reading order."""
    spine = _required(Tag.get_first(source, "spine"), "spine").cursor()
    idrefs: list[str] = []
    while (itemref := spine.next_by_el(("itemref",))) is not None:
        idrefs.append(_required_attr(itemref, "idref"))
    return idrefs


def get_toc(source: str) -> list[tuple[str, str]]:
    """Return ``(title, href)`` for every navPoint, nested ones included, fragments stripped."""
    navmap = _required(Tag.get_first(source, "navMap"), "navMap").cursor()
    chapters: list[tuple[str, str]] = []
    while (navpoint := navmap.next_by_el(("navPoint",))) is not None:
        label = _required(navpoint.get_first_child("navLabel"), "navLabel")
        text = _required(label.get_first_child("text"), "text")
        _, title = text.get_end()
        content = _required(navpoint.get_first_child("content"), "content")
        src = _required_attr(content, "src")
        src_file, _, _ = src.partition("#")
        chapters.append((de_entitify(title).strip(), src_file))
    return chapters


def get_title(source: str) -> str:
    title = _element_text(source, "dc:title")
    if title is None:
        raise _unschematic("missing <dc:title>")
    return title


def get_author(source: str) -> str:
    author = _element_text(source, "dc:creator")
    if author is None:
        raise _unschematic("missing <dc:creator>")
    return author


def get_publisher(source: str) -> str:
    return _element_text(source, "dc:publisher") or ""


def get_date(source: str) -> str:
    return _element_text(source, "dc:date") or ""


def get_asin(source: str) -> str | None:
    metadata = Tag.get_first(source, "metadata")
    if metadata is None:
        return None
    cursor = metadata.cursor()
    while (identifier := cursor.next_by_el(("dc:identifier",))) is not None:
        _, inner = identifier.get_end()
        value = de_entitify(inner).strip()
        scheme = identifier.get_attr("opf:scheme") or ""
        if scheme.upper() == "ASIN" and value:
            return value
        if value.lower().startswith("urn:asin:"):
            return value[len("urn:asin:") :]
    return None


def _resolve(base_dir: str, href: str) -> str:
    href = unquote(href)
    if not base_dir:
        return posixpath.normpath(href)
    return posixpath.normpath(posixpath.join(base_dir, href))


def _relative_to(path: str, base_dir: str) -> str:
    if not base_dir:
        return path
    return posixpath.relpath(path, base_dir)


def find_opf_path(members: dict[str, ArchiveMember], container_xml: str | None) -> str:
    if container_xml is not None:
        rootfile = Tag.get_first(container_xml, "rootfile")
        if rootfile is not None:
            full_path = rootfile.get_attr("full-path")
            if full_path and full_path in members:
                return full_path
    if "content.opf" in members:
        return "content.opf"
    for name in members:
        if name.lower().endswith(".opf"):
            return name
    raise SchemaError("No toc.ncx or content.opf found!")


def _find_ncx_path(members: dict[str, ArchiveMember], opf: str, opf_dir: str) -> str:
    for href, media_type in get_manifest_media_types(opf).items():
        if media_type == NCX_MEDIA_TYPE:
            path = _resolve(opf_dir, href)
            if path in members:
                return path
    for name in members:
        if name.lower().endswith(".ncx"):
            return name
    raise SchemaError("No toc.ncx or content.opf found!")


@dataclass
class EpubDocument:
    """
    Everything the pipeline needs from one container.

    ``spine_texts`` holds the decompressed documents in reading order, keyed
    by their manifest href (relative to the package document); TOC hrefs are
    normalised to the same form so they can be looked up in
    ``href_to_spine_index``.
    """

    spine_texts: list[tuple[str, str]]
    href_to_spine_index: dict[str, int]
    toc: list[tuple[str, str]]
    title: str
    author: str
    publisher: str = ""
    pub_date: str = ""
    asin: str | None = None
    opf_path: str = "content.opf"

    @property
    def hrefs(self) -> list[str]:
        return [href for href, _ in self.spine_texts]

    def spine_index(self, href: str) -> int | None:
        return self.href_to_spine_index.get(href)


def read_epub(path: Path, ctx: ProcessingContext | None = None) -> EpubDocument:
    ctx = ctx or ProcessingContext(path)
    with path.open("rb") as handle:
        with ctx.stage("unzip"):
            members = read_members(handle)
            container = members.get(CONTAINER_PATH)
            container_xml = container.extract(handle) if container is not None else None
            opf_path = find_opf_path(members, container_xml)
            opf = members[opf_path].extract(handle)

        with ctx.stage(f"parse: {opf_path}"):
            opf_dir = posixpath.dirname(opf_path)
            manifest = get_manifest(opf)
            spine = get_spine(opf)
            title = get_title(opf)
            author = get_author(opf)
            publisher = get_publisher(opf)
            pub_date = get_date(opf)
            asin = get_asin(opf)
            ncx_path = _find_ncx_path(members, opf, opf_dir)

        with ctx.stage(f"unzip: {ncx_path}"):
            ncx = members[ncx_path].extract(handle)

        spine_texts: list[tuple[str, str]] = []
        href_to_spine_index: dict[str, int] = {}
        for index, idref in enumerate(spine):
            with ctx.stage(f"unzip: spine item {idref}"):
                href = manifest.get(idref)
                if href is None:
                    raise _unschematic(f"spine idref {idref!r} is not in the manifest")
                href = _relative_to(_resolve(opf_dir, href), opf_dir)
                member = members.get(_resolve(opf_dir, href))
                if member is None:
                    raise SchemaError(f"Spine document {href!r} is missing from the archive")
                href_to_spine_index.setdefault(href, index)
                spine_texts.append((href, member.extract(handle)))

    with ctx.stage(f"parse: {ncx_path}"):
        ncx_dir = posixpath.dirname(ncx_path)
        toc = [
            (name, _relative_to(_resolve(ncx_dir, href), opf_dir))
            for name, href in get_toc(ncx)
        ]

    return EpubDocument(
        spine_texts=spine_texts,
        href_to_spine_index=href_to_spine_index,
        toc=toc,
        title=title,
        author=author,
        publisher=publisher,
        pub_date=pub_date,
        asin=asin,
        opf_path=opf_path,
    )
