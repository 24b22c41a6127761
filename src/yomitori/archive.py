from __future__ import annotations

import io
import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from .errors import ContainerError

__all__ = [
    "ArchiveMember",
    "iter_members",
    "read_members",
    "STORED",
    "DEFLATED",
]

LOCAL_HEADER_SIGNATURE = 0x04034B50
CENTRAL_DIRECTORY_SIGNATURE = 0x02014B50
END_OF_CENTRAL_DIRECTORY_SIGNATURE = 0x06054B50

STORED = 0
DEFLATED = 8

_FLAG_DATA_DESCRIPTOR = 0x08
_ZIP64_MARKER = 0xFFFFFFFF

# signature, version, flags, method, mtime, mdate, crc32,
# compressed size, uncompressed size, name length, extra length
_LOCAL_HEADER = struct.Struct("<IHHHHHIIIHH")


@dataclass(frozen=True)
class ArchiveMember:
    """One file inside the container: where its compressed bytes live and how big it claims to be."""

    name: str
    start: int
    end: int
    declared_size: int
    method: int = DEFLATED

    @property
    def byte_range(self) -> range:
        return range(self.start, self.end)

    def extract_bytes(self, handle: BinaryIO) -> bytes:
        length = self.end - self.start
        handle.seek(self.start)
        raw = handle.read(length)
        if len(raw) != length:
            raise ContainerError(f"Member {self.name!r} is truncated ({len(raw)} of {length} bytes)")
        if self.method == STORED:
            if length > self.declared_size:
                raise ContainerError(f"Member {self.name!r} exceeds its declared size")
            return raw
        if self.method != DEFLATED:
            raise ContainerError(f"Member {self.name!r} uses unsupported compression method {self.method}")
        inflater = zlib.decompressobj(-zlib.MAX_WBITS)
        # max_length=0 means "unlimited" to zlib, so an empty member still gets a one byte window.
        limit = self.declared_size or 1
        try:
            data = inflater.decompress(raw, limit)
        except zlib.error as exc:
            raise ContainerError(f"Decompress error in {self.name!r}: {exc}") from exc
        if inflater.unconsumed_tail or len(data) > self.declared_size:
            raise ContainerError(f"Member {self.name!r} inflates past its declared size of {self.declared_size} bytes")
        if not inflater.eof:
            raise ContainerError(f"Deflate stream of {self.name!r} ended prematurely")
        return data

    def extract(self, handle: BinaryIO) -> str:
        data = self.extract_bytes(handle)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ContainerError(f"Member {self.name!r} is not valid UTF-8: {exc}") from exc


def _read_member_header(handle: BinaryIO) -> ArchiveMember | None:
    header = handle.read(_LOCAL_HEADER.size)
    if len(header) >= 4:
        (signature,) = struct.unpack_from("<I", header)
        if signature in (CENTRAL_DIRECTORY_SIGNATURE, END_OF_CENTRAL_DIRECTORY_SIGNATURE):
            return None
        if signature != LOCAL_HEADER_SIGNATURE:
            raise ContainerError(f"Invalid zip file: unexpected signature 0x{signature:08x}")
    if len(header) != _LOCAL_HEADER.size:
        raise ContainerError("Invalid zip file: truncated local file header")

    (
        _signature,
        _version,
        flags,
        method,
        _mtime,
        _mdate,
        _crc32,
        compressed_size,
        uncompressed_size,
        name_len,
        extra_len,
    ) = _LOCAL_HEADER.unpack(header)

    raw_name = handle.read(name_len)
    if len(raw_name) != name_len:
        raise ContainerError("Invalid zip file: truncated file name")
    try:
        name = raw_name.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ContainerError(f"Invalid zip file: file name is not UTF-8 ({exc})") from exc

    if flags & _FLAG_DATA_DESCRIPTOR and compressed_size == 0:
        raise ContainerError(f"Member {name!r} stores its sizes in a trailing data descriptor")
    if _ZIP64_MARKER in (compressed_size, uncompressed_size):
        raise ContainerError(f"Member {name!r} needs ZIP64 extensions")

    handle.seek(extra_len, io.SEEK_CUR)
    start = handle.tell()
    handle.seek(compressed_size, io.SEEK_CUR)
    return ArchiveMember(
        name=name,
        start=start,
        end=start + compressed_size,
        declared_size=uncompressed_size,
        method=method,
    )


def iter_members(handle: BinaryIO) -> Iterator[ArchiveMember]:
    """Walk the local file headers from the start of ``handle`` until the central directory."""
    handle.seek(0)
    while True:
        member = _read_member_header(handle)
        if member is None:
            return
        yield member


def read_members(handle: BinaryIO) -> dict[str, ArchiveMember]:
    return {member.name: member for member in iter_members(handle)}
