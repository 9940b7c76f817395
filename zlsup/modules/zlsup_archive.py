#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
zlsup_archive.py — gzip + ustar unpacking for zlsup

Features:
 - gzip decompression with an optional size limit
 - lazy ustar walker (generator over a byte buffer with an explicit offset)
 - strip-components path normalizer that refuses names escaping the root
 - extractor for directories and regular files only
 - cancellation checked between entries

Supported tar subset:
 - type '5' directories, type '0' / NUL regular files
 - long names split across the ustar prefix and name fields
 - everything else (symlinks, hard links, pax and GNU long-name headers,
   devices) is skipped with a warning and listed in the result
 - a single all-zero block ends the archive
 - mode bits, owners and timestamps are not applied
"""

from __future__ import annotations
import io
import os
import re
import gzip
import zlib
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from zlsup_errors import (
    DecompressionFailed,
    ExtractionFailed,
    InstallCancelled,
    TarParseFailed,
    UnsafePath,
)
from zlsup_logger import get_logger, perf_timer

LOG = get_logger("archive")

BLOCK_SIZE = 512
ZERO_BLOCK = bytes(BLOCK_SIZE)
READ_CHUNK = 1024 * 64

# ustar header fields: (offset, length)
NAME_FIELD = (0, 100)
SIZE_FIELD = (124, 12)
CHKSUM_FIELD = (148, 8)
TYPEFLAG_OFFSET = 156
MAGIC_FIELD = (257, 6)
PREFIX_FIELD = (345, 155)
USTAR_MAGIC = b"ustar\0"

_OCTAL = re.compile(rb"[0-7]+")
_DRIVE = re.compile(r"^[A-Za-z]:")

Buffer = Union[bytes, bytearray, memoryview]


# ---------------------------
# Decompressor
# ---------------------------
@perf_timer("archive", "decompress")
def decompress(data: Buffer, max_bytes: int = 0) -> bytes:
    """
    Decompress a gzip container (multi-member streams accepted).
    max_bytes: refuse output larger than this (0 = no limit)
    """
    if not data:
        raise DecompressionFailed("archive is empty")
    out = io.BytesIO()
    total = 0
    try:
        with gzip.GzipFile(fileobj=io.BytesIO(data), mode="rb") as gz:
            for chunk in iter(lambda: gz.read(READ_CHUNK), b""):
                total += len(chunk)
                if max_bytes and total > max_bytes:
                    raise DecompressionFailed(f"decompressed size exceeds limit of {max_bytes} bytes")
                out.write(chunk)
    except (OSError, EOFError, zlib.error) as e:
        raise DecompressionFailed(f"invalid gzip stream: {e}") from e
    LOG.debug("decompressed %d -> %d bytes", len(data), total)
    return out.getvalue()


# ---------------------------
# Tar walker
# ---------------------------
class EntryType(Enum):
    FILE = "file"
    DIRECTORY = "directory"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class TarEntry:
    name: str
    type: EntryType
    size: int
    offset: int          # payload start in the decompressed buffer
    typeflag: bytes

    def payload(self, buf: Buffer) -> memoryview:
        return memoryview(buf)[self.offset:self.offset + self.size]


def _field(header: bytes, loc) -> bytes:
    off, length = loc
    return header[off:off + length]


def _parse_octal(raw: bytes, what: str, pos: int) -> int:
    text = raw.strip(b"\0 ")
    if not _OCTAL.fullmatch(text):
        raise TarParseFailed(f"header at offset {pos}: {what} field {raw!r} is not octal")
    return int(text, 8)


def _check_header_sum(header: bytes, pos: int):
    stored = _parse_octal(_field(header, CHKSUM_FIELD), "checksum", pos)
    off, length = CHKSUM_FIELD
    blanked = header[:off] + b" " * length + header[off + length:]
    unsigned = sum(blanked)
    # some old tar implementations summed signed chars
    signed = sum(b - 256 if b > 127 else b for b in blanked)
    if stored not in (unsigned, signed):
        raise TarParseFailed(f"header at offset {pos}: checksum mismatch ({stored} != {unsigned})")


def _entry_name(header: bytes) -> str:
    raw = _field(header, NAME_FIELD).split(b"\0", 1)[0]
    # POSIX ustar keeps the leading directories of long paths in the prefix
    # field; GNU tar ("ustar  ") uses those bytes for timestamps instead
    if _field(header, MAGIC_FIELD) == USTAR_MAGIC:
        prefix = _field(header, PREFIX_FIELD).split(b"\0", 1)[0]
        if prefix:
            raw = prefix + b"/" + raw
    return raw.decode("utf-8", errors="surrogateescape")


def _entry_type(flag: bytes) -> EntryType:
    if flag == b"5":
        return EntryType.DIRECTORY
    if flag in (b"0", b"\0"):
        return EntryType.FILE
    return EntryType.UNSUPPORTED


def walk_tar(buf: Buffer) -> Iterator[TarEntry]:
    """
    Yield the entries of a ustar stream held in ``buf``.

    Stops at the first all-zero block or when the buffer is used up.
    Raises TarParseFailed on a bad header, a partial trailing block or a
    payload that runs past the end of the buffer.
    """
    total = len(buf)
    pos = 0
    count = 0
    while True:
        remaining = total - pos
        if remaining <= 0:
            if count:
                LOG.debug("archive ended without an end-of-archive block")
            return
        if remaining < BLOCK_SIZE:
            if bytes(buf[pos:]).strip(b"\0"):
                raise TarParseFailed(f"truncated header at offset {pos} ({remaining} bytes left)")
            return
        header = bytes(buf[pos:pos + BLOCK_SIZE])
        if header == ZERO_BLOCK:
            return

        _check_header_sum(header, pos)
        name = _entry_name(header)
        size = _parse_octal(_field(header, SIZE_FIELD), "size", pos)
        flag = header[TYPEFLAG_OFFSET:TYPEFLAG_OFFSET + 1]

        data_start = pos + BLOCK_SIZE
        if data_start + size > total:
            raise TarParseFailed(
                f"entry {name!r} declares {size} bytes but only {total - data_start} remain")

        yield TarEntry(name, _entry_type(flag), size, data_start, flag)
        count += 1
        pos = data_start + -(-size // BLOCK_SIZE) * BLOCK_SIZE


# ---------------------------
# Path normalizer
# ---------------------------
def normalize_path(name: str, strip_components: int = 0) -> Optional[str]:
    """
    Drop ``strip_components`` leading segments from ``name``.
    Returns None when nothing is left (the entry is skipped), the cleaned
    relative path otherwise. Raises UnsafePath for absolute names, '..'
    segments and other names that could leave the destination root.
    """
    if strip_components < 0:
        raise ValueError("strip_components must not be negative")
    parts = name.split("/")
    if len(parts) <= strip_components:
        return None
    rest = parts[strip_components:]

    if len(rest) > 1 and rest[0] == "":
        raise UnsafePath(name, "absolute path")
    if rest and _DRIVE.match(rest[0]):
        raise UnsafePath(name, "drive-qualified path")
    for seg in rest:
        if seg == "..":
            raise UnsafePath(name, "parent directory segment")
        if "\\" in seg or "\0" in seg:
            raise UnsafePath(name, "backslash or NUL in path")

    clean = [seg for seg in rest if seg not in ("", ".")]
    if not clean:
        return None
    return "/".join(clean)


# ---------------------------
# Extractor
# ---------------------------
@dataclass
class ExtractResult:
    root: str
    files: List[str] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)
    skipped: List[Dict[str, str]] = field(default_factory=list)
    bytes_written: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root,
            "files": list(self.files),
            "directories": list(self.directories),
            "skipped": list(self.skipped),
            "bytes_written": self.bytes_written,
        }


class Extractor:
    """
    Materialize tar entries under ``dest_root``.

    Stops at the first failure. Files written before the failure are left
    in place; callers that need an all-or-nothing install must stage the
    extraction themselves.
    """

    def __init__(self, dest_root: Union[str, Path], strip_components: int = 0,
                 cancel_event: Optional[threading.Event] = None):
        if strip_components < 0:
            raise ValueError("strip_components must not be negative")
        self.root = Path(dest_root)
        self.strip_components = strip_components
        self.cancel_event = cancel_event

    def _inside_root(self, root: Path, rel: str, entry_name: str) -> Path:
        target = root / rel
        resolved = Path(os.path.realpath(target))
        try:
            resolved.relative_to(root)
        except ValueError:
            raise UnsafePath(entry_name, f"resolves to {resolved}, outside {root}") from None
        return target

    def _skip(self, result: ExtractResult, entry: TarEntry, reason: str):
        LOG.warning("skipping %r: %s", entry.name, reason)
        result.skipped.append({"name": entry.name, "reason": reason})

    @perf_timer("archive", "extract")
    def extract(self, buf: Buffer) -> ExtractResult:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            root = Path(os.path.realpath(self.root))
        except OSError as e:
            raise ExtractionFailed(str(self.root), e) from e

        result = ExtractResult(root=str(root))
        for entry in walk_tar(buf):
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise InstallCancelled(f"extraction cancelled before {entry.name!r}")

            if entry.type is EntryType.UNSUPPORTED:
                flag = entry.typeflag.decode("latin-1")
                self._skip(result, entry, f"unsupported entry type {flag!r}")
                continue
            rel = normalize_path(entry.name, self.strip_components)
            if rel is None:
                LOG.debug("stripped %r to nothing; skipping", entry.name)
                continue

            target = self._inside_root(root, rel, entry.name)
            try:
                if entry.type is EntryType.DIRECTORY:
                    target.mkdir(parents=True, exist_ok=True)
                    result.directories.append(rel)
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with open(target, "wb") as f:
                        f.write(entry.payload(buf))
                    result.files.append(rel)
                    result.bytes_written += entry.size
            except OSError as e:
                raise ExtractionFailed(str(target), e) from e
            LOG.debug("extracted %s (%s, %d bytes)", rel, entry.type.value, entry.size)

        LOG.info("extracted %d files, %d directories into %s",
                 len(result.files), len(result.directories), root)
        return result


def extract_archive(data: Buffer, dest_root: Union[str, Path], strip_components: int = 0,
                    max_bytes: int = 0, cancel_event: Optional[threading.Event] = None) -> ExtractResult:
    """Decompress ``data`` and unpack it under ``dest_root``."""
    tar_bytes = decompress(data, max_bytes=max_bytes)
    return Extractor(dest_root, strip_components, cancel_event).extract(tar_bytes)


__all__ = ["EntryType", "TarEntry", "ExtractResult", "Extractor", "decompress",
           "walk_tar", "normalize_path", "extract_archive"]
