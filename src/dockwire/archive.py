"""Streaming tar (and gzip) archiver for build contexts.

Nothing here holds a whole tree or a whole file in memory: entries are walked
lazily, file contents are copied in bounded chunks, and compression is done
incrementally.
"""

from __future__ import annotations

import asyncio
import functools
import io
import os
import stat
import tarfile
import time
import zlib
from contextlib import contextmanager
from dataclasses import dataclass
from typing import AsyncIterator, BinaryIO, Callable, Iterable, Iterator, Union

from .errors import ArchiveError
from .logger import BoundLogger, create_logger

BLOCK_SIZE = tarfile.BLOCKSIZE
CHUNK_SIZE = 64 * 1024
END_OF_ARCHIVE = b"\0" * (2 * BLOCK_SIZE)

ContentSource = Union[bytes, BinaryIO, Callable[[], BinaryIO]]
IgnoreRule = Callable[[str], bool]


@dataclass(frozen=True)
class ArchiveEntry:
    """One member of a build context.

    ``mode`` carries the full ``st_mode`` so the file type (regular file,
    directory, symlink) travels with the permission bits. ``content`` is the
    raw bytes, an open binary file, or a callable that opens one on demand.
    """

    path: str
    mode: int
    size: int
    mtime: float
    content: ContentSource = b""
    linkname: str = ""

    @classmethod
    def from_bytes(cls, path: str, data: bytes, *, mode: int = 0o644, mtime: float | None = None) -> "ArchiveEntry":
        return cls(
            path=path,
            mode=stat.S_IFREG | mode,
            size=len(data),
            mtime=time.time() if mtime is None else mtime,
            content=data,
        )

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    @property
    def is_symlink(self) -> bool:
        return stat.S_ISLNK(self.mode)


def _tarinfo(entry: ArchiveEntry) -> tarfile.TarInfo:
    info = tarfile.TarInfo(entry.path)
    info.mode = stat.S_IMODE(entry.mode)
    info.mtime = int(entry.mtime)
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    if entry.is_dir:
        info.type = tarfile.DIRTYPE
    elif entry.is_symlink:
        info.type = tarfile.SYMTYPE
        info.linkname = entry.linkname
    else:
        info.type = tarfile.REGTYPE
        info.size = entry.size
    return info


@contextmanager
def _open_content(entry: ArchiveEntry) -> Iterator[BinaryIO]:
    content = entry.content
    if isinstance(content, (bytes, bytearray, memoryview)):
        yield io.BytesIO(content)
    elif callable(content):
        with content() as handle:
            yield handle
    else:
        # Caller-owned handle; left open.
        yield content


def _content_chunks(entry: ArchiveEntry, chunk_size: int) -> Iterator[bytes]:
    remaining = entry.size
    try:
        with _open_content(entry) as handle:
            while remaining > 0:
                chunk = handle.read(min(chunk_size, remaining))
                if not chunk:
                    raise ArchiveError(
                        f"{entry.path}: content ended after {entry.size - remaining} "
                        f"of {entry.size} declared bytes",
                        context=entry,
                    )
                remaining -= len(chunk)
                yield chunk
            if handle.read(1):
                raise ArchiveError(
                    f"{entry.path}: content is longer than the declared {entry.size} bytes",
                    context=entry,
                )
    except OSError as exc:
        raise ArchiveError(f"{entry.path}: cannot read content: {exc}", context=entry) from exc

    padding = -entry.size % BLOCK_SIZE
    if padding:
        yield b"\0" * padding


def iter_tar(
    entries: Iterable[ArchiveEntry],
    *,
    chunk_size: int = CHUNK_SIZE,
    logger: BoundLogger | None = None,
) -> Iterator[bytes]:
    """Yield a tar archive for *entries*, one header or content chunk at a time."""
    logger = (logger or create_logger()).child("archive")
    count = 0
    total = 0
    for entry in entries:
        info = _tarinfo(entry)
        if info.isreg() and isinstance(entry.content, (bytes, bytearray, memoryview)) and len(entry.content) != entry.size:
            raise ArchiveError(
                f"{entry.path}: declared size {entry.size} but {len(entry.content)} bytes supplied",
                context=entry,
            )
        header = info.tobuf(format=tarfile.PAX_FORMAT, encoding="utf-8", errors="surrogateescape")
        logger.trace("tar entry %s mode=%o size=%d", entry.path, info.mode, info.size)
        yield header
        if info.isreg():
            yield from _content_chunks(entry, chunk_size)
            total += entry.size
        count += 1
    yield END_OF_ARCHIVE
    logger.debug("Archived %d entries (%d content bytes)", count, total)


def iter_gzip(chunks: Iterable[bytes], *, level: int = 6) -> Iterator[bytes]:
    """Compress a byte stream into gzip (RFC 1952) framing incrementally."""
    compressor = zlib.compressobj(level, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
    for chunk in chunks:
        compressed = compressor.compress(chunk)
        if compressed:
            yield compressed
    yield compressor.flush()


def iter_file(
    source: str | os.PathLike[str] | BinaryIO,
    *,
    chunk_size: int = CHUNK_SIZE,
) -> Iterator[bytes]:
    """Stream an existing archive in bounded chunks.

    Paths are opened and closed here; an open handle stays with the caller.
    """
    try:
        if isinstance(source, (str, os.PathLike)):
            with open(source, "rb") as handle:
                yield from iter(functools.partial(handle.read, chunk_size), b"")
        else:
            yield from iter(functools.partial(source.read, chunk_size), b"")
    except OSError as exc:
        raise ArchiveError(f"Cannot read archive: {exc}", context=source) from exc


def archive_entries(
    entries: Iterable[ArchiveEntry],
    *,
    compress: bool = False,
    level: int = 6,
    chunk_size: int = CHUNK_SIZE,
    logger: BoundLogger | None = None,
) -> Iterator[bytes]:
    chunks = iter_tar(entries, chunk_size=chunk_size, logger=logger)
    if compress:
        return iter_gzip(chunks, level=level)
    return chunks


def _join(rel_dir: str, name: str) -> str:
    if rel_dir == ".":
        return name
    return f"{rel_dir}/{name}"


def walk_context(
    root: str | os.PathLike[str],
    ignore: IgnoreRule | None = None,
    *,
    logger: BoundLogger | None = None,
) -> Iterator[ArchiveEntry]:
    """Lazily yield the entries of a build context directory in sorted order.

    ``ignore`` receives each relative POSIX path; returning True drops the
    path, and for a directory everything beneath it.
    """
    logger = (logger or create_logger()).child("archive")
    root_path = os.path.abspath(os.fspath(root))
    if not os.path.isdir(root_path):
        raise ArchiveError(f"Build context is not a directory: {root_path}")

    def on_error(exc: OSError) -> None:
        raise ArchiveError(f"Cannot read build context: {exc}") from exc

    for dirpath, dirnames, filenames in os.walk(root_path, onerror=on_error):
        rel_dir = os.path.relpath(dirpath, root_path).replace(os.sep, "/")
        descend: list[str] = []
        for name in sorted(dirnames):
            rel = _join(rel_dir, name)
            if ignore is not None and ignore(rel):
                continue
            entry = _entry_for(os.path.join(dirpath, name), rel, logger)
            if entry is None:
                continue
            yield entry
            if entry.is_dir:
                descend.append(name)
        dirnames[:] = descend

        for name in sorted(filenames):
            rel = _join(rel_dir, name)
            if ignore is not None and ignore(rel):
                continue
            entry = _entry_for(os.path.join(dirpath, name), rel, logger)
            if entry is not None:
                yield entry


def _entry_for(full_path: str, rel: str, logger: BoundLogger) -> ArchiveEntry | None:
    try:
        st = os.lstat(full_path)
        if stat.S_ISLNK(st.st_mode):
            return ArchiveEntry(rel, st.st_mode, 0, st.st_mtime, linkname=os.readlink(full_path))
    except OSError as exc:
        raise ArchiveError(f"Cannot stat {rel}: {exc}") from exc

    if stat.S_ISDIR(st.st_mode):
        return ArchiveEntry(rel, st.st_mode, 0, st.st_mtime)
    if stat.S_ISREG(st.st_mode):
        opener = functools.partial(open, full_path, "rb")
        return ArchiveEntry(rel, st.st_mode, st.st_size, st.st_mtime, content=opener)
    logger.debug("Skipping %s: not a regular file, directory or symlink", rel)
    return None


def build_context(
    root: str | os.PathLike[str],
    *,
    ignore: IgnoreRule | None = None,
    compress: bool = False,
    logger: BoundLogger | None = None,
) -> Iterator[bytes]:
    """Archive a directory as a (optionally gzipped) tar byte stream."""
    return archive_entries(walk_context(root, ignore, logger=logger), compress=compress, logger=logger)


async def aiter_body(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    """Feed a blocking chunk iterator to an async consumer.

    Each step runs in a worker thread so file reads and compression stay off
    the event loop.
    """
    iterator = iter(chunks)
    while True:
        chunk = await asyncio.to_thread(next, iterator, None)
        if chunk is None:
            return
        yield chunk


__all__ = [
    "ArchiveEntry",
    "BLOCK_SIZE",
    "aiter_body",
    "archive_entries",
    "build_context",
    "iter_file",
    "iter_gzip",
    "iter_tar",
    "walk_context",
]
