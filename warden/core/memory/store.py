from __future__ import annotations

import logging
import os
import struct
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Generator, Optional

from warden.core.errors import CapacityError, ConfigurationError

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    logging.getLogger("warden.memory").warning(
        "fcntl not available (non-POSIX). Store file locking is disabled. "
        "Do not flush the same store from two processes on this platform."
    )

log = logging.getLogger("warden.memory")

PAGE_SIZE = 64 * 1024

# File image: magic, then (page_index u64, PAGE_SIZE bytes) for every touched page.
_FILE_MAGIC = b"WRDNPGS1"
_PAGE_HEADER = struct.Struct(">Q")


@contextmanager
def _locked_file(path: Path, mode: str) -> Generator[BinaryIO, None, None]:
    """Open a file and apply an exclusive flock (POSIX only)."""
    with open(path, mode) as fh:
        if _HAS_FCNTL:
            _fcntl.flock(fh, _fcntl.LOCK_EX)
        try:
            yield fh
        finally:
            if _HAS_FCNTL:
                _fcntl.flock(fh, _fcntl.LOCK_UN)


class PagedStore:
    """
    Byte-addressable store made of 64 KiB pages.

    Pages are materialised on first write; reads of untouched pages return
    zeros. With a path the image can be flushed to disk and reopened by a
    later process, which is how state survives code replacement.
    """

    def __init__(self, *, path: Optional[Path] = None):
        self._path = path
        self._pages: Dict[int, bytearray] = {}

    @classmethod
    def open(cls, path: Path) -> "PagedStore":
        store = cls(path=path)
        store._load()
        return store

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        with _locked_file(self._path, "rb") as fh:
            raw = fh.read()
        if not raw:
            return
        if not raw.startswith(_FILE_MAGIC):
            raise ConfigurationError(f"Not a warden store image: {self._path}")
        pos = len(_FILE_MAGIC)
        record = _PAGE_HEADER.size + PAGE_SIZE
        if (len(raw) - pos) % record != 0:
            raise ConfigurationError(f"Truncated store image: {self._path}")
        while pos < len(raw):
            (idx,) = _PAGE_HEADER.unpack_from(raw, pos)
            pos += _PAGE_HEADER.size
            self._pages[int(idx)] = bytearray(raw[pos: pos + PAGE_SIZE])
            pos += PAGE_SIZE
        log.info("store loaded path=%s pages=%d", self._path, len(self._pages))

    def flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with _locked_file(tmp, "wb") as fh:
            fh.write(_FILE_MAGIC)
            for idx in sorted(self._pages):
                fh.write(_PAGE_HEADER.pack(idx))
                fh.write(bytes(self._pages[idx]))
        os.replace(tmp, self._path)

    def pages_in_use(self) -> int:
        return len(self._pages)

    def snapshot(self) -> Dict[int, bytes]:
        return {idx: bytes(page) for idx, page in self._pages.items()}

    def restore(self, snapshot: Dict[int, bytes]) -> None:
        self._pages = {idx: bytearray(page) for idx, page in snapshot.items()}

    def read(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0:
            raise ValueError("offset and length must be non-negative")
        out = bytearray()
        pos = offset
        end = offset + length
        while pos < end:
            idx, inner = divmod(pos, PAGE_SIZE)
            n = min(PAGE_SIZE - inner, end - pos)
            page = self._pages.get(idx)
            out += page[inner: inner + n] if page is not None else bytes(n)
            pos += n
        return bytes(out)

    def write(self, offset: int, data: bytes) -> None:
        if offset < 0:
            raise ValueError("offset must be non-negative")
        pos = offset
        view = memoryview(data)
        while view:
            idx, inner = divmod(pos, PAGE_SIZE)
            n = min(PAGE_SIZE - inner, len(view))
            page = self._pages.get(idx)
            if page is None:
                page = self._pages[idx] = bytearray(PAGE_SIZE)
            page[inner: inner + n] = view[:n]
            view = view[n:]
            pos += n

    def region(self, start_page: int, end_page: int, *, name: str = "") -> "MemoryRegion":
        if start_page < 0 or end_page <= start_page:
            raise ConfigurationError(f"Invalid page range [{start_page}, {end_page})")
        return MemoryRegion(store=self, start_page=start_page, end_page=end_page, name=name)


@dataclass(frozen=True)
class MemoryRegion:
    """A window of the store restricted to pages [start_page, end_page)."""

    store: PagedStore
    start_page: int
    end_page: int
    name: str = ""

    @property
    def pages(self) -> int:
        return self.end_page - self.start_page

    @property
    def size_bytes(self) -> int:
        return self.pages * PAGE_SIZE

    def _check(self, offset: int, length: int) -> None:
        if offset < 0 or offset + length > self.size_bytes:
            raise CapacityError(
                region=self.name or f"[{self.start_page},{self.end_page})",
                needed=offset + length,
                capacity=self.size_bytes,
            )

    def read(self, offset: int, length: int) -> bytes:
        self._check(offset, length)
        return self.store.read(self.start_page * PAGE_SIZE + offset, length)

    def write(self, offset: int, data: bytes) -> None:
        self._check(offset, len(data))
        self.store.write(self.start_page * PAGE_SIZE + offset, data)
