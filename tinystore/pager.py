"""An in-memory pool of fixed-size pages that can be saved to and loaded from a file."""

from __future__ import annotations

import heapq
import struct
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_PAGE_SIZE = 8192
FIRST_PAGE_NUM = 1

_MAGIC = b"TSPG"
_FILE_HEADER = struct.Struct("<4sIii")
_PAGE_NUM = struct.Struct("<i")


class StorageError(Exception):
    """Base class for storage failures."""


class PageNotFoundError(StorageError):
    """The requested page is not allocated."""


class DuplicateKeyError(StorageError):
    """The key is already present."""


class RecordNotFoundError(StorageError):
    """No record at the given location."""


class InvalidArgumentError(StorageError, ValueError):
    """An argument is outside what the storage accepts."""


class PageFullError(StorageError):
    """The page has no room left."""


@dataclass
class Page:
    """One page: its number, its bytes and whether it changed since the last flush."""

    page_num: int
    data: bytearray
    dirty: bool = field(default=False)

    def mark_dirty(self) -> None:
        self.dirty = True


class PagePool:
    """Allocates, hands out and disposes of pages numbered from 1."""

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size <= 0:
            raise InvalidArgumentError(f"page size must be positive, got {page_size}")
        self.page_size = page_size
        self._pages: dict[int, Page] = {}
        self._next_page_num = FIRST_PAGE_NUM
        self._free: list[int] = []

    def __len__(self) -> int:
        return len(self._pages)

    def __contains__(self, page_num: object) -> bool:
        return page_num in self._pages

    def allocate_page(self) -> Page:
        """Return a new zeroed page, reusing the lowest disposed number if any."""
        if self._free:
            page_num = heapq.heappop(self._free)
        else:
            page_num = self._next_page_num
            self._next_page_num += 1
        page = Page(page_num, bytearray(self.page_size), dirty=True)
        self._pages[page_num] = page
        return page

    def get_page(self, page_num: int) -> Page:
        try:
            return self._pages[page_num]
        except KeyError:
            raise PageNotFoundError(f"page {page_num} is not allocated") from None

    def dispose_page(self, page_num: int) -> None:
        if page_num not in self._pages:
            raise PageNotFoundError(f"page {page_num} is not allocated")
        del self._pages[page_num]
        heapq.heappush(self._free, page_num)

    def page_nums(self) -> Iterator[int]:
        """Allocated page numbers in ascending order."""
        return iter(sorted(self._pages))

    def flush(self) -> int:
        """Clear every dirty flag and return how many pages were dirty."""
        dirty = [page for page in self._pages.values() if page.dirty]
        for page in dirty:
            page.dirty = False
        return len(dirty)

    def save(self, path: str | Path) -> None:
        """Write every page to path and flush."""
        with open(path, "wb") as out:
            out.write(_FILE_HEADER.pack(_MAGIC, self.page_size, self._next_page_num, len(self._pages)))
            for page_num in self.page_nums():
                out.write(_PAGE_NUM.pack(page_num))
                out.write(self._pages[page_num].data)
        self.flush()

    @classmethod
    def load(cls, path: str | Path) -> PagePool:
        """Read a pool written by save."""
        raw = Path(path).read_bytes()
        try:
            magic, page_size, next_page_num, count = _FILE_HEADER.unpack_from(raw)
        except struct.error as exc:
            raise StorageError(f"{path} is too short to be a page file") from exc
        if magic != _MAGIC:
            raise StorageError(f"{path} is not a page file")
        pool = cls(page_size)
        entry_size = _PAGE_NUM.size + page_size
        expected = _FILE_HEADER.size + count * entry_size
        if len(raw) != expected:
            raise StorageError(f"{path} holds {len(raw)} bytes, expected {expected}")
        for offset in range(_FILE_HEADER.size, expected, entry_size):
            (page_num,) = _PAGE_NUM.unpack_from(raw, offset)
            start = offset + _PAGE_NUM.size
            pool._pages[page_num] = Page(page_num, bytearray(raw[start:start + page_size]))
        pool._next_page_num = next_page_num
        pool._free = [
            num for num in range(FIRST_PAGE_NUM, next_page_num) if num not in pool._pages
        ]
        heapq.heapify(pool._free)
        return pool