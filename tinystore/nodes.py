"""On-page layout of B+ tree nodes: the file header, the common node header and leaf nodes."""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable
from dataclasses import dataclass

from tinystore.comparator import AttrType, KeyComparator
from tinystore.pager import DEFAULT_PAGE_SIZE, InvalidArgumentError, Page, PageFullError, PagePool
from tinystore.record import RID

logger = logging.getLogger(__name__)

INVALID_PAGE_NUM = -1
PAGE_NUM_SIZE = 4

_FILE_HEADER = struct.Struct("<6i")
# is_leaf (padded to four bytes), key_num, parent
_NODE_HEADER = struct.Struct("<?3xii")
_PAGE_NUM = struct.Struct("<i")
_LEAF_LINKS = struct.Struct("<ii")

Bytes = bytes | bytearray | memoryview


@dataclass
class IndexFileHeader:
    """Meta information of a B+ tree, kept on the first page of its pool."""

    root_page: int = INVALID_PAGE_NUM
    internal_max_size: int = 0
    leaf_max_size: int = 0
    attr_length: int = 0
    key_length: int = 0
    attr_type: AttrType = AttrType.UNDEFINED

    SIZE = _FILE_HEADER.size

    def pack(self) -> bytes:
        return _FILE_HEADER.pack(
            self.root_page,
            self.internal_max_size,
            self.leaf_max_size,
            self.attr_length,
            self.key_length,
            int(self.attr_type),
        )

    @classmethod
    def unpack(cls, data: Bytes) -> IndexFileHeader:
        try:
            fields = _FILE_HEADER.unpack_from(data)
        except struct.error as exc:
            raise ValueError(f"an index file header needs {cls.SIZE} bytes, got {len(data)}") from exc
        root_page, internal_max, leaf_max, attr_length, key_length, attr_type = fields
        return cls(root_page, internal_max, leaf_max, attr_length, key_length, AttrType(attr_type))

    def __str__(self) -> str:
        return (
            f"attr_length:{self.attr_length},"
            f"key_length:{self.key_length},"
            f"attr_type:{int(self.attr_type)},"
            f"root_page:{self.root_page},"
            f"internal_max_size:{self.internal_max_size},"
            f"leaf_max_size:{self.leaf_max_size};"
        )


def calc_internal_page_capacity(attr_length: int) -> int:
    """Entries that fit an internal node on a default-sized page."""
    item_size = attr_length + RID.SIZE + PAGE_NUM_SIZE
    return (DEFAULT_PAGE_SIZE - IndexNode.HEADER_SIZE) // item_size


def calc_leaf_page_capacity(attr_length: int) -> int:
    """Entries that fit a leaf node on a default-sized page."""
    item_size = attr_length + RID.SIZE + RID.SIZE
    return (DEFAULT_PAGE_SIZE - LeafNode.HEADER_SIZE) // item_size


class IndexNode:
    """View of the common part of a tree node stored on a page."""

    HEADER_SIZE = _NODE_HEADER.size

    def __init__(self, header: IndexFileHeader, page: Page) -> None:
        self.header = header
        self.page = page

    # -- header fields -------------------------------------------------

    def _fields(self) -> tuple[bool, int, int]:
        return _NODE_HEADER.unpack_from(self.page.data)

    def _store(self, is_leaf: bool, key_num: int, parent: int) -> None:
        _NODE_HEADER.pack_into(self.page.data, 0, is_leaf, key_num, parent)
        self.page.mark_dirty()

    def init_empty(self, leaf: bool) -> None:
        self._store(leaf, 0, INVALID_PAGE_NUM)

    @property
    def page_num(self) -> int:
        return self.page.page_num

    @property
    def is_leaf(self) -> bool:
        return self._fields()[0]

    @property
    def size(self) -> int:
        return self._fields()[1]

    def _increase_size(self, n: int) -> None:
        is_leaf, key_num, parent = self._fields()
        self._store(is_leaf, key_num + n, parent)

    @property
    def parent_page_num(self) -> int:
        return self._fields()[2]

    @parent_page_num.setter
    def parent_page_num(self, page_num: int) -> None:
        is_leaf, key_num, _ = self._fields()
        self._store(is_leaf, key_num, page_num)

    @property
    def key_size(self) -> int:
        return self.header.key_length

    @property
    def value_size(self) -> int:
        return RID.SIZE

    @property
    def item_size(self) -> int:
        return self.key_size + self.value_size

    @property
    def capacity(self) -> int:
        """Items that physically fit on the page."""
        return (len(self.page.data) - self.HEADER_SIZE) // self.item_size

    # -- raw item access -----------------------------------------------

    def _offset(self, index: int) -> int:
        return self.HEADER_SIZE + index * self.item_size

    def _items(self, start: int, end: int) -> bytes:
        return bytes(self.page.data[self._offset(start):self._offset(end)])

    def _item(self, index: int) -> bytes:
        return self._items(index, index + 1)

    def _key(self, index: int) -> bytes:
        offset = self._offset(index)
        return bytes(self.page.data[offset:offset + self.key_size])

    def _raw_value(self, index: int) -> bytes:
        offset = self._offset(index) + self.key_size
        return bytes(self.page.data[offset:offset + self.value_size])

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.size:
            raise IndexError(f"index {index} out of range for node of size {self.size}")

    def _put_items(self, index: int, blob: bytes) -> None:
        end = self._offset(index) + len(blob)
        if end > len(self.page.data):
            raise PageFullError(f"page {self.page_num} has no room for more items")
        self.page.data[self._offset(index):end] = blob
        self.page.mark_dirty()

    def _insert_items(self, index: int, blob: bytes) -> None:
        """Shift items from index rightwards and place blob there; size is not changed."""
        count = len(blob) // self.item_size
        if self.size + count > self.capacity:
            raise PageFullError(f"page {self.page_num} has no room for more items")
        tail = self._items(index, self.size)
        self._put_items(index + count, tail)
        self._put_items(index, blob)

    def _remove_items(self, index: int, count: int) -> None:
        tail = self._items(index + count, self.size)
        self._put_items(index, tail)
        self._increase_size(-count)

    def _make_item(self, key: Bytes, value: bytes) -> bytes:
        if len(key) < self.key_size:
            raise InvalidArgumentError(f"key needs {self.key_size} bytes, got {len(key)}")
        return bytes(key[:self.key_size]) + value

    # -- checks --------------------------------------------------------

    def validate(self) -> bool:
        """Check the root-page invariants; other pages always pass."""
        if self.parent_page_num == INVALID_PAGE_NUM:
            if self.size < 1:
                logger.warning("root page has no item")
                return False
            if not self.is_leaf and self.size < 2:
                logger.warning("root page internal node has less than 2 child. size=%d", self.size)
                return False
        return True

    def __str__(self) -> str:
        return (
            f"PageNum:{self.page_num},is_leaf:{int(self.is_leaf)},"
            f"key_num:{self.size},parent:{self.parent_page_num},"
        )


class LeafNode(IndexNode):
    """A leaf: sorted (key, RID) items plus links to its neighbouring leaves."""

    HEADER_SIZE = IndexNode.HEADER_SIZE + _LEAF_LINKS.size
    _LINKS_OFFSET = IndexNode.HEADER_SIZE

    def init_empty(self) -> None:  # type: ignore[override]
        super().init_empty(True)
        _LEAF_LINKS.pack_into(self.page.data, self._LINKS_OFFSET, INVALID_PAGE_NUM, INVALID_PAGE_NUM)

    @property
    def prev_page(self) -> int:
        return _LEAF_LINKS.unpack_from(self.page.data, self._LINKS_OFFSET)[0]

    @prev_page.setter
    def prev_page(self, page_num: int) -> None:
        _PAGE_NUM.pack_into(self.page.data, self._LINKS_OFFSET, page_num)
        self.page.mark_dirty()

    @property
    def next_page(self) -> int:
        return _LEAF_LINKS.unpack_from(self.page.data, self._LINKS_OFFSET)[1]

    @next_page.setter
    def next_page(self, page_num: int) -> None:
        _PAGE_NUM.pack_into(self.page.data, self._LINKS_OFFSET + _PAGE_NUM.size, page_num)
        self.page.mark_dirty()

    @property
    def max_size(self) -> int:
        return self.header.leaf_max_size

    @property
    def min_size(self) -> int:
        return self.header.leaf_max_size - self.header.leaf_max_size // 2

    def key_at(self, index: int) -> bytes:
        self._check_index(index)
        return self._key(index)

    def value_at(self, index: int) -> RID:
        self._check_index(index)
        return RID.unpack(self._raw_value(index))

    def lookup(self, comparator: Callable[[Bytes, Bytes], int], key: Bytes) -> tuple[int, bool]:
        """Return the insert position of key and whether key is already there."""
        lo, hi = 0, self.size
        while lo < hi:
            mid = (lo + hi) // 2
            if comparator(self._key(mid), key) < 0:
                lo = mid + 1
            else:
                hi = mid
        found = lo < self.size and comparator(self._key(lo), key) == 0
        return lo, found

    def insert(self, index: int, key: Bytes, value: RID) -> None:
        if not 0 <= index <= self.size:
            raise IndexError(f"insert position {index} out of range for node of size {self.size}")
        self._insert_items(index, self._make_item(key, value.pack()))
        self._increase_size(1)

    def remove_at(self, index: int) -> None:
        self._check_index(index)
        self._remove_items(index, 1)

    def remove(self, key: Bytes, comparator: KeyComparator) -> bool:
        """Remove key if present and tell whether it was."""
        index, found = self.lookup(comparator, key)
        if found:
            self.remove_at(index)
        return found

    def _append(self, item: bytes) -> None:
        self._insert_items(self.size, item)
        self._increase_size(1)

    def _prepend(self, item: bytes) -> None:
        self._insert_items(0, item)
        self._increase_size(1)

    def move_half_to(self, other: LeafNode, pool: PagePool) -> None:
        """Move the upper half of the items into the empty node other."""
        size = self.size
        move_index = size // 2
        count = size - move_index
        other._put_items(0, self._items(move_index, size))
        other._increase_size(count)
        self._increase_size(-count)

    def move_first_to_end(self, other: LeafNode, pool: PagePool) -> None:
        self._check_index(0)
        other._append(self._item(0))
        self._remove_items(0, 1)

    def move_last_to_front(self, other: LeafNode, pool: PagePool) -> None:
        last = self.size - 1
        self._check_index(last)
        other._prepend(self._item(last))
        self._increase_size(-1)

    def move_to(self, other: LeafNode, pool: PagePool) -> None:
        """Move every item to the left neighbour other and unlink this leaf."""
        count = self.size
        if other.size + count > other.capacity:
            raise PageFullError(f"page {other.page_num} has no room for more items")
        other._put_items(other.size, self._items(0, count))
        other._increase_size(count)
        self._increase_size(-count)

        next_page_num = self.next_page
        other.next_page = next_page_num
        if next_page_num != INVALID_PAGE_NUM:
            next_node = LeafNode(self.header, pool.get_page(next_page_num))
            next_node.prev_page = other.page_num

    def check_order(self, comparator: Callable[[Bytes, Bytes], int]) -> bool:
        """Tell whether keys are strictly ascending."""
        for i in range(1, self.size):
            if comparator(self._key(i - 1), self._key(i)) >= 0:
                logger.warning(
                    "page number = %d, invalid key order. id1=%d,id2=%d, this=%s",
                    self.page_num, i - 1, i, self,
                )
                return False
        return True

    def describe(self, printer: Callable[[Bytes], str]) -> str:
        values = ",".join(printer(self._key(i)) for i in range(self.size))
        return (
            f"{IndexNode.__str__(self)},prev page:{self.prev_page},"
            f"next page:{self.next_page},values=[{values}]"
        )