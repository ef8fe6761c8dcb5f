"""Internal B+ tree nodes: separator keys paired with child page numbers."""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable

from tinystore.nodes import (
    INVALID_PAGE_NUM,
    PAGE_NUM_SIZE,
    IndexFileHeader,
    IndexNode,
    LeafNode,
)
from tinystore.pager import PageFullError, PageNotFoundError, PagePool

logger = logging.getLogger(__name__)

_PAGE_NUM = struct.Struct("<i")

Bytes = bytes | bytearray | memoryview
Comparator = Callable[[Bytes, Bytes], int]


class InternalNode(IndexNode):
    """An internal node; the key of its first item is never used."""

    HEADER_SIZE = IndexNode.HEADER_SIZE

    def init_empty(self) -> None:  # type: ignore[override]
        super().init_empty(False)

    @property
    def value_size(self) -> int:
        return PAGE_NUM_SIZE

    @property
    def max_size(self) -> int:
        return self.header.internal_max_size

    @property
    def min_size(self) -> int:
        return self.header.internal_max_size - self.header.internal_max_size // 2

    def _page_value(self, index: int) -> int:
        return _PAGE_NUM.unpack(self._raw_value(index))[0]

    def _child(self, page_num: int, pool: PagePool) -> IndexNode:
        return IndexNode(self.header, pool.get_page(page_num))

    def create_new_root(self, first_page_num: int, key: Bytes, page_num: int) -> None:
        """Fill an empty node with two children split by key."""
        first = bytes(self.key_size) + _PAGE_NUM.pack(first_page_num)
        second = self._make_item(key, _PAGE_NUM.pack(page_num))
        self._put_items(0, first + second)
        self._increase_size(2)

    def _search(self, comparator: Comparator, key: Bytes) -> tuple[int, int]:
        """Return the child index for key and the position a new key would take."""
        size = self.size
        if size == 0:
            return 0, 1
        lo, hi = 1, size
        while lo < hi:
            mid = (lo + hi) // 2
            if comparator(self._key(mid), key) < 0:
                lo = mid + 1
            else:
                hi = mid
        position = lo
        if position >= size or comparator(key, self._key(position)) < 0:
            return position - 1, position
        return position, position

    def lookup(self, comparator: Comparator, key: Bytes) -> int:
        """Index of the child whose subtree key belongs to."""
        return self._search(comparator, key)[0]

    def insert_position(self, comparator: Comparator, key: Bytes) -> int:
        """Position at which key would be inserted; never the first slot."""
        return self._search(comparator, key)[1]

    def insert(self, key: Bytes, page_num: int, comparator: Comparator) -> None:
        position = self.insert_position(comparator, key)
        self._insert_items(position, self._make_item(key, _PAGE_NUM.pack(page_num)))
        self._increase_size(1)

    def key_at(self, index: int) -> bytes:
        self._check_index(index)
        return self._key(index)

    def set_key_at(self, index: int, key: Bytes) -> None:
        self._check_index(index)
        self._put_items(index, self._make_item(key, self._raw_value(index)))

    def value_at(self, index: int) -> int:
        self._check_index(index)
        return self._page_value(index)

    def value_index(self, page_num: int) -> int:
        """Index of the child page_num, or -1 when it is not a child of this node."""
        return next((i for i in range(self.size) if self._page_value(i) == page_num), -1)

    def remove_at(self, index: int) -> None:
        self._check_index(index)
        self._remove_items(index, 1)

    def _copy_from(self, items: bytes, pool: PagePool) -> None:
        """Append items and make this node the parent of their children."""
        count = len(items) // self.item_size
        if self.size + count > self.capacity:
            raise PageFullError(f"page {self.page_num} has no room for more items")
        for i in range(count):
            offset = i * self.item_size + self.key_size
            (child_page_num,) = _PAGE_NUM.unpack_from(items, offset)
            self._child(child_page_num, pool).parent_page_num = self.page_num
        self._put_items(self.size, items)
        self._increase_size(count)

    def _prepend(self, item: bytes, pool: PagePool) -> None:
        (child_page_num,) = _PAGE_NUM.unpack_from(item, self.key_size)
        self._child(child_page_num, pool).parent_page_num = self.page_num
        self._insert_items(0, item)
        self._increase_size(1)

    def move_half_to(self, other: InternalNode, pool: PagePool) -> None:
        """Move the upper half of the items into the empty node other."""
        size = self.size
        move_index = size // 2
        other._copy_from(self._items(move_index, size), pool)
        self._increase_size(-(size - move_index))

    def move_to(self, other: InternalNode, pool: PagePool) -> None:
        """Move every item to the end of other."""
        other._copy_from(self._items(0, self.size), pool)
        self._increase_size(-self.size)

    def move_first_to_end(self, other: InternalNode, pool: PagePool) -> None:
        self._check_index(0)
        other._copy_from(self._item(0), pool)
        self._remove_items(0, 1)

    def move_last_to_front(self, other: InternalNode, pool: PagePool) -> None:
        last = self.size - 1
        self._check_index(last)
        other._prepend(self._item(last), pool)
        self._increase_size(-1)

    def _check_against_parent(
        self, comparator: Comparator, pool: PagePool, first_key: bytes, last_key: bytes
    ) -> bool:
        parent_page_num = self.parent_page_num
        if parent_page_num == INVALID_PAGE_NUM:
            return True
        try:
            parent = InternalNode(self.header, pool.get_page(parent_page_num))
        except PageNotFoundError:
            logger.warning("failed to fetch parent page. page num=%d", parent_page_num)
            return False
        index_in_parent = parent.value_index(self.page_num)
        if index_in_parent < 0:
            logger.warning(
                "invalid node. cannot find index in parent. this page num=%d, parent page num=%d",
                self.page_num, parent_page_num,
            )
            return False
        if index_in_parent != 0 and comparator(first_key, parent.key_at(index_in_parent)) < 0:
            logger.warning(
                "invalid node. first item should be greater than or equal to parent item. "
                "this page num=%d, parent page num=%d, index in parent=%d",
                self.page_num, parent_page_num, index_in_parent,
            )
            return False
        if index_in_parent < parent.size - 1 and comparator(
            last_key, parent.key_at(index_in_parent + 1)
        ) >= 0:
            logger.warning(
                "invalid node. last item should be less than the next item in parent. "
                "this page num=%d, parent page num=%d, parent item to compare=%d",
                self.page_num, parent_page_num, index_in_parent + 1,
            )
            return False
        return True

    def validate(self, comparator: Comparator, pool: PagePool) -> bool:  # type: ignore[override]
        """Check key order, the children's parent links and the bounds set by the parent."""
        if not IndexNode.validate(self):
            return False
        size = self.size
        for i in range(2, size):
            if comparator(self._key(i - 1), self._key(i)) >= 0:
                logger.warning(
                    "page number = %d, invalid key order. id1=%d,id2=%d, this=%s",
                    self.page_num, i - 1, i, IndexNode.__str__(self),
                )
                return False

        result = True
        for i in range(size):
            if not result:
                break
            child_page_num = self._page_value(i)
            if child_page_num < 0:
                logger.warning(
                    "this page num=%d, got invalid child page. page num=%d",
                    self.page_num, child_page_num,
                )
                continue
            try:
                child = self._child(child_page_num, pool)
            except PageNotFoundError:
                logger.warning("failed to fetch child page. page num=%d", child_page_num)
                continue
            if child.parent_page_num != self.page_num:
                logger.warning(
                    "child's parent page num is invalid. child page num=%d, "
                    "parent page num=%d, this page num=%d",
                    child.page_num, child.parent_page_num, self.page_num,
                )
                result = False
        if not result:
            return False
        if self.parent_page_num == INVALID_PAGE_NUM:
            return True
        return self._check_against_parent(comparator, pool, self._key(1), self._key(size - 1))

    def describe(self, printer: Callable[[Bytes], str]) -> str:
        children = ",".join(
            f"{{key:{printer(self._key(i))},value:{self._page_value(i)}}}"
            for i in range(self.size)
        )
        return f"{IndexNode.__str__(self)},children:[{children}]"


def validate_leaf(node: LeafNode, comparator: Comparator, pool: PagePool) -> bool:
    """Check a leaf's key order and that its keys lie within the range its parent gives it."""
    if not IndexNode.validate(node):
        return False
    if not node.check_order(comparator):
        return False
    if node.parent_page_num == INVALID_PAGE_NUM:
        return True
    view = InternalNode(node.header, node.page)
    first = node.key_at(0) if node.size else bytes(node.key_size)
    last = node.key_at(node.size - 1) if node.size else bytes(node.key_size)
    return view._check_against_parent(comparator, pool, first, last)


__all__ = ["IndexFileHeader", "InternalNode", "validate_leaf"]