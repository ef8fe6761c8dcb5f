"""A B+ tree index stored in the pages of a page pool."""

from __future__ import annotations

import logging
from collections.abc import Callable

from tinystore.comparator import AttrType, KeyComparator, KeyPrinter
from tinystore.internal import InternalNode, validate_leaf
from tinystore.nodes import (
    INVALID_PAGE_NUM,
    PAGE_NUM_SIZE,
    IndexFileHeader,
    IndexNode,
    LeafNode,
)
from tinystore.pager import (
    DuplicateKeyError,
    InvalidArgumentError,
    Page,
    PageNotFoundError,
    PagePool,
    RecordNotFoundError,
    StorageError,
)
from tinystore.record import RID

logger = logging.getLogger(__name__)

FIRST_INDEX_PAGE = 1

Bytes = bytes | bytearray | memoryview
TreeNode = LeafNode | InternalNode


class BplusTree:
    """A unique-key B+ tree whose keys are an attribute value followed by a RID."""

    def __init__(self, pool: PagePool, header: IndexFileHeader) -> None:
        self._pool: PagePool | None = pool
        self.header = header
        self.key_comparator = KeyComparator(header.attr_type, header.attr_length)
        self.key_printer = KeyPrinter(header.attr_type, header.attr_length)

    # -- lifecycle -----------------------------------------------------

    @classmethod
    def create(
        cls,
        pool: PagePool,
        attr_type: AttrType | int,
        attr_length: int,
        internal_max_size: int = -1,
        leaf_max_size: int = -1,
    ) -> BplusTree:
        """Lay out a new empty tree in pool, whose first page becomes the header page.

        Negative maximum sizes mean as many items as fit on a page.
        """
        attr_type = AttrType(attr_type)
        if attr_type is AttrType.UNDEFINED:
            raise InvalidArgumentError("attribute type must be defined")
        if attr_length <= 0:
            raise InvalidArgumentError(f"attribute length must be positive, got {attr_length}")

        key_length = attr_length + RID.SIZE
        internal_capacity = (pool.page_size - InternalNode.HEADER_SIZE) // (key_length + PAGE_NUM_SIZE)
        leaf_capacity = (pool.page_size - LeafNode.HEADER_SIZE) // (key_length + RID.SIZE)
        if internal_max_size < 0:
            internal_max_size = internal_capacity
        if leaf_max_size < 0:
            leaf_max_size = leaf_capacity
        if not 3 <= internal_max_size <= internal_capacity:
            raise InvalidArgumentError(
                f"internal max size must be between 3 and {internal_capacity}, got {internal_max_size}"
            )
        if not 2 <= leaf_max_size <= leaf_capacity:
            raise InvalidArgumentError(
                f"leaf max size must be between 2 and {leaf_capacity}, got {leaf_max_size}"
            )

        header_page = pool.allocate_page()
        if header_page.page_num != FIRST_INDEX_PAGE:
            pool.dispose_page(header_page.page_num)
            raise StorageError(
                f"header page num should be {FIRST_INDEX_PAGE} but got {header_page.page_num}; "
                "the pool is not empty"
            )

        header = IndexFileHeader(
            root_page=INVALID_PAGE_NUM,
            internal_max_size=internal_max_size,
            leaf_max_size=leaf_max_size,
            attr_length=attr_length,
            key_length=key_length,
            attr_type=attr_type,
        )
        tree = cls(pool, header)
        tree._write_header()
        logger.info("successfully created index: %s", header)
        return tree

    @classmethod
    def open(cls, pool: PagePool) -> BplusTree:
        """Attach to a tree previously created in pool."""
        header = IndexFileHeader.unpack(pool.get_page(FIRST_INDEX_PAGE).data)
        if header.attr_type is AttrType.UNDEFINED:
            raise StorageError("the first page does not hold an index header")
        logger.info("successfully opened index: %s", header)
        return cls(pool, header)

    def close(self) -> None:
        self._pool = None

    @property
    def pool(self) -> PagePool:
        if self._pool is None:
            raise StorageError("the index is closed")
        return self._pool

    def sync(self) -> int:
        """Flush the pool; returns how many pages were dirty."""
        return self.pool.flush()

    def is_empty(self) -> bool:
        return self.header.root_page == INVALID_PAGE_NUM

    def _write_header(self) -> None:
        page = self.pool.get_page(FIRST_INDEX_PAGE)
        page.data[:IndexFileHeader.SIZE] = self.header.pack()
        page.mark_dirty()

    # -- keys ----------------------------------------------------------

    def make_key(self, user_key: Bytes, rid: RID) -> bytes:
        """Build the full index key: the attribute bytes followed by the packed RID."""
        length = self.header.attr_length
        if len(user_key) < length:
            raise InvalidArgumentError(f"key needs {length} bytes, got {len(user_key)}")
        return bytes(user_key[:length]) + rid.pack()

    # -- navigation ----------------------------------------------------

    def _node(self, page: Page) -> TreeNode:
        if IndexNode(self.header, page).is_leaf:
            return LeafNode(self.header, page)
        return InternalNode(self.header, page)

    def _find_leaf_by(self, child_getter: Callable[[InternalNode], int]) -> LeafNode:
        if self.is_empty():
            raise RecordNotFoundError("the tree is empty")
        pool = self.pool
        page = pool.get_page(self.header.root_page)
        while not IndexNode(self.header, page).is_leaf:
            page = pool.get_page(child_getter(InternalNode(self.header, page)))
        return LeafNode(self.header, page)

    def find_leaf(self, key: Bytes) -> LeafNode:
        """The leaf whose key range holds key."""
        return self._find_leaf_by(lambda node: node.value_at(node.lookup(self.key_comparator, key)))

    def left_most_page(self) -> LeafNode:
        return self._find_leaf_by(lambda node: node.value_at(0))

    def right_most_page(self) -> LeafNode:
        return self._find_leaf_by(lambda node: node.value_at(node.size - 1))

    # -- insertion -----------------------------------------------------

    def insert_entry(self, user_key: Bytes, rid: RID) -> None:
        """Add (user_key, rid); raises DuplicateKeyError when the pair is already present."""
        if user_key is None or rid is None:
            raise InvalidArgumentError("key and rid are both required")
        key = self.make_key(user_key, rid)
        if self.is_empty():
            self._create_new_tree(key, rid)
            return
        self._insert_into_leaf(self.find_leaf(key), key, rid)

    def _create_new_tree(self, key: bytes, rid: RID) -> None:
        if not self.is_empty():
            raise StorageError(
                f"cannot create a new tree while the root page {self.header.root_page} is valid"
            )
        leaf = LeafNode(self.header, self.pool.allocate_page())
        leaf.init_empty()
        leaf.insert(0, key, rid)
        self.header.root_page = leaf.page_num
        self._write_header()

    def _split(self, node: TreeNode) -> TreeNode:
        new_node = type(node)(self.header, self.pool.allocate_page())
        new_node.init_empty()
        new_node.parent_page_num = node.parent_page_num
        node.move_half_to(new_node, self.pool)
        return new_node

    def _insert_into_leaf(self, leaf: LeafNode, key: bytes, rid: RID) -> None:
        position, exists = leaf.lookup(self.key_comparator, key)
        if exists:
            raise DuplicateKeyError(f"entry {{{rid}}} already exists")

        if leaf.size < leaf.max_size:
            leaf.insert(position, key, rid)
            return

        new_leaf = self._split(leaf)
        new_leaf.prev_page = leaf.page_num
        new_leaf.next_page = leaf.next_page
        new_leaf.parent_page_num = leaf.parent_page_num
        leaf.next_page = new_leaf.page_num

        if new_leaf.next_page != INVALID_PAGE_NUM:
            next_leaf = LeafNode(self.header, self.pool.get_page(new_leaf.next_page))
            next_leaf.prev_page = new_leaf.page_num

        if position < leaf.size:
            leaf.insert(position, key, rid)
        else:
            new_leaf.insert(position - leaf.size, key, rid)

        self._insert_into_parent(leaf, new_leaf, new_leaf.key_at(0))

    def _insert_into_parent(self, node: TreeNode, new_node: TreeNode, key: bytes) -> None:
        parent_page_num = node.parent_page_num
        if parent_page_num == INVALID_PAGE_NUM:
            root = InternalNode(self.header, self.pool.allocate_page())
            root.init_empty()
            root.create_new_root(node.page_num, key, new_node.page_num)
            node.parent_page_num = root.page_num
            new_node.parent_page_num = root.page_num
            self.header.root_page = root.page_num
            self._write_header()
            return

        parent = InternalNode(self.header, self.pool.get_page(parent_page_num))
        if parent.size < parent.max_size:
            parent.insert(key, new_node.page_num, self.key_comparator)
            new_node.parent_page_num = parent_page_num
            return

        new_parent = self._split(parent)
        if self.key_comparator(key, new_parent.key_at(0)) > 0:
            new_parent.insert(key, new_node.page_num, self.key_comparator)
            new_node.parent_page_num = new_parent.page_num
        else:
            parent.insert(key, new_node.page_num, self.key_comparator)
            new_node.parent_page_num = parent.page_num
        self._insert_into_parent(parent, new_parent, new_parent.key_at(0))

    # -- deletion ------------------------------------------------------

    def delete_entry(self, user_key: Bytes, rid: RID) -> None:
        """Remove (user_key, rid); raises RecordNotFoundError when it is absent."""
        key = self.make_key(user_key, rid)
        leaf = self.find_leaf(key)
        if not leaf.remove(key, self.key_comparator):
            raise RecordNotFoundError(f"entry {{{rid}}} does not exist")
        if leaf.size >= leaf.min_size:
            return
        self._coalesce_or_redistribute(leaf)

    def _coalesce_or_redistribute(self, node: TreeNode) -> None:
        if node.size >= node.min_size:
            return

        parent_page_num = node.parent_page_num
        if parent_page_num == INVALID_PAGE_NUM:
            if node.size <= 1:
                self._adjust_root(node)
            return

        parent = InternalNode(self.header, self.pool.get_page(parent_page_num))
        index = parent.value_index(node.page_num)
        if index < 0:
            raise StorageError(
                f"page {node.page_num} is not a child of its parent page {parent_page_num}"
            )
        neighbor_page_num = parent.value_at(1) if index == 0 else parent.value_at(index - 1)
        neighbor = type(node)(self.header, self.pool.get_page(neighbor_page_num))

        if node.size + neighbor.size > node.max_size:
            self._redistribute(neighbor, node, parent, index)
        else:
            self._coalesce(neighbor, node, parent, index)

    def _coalesce(self, neighbor: TreeNode, node: TreeNode, parent: InternalNode, index: int) -> None:
        if index == 0:
            left, right = node, neighbor
            index += 1
        else:
            left, right = neighbor, node

        parent.remove_at(index)
        right.move_to(left, self.pool)
        self.pool.dispose_page(right.page_num)
        self._coalesce_or_redistribute(parent)

    def _redistribute(
        self, neighbor: TreeNode, node: TreeNode, parent: InternalNode, index: int
    ) -> None:
        if neighbor.size < node.size:
            logger.error(
                "got invalid nodes. neighbor node size %d, this node size %d",
                neighbor.size, node.size,
            )
        if index == 0:
            neighbor.move_first_to_end(node, self.pool)
            parent.set_key_at(index + 1, neighbor.key_at(0))
        else:
            neighbor.move_last_to_front(node, self.pool)
            parent.set_key_at(index, node.key_at(0))

    def _adjust_root(self, root: TreeNode) -> None:
        if root.is_leaf and root.size > 0:
            return
        if root.is_leaf:
            self.header.root_page = INVALID_PAGE_NUM
        else:
            internal = InternalNode(self.header, root.page)
            child_page_num = internal.value_at(0)
            IndexNode(self.header, self.pool.get_page(child_page_num)).parent_page_num = INVALID_PAGE_NUM
            self.header.root_page = child_page_num
        self._write_header()
        self.pool.dispose_page(root.page_num)

    # -- checks --------------------------------------------------------

    def _validate_node_recursive(self, page: Page) -> bool:
        node = self._node(page)
        if isinstance(node, LeafNode):
            return validate_leaf(node, self.key_comparator, self.pool)
        if not node.validate(self.key_comparator, self.pool):
            return False
        for i in range(node.size):
            try:
                child_page = self.pool.get_page(node.value_at(i))
            except PageNotFoundError:
                logger.warning("failed to fetch child page. page id=%d", node.value_at(i))
                return False
            if not self._validate_node_recursive(child_page):
                return False
        return True

    def _validate_leaf_link(self) -> bool:
        leaf = self.left_most_page()
        if leaf.prev_page != INVALID_PAGE_NUM:
            logger.warning(
                "invalid page. current_page_num=%d, prev page num should be %d but got %d",
                leaf.page_num, INVALID_PAGE_NUM, leaf.prev_page,
            )
            return False

        result = True
        prev_page_num: int | None = None
        prev_key: bytes | None = None
        while True:
            if leaf.size == 0:
                logger.warning("invalid page. leaf page %d is empty", leaf.page_num)
                return False
            if prev_key is not None:
                if leaf.prev_page != prev_page_num:
                    logger.warning(
                        "invalid page. current_page_num=%d, prev page num should be %d but got %d",
                        leaf.page_num, prev_page_num, leaf.prev_page,
                    )
                    result = False
                if self.key_comparator(prev_key, leaf.key_at(0)) >= 0:
                    logger.warning("invalid page. current first key is not bigger than last")
                    result = False
            prev_key = leaf.key_at(leaf.size - 1)
            prev_page_num = leaf.page_num
            if not result or leaf.next_page == INVALID_PAGE_NUM:
                return result
            try:
                leaf = LeafNode(self.header, self.pool.get_page(leaf.next_page))
            except PageNotFoundError:
                logger.warning("failed to fetch next page. page num=%d", leaf.next_page)
                return False

    def validate_tree(self) -> bool:
        """Check every node and the chain of leaves."""
        if self.is_empty():
            return True
        try:
            root_page = self.pool.get_page(self.header.root_page)
        except PageNotFoundError:
            logger.warning("failed to fetch root page. page id=%d", self.header.root_page)
            return False
        if not self._validate_node_recursive(root_page) or not self._validate_leaf_link():
            logger.warning("current B+ tree is invalid")
            self.print_tree()
            return False
        logger.info("great! current tree is valid")
        return True

    # -- printing ------------------------------------------------------

    def _describe_recursive(self, page: Page, lines: list[str]) -> None:
        node = self._node(page)
        if isinstance(node, LeafNode):
            lines.append(f"leaf node: {node.describe(self.key_printer)}")
            return
        lines.append(f"internal node: {node.describe(self.key_printer)}")
        for i in range(node.size):
            self._describe_recursive(self.pool.get_page(node.value_at(i)), lines)

    def print_tree(self) -> str:
        """Log every node, top down, and return the same text."""
        if self.is_empty():
            lines = ["tree is empty"]
        else:
            lines = [f"bplus tree. file header: {self.header}"]
            self._describe_recursive(self.pool.get_page(self.header.root_page), lines)
        for line in lines:
            logger.info("%s", line)
        return "\n".join(lines)

    def print_leafs(self) -> str:
        """Log every leaf from left to right and return the same text."""
        lines = []
        if self.is_empty():
            lines.append("empty tree")
        else:
            leaf = self.left_most_page()
            while True:
                lines.append(f"leaf info: {leaf.describe(self.key_printer)}")
                if leaf.next_page == INVALID_PAGE_NUM:
                    break
                leaf = LeafNode(self.header, self.pool.get_page(leaf.next_page))
        for line in lines:
            logger.info("%s", line)
        return "\n".join(lines)