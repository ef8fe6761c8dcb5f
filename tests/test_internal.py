import struct

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tinystore.comparator import AttrType, KeyComparator, KeyPrinter
from tinystore.internal import InternalNode, validate_leaf
from tinystore.nodes import INVALID_PAGE_NUM, IndexFileHeader, LeafNode
from tinystore.pager import PagePool
from tinystore.record import RID

HEADER = IndexFileHeader(
    root_page=INVALID_PAGE_NUM,
    internal_max_size=8,
    leaf_max_size=8,
    attr_length=4,
    key_length=4 + RID.SIZE,
    attr_type=AttrType.INTS,
)
COMP = KeyComparator(AttrType.INTS, 4)


def key(value):
    return struct.pack("<i", value) + RID(1, value).pack()


def new_internal(pool):
    node = InternalNode(HEADER, pool.allocate_page())
    node.init_empty()
    return node


def make_leaf(pool, values, parent):
    leaf = LeafNode(HEADER, pool.allocate_page())
    leaf.init_empty()
    for i, v in enumerate(values):
        leaf.insert(i, key(v), RID(1, v))
    leaf.parent_page_num = parent
    return leaf


def build(pool, separators):
    """An internal root whose leaf children respect the given separators."""
    root = new_internal(pool)
    leaves = [make_leaf(pool, [separators[0] - 1], root.page_num)]
    leaves += [make_leaf(pool, [s], root.page_num) for s in separators]
    root.create_new_root(leaves[0].page_num, key(separators[0]), leaves[1].page_num)
    for s, leaf in zip(separators[1:], leaves[2:]):
        root.insert(key(s), leaf.page_num, COMP)
    return root, leaves


def values(node):
    return [node.value_at(i) for i in range(node.size)]


def test_create_new_root_layout():
    pool = PagePool()
    node = new_internal(pool)
    node.create_new_root(7, key(5), 9)
    assert values(node) == [7, 9]
    assert node.key_at(1) == key(5)
    assert node.key_at(0) == bytes(HEADER.key_length)
    assert not node.is_leaf


def test_empty_node_lookup():
    pool = PagePool()
    node = new_internal(pool)
    assert node.lookup(COMP, key(3)) == 0
    assert node.insert_position(COMP, key(3)) == 1


def test_lookup_routes_to_child():
    pool = PagePool()
    root, leaves = build(pool, [10, 20, 30])
    pages = [leaf.page_num for leaf in leaves]
    assert root.value_at(root.lookup(COMP, key(1))) == pages[0]
    assert root.value_at(root.lookup(COMP, key(10))) == pages[1]
    assert root.value_at(root.lookup(COMP, key(15))) == pages[1]
    assert root.value_at(root.lookup(COMP, key(20))) == pages[2]
    assert root.value_at(root.lookup(COMP, key(99))) == pages[3]


def test_insert_keeps_keys_sorted():
    pool = PagePool()
    node = new_internal(pool)
    node.create_new_root(100, key(50), 101)
    node.insert(key(70), 102, COMP)
    node.insert(key(60), 103, COMP)
    assert [node.key_at(i) for i in range(1, node.size)] == [key(50), key(60), key(70)]
    assert values(node) == [100, 101, 103, 102]
    assert node.insert_position(COMP, key(55)) == node.value_index(103)


def test_value_index_and_remove():
    pool = PagePool()
    node = new_internal(pool)
    node.create_new_root(100, key(50), 101)
    node.insert(key(70), 102, COMP)
    assert node.value_index(102) == node.size - 1
    assert node.value_index(555) == -1
    node.remove_at(node.value_index(101))
    assert values(node) == [100, 102]
    assert node.key_at(1) == key(70)


def test_set_key_at_keeps_value():
    pool = PagePool()
    node = new_internal(pool)
    node.create_new_root(100, key(50), 101)
    node.set_key_at(1, key(42))
    assert node.key_at(1) == key(42)
    assert node.value_at(1) == 101


def test_out_of_range_access_raises():
    pool = PagePool()
    node = new_internal(pool)
    node.create_new_root(100, key(50), 101)
    with pytest.raises(IndexError):
        node.key_at(node.size)
    with pytest.raises(IndexError):
        node.value_at(-1)
    with pytest.raises(IndexError):
        node.remove_at(node.size)


def test_min_and_max_size_follow_header():
    pool = PagePool()
    node = new_internal(pool)
    assert node.max_size == HEADER.internal_max_size
    assert node.min_size + HEADER.internal_max_size // 2 == HEADER.internal_max_size


def test_move_half_to_reparents_children():
    pool = PagePool()
    root, leaves = build(pool, [10, 20, 30])
    before = values(root)
    other = new_internal(pool)
    root.move_half_to(other, pool)
    assert values(root) + values(other) == before
    assert root.size >= 1 and other.size >= 1
    for page_num in values(other):
        assert LeafNode(HEADER, pool.get_page(page_num)).parent_page_num == other.page_num
    for page_num in values(root):
        assert LeafNode(HEADER, pool.get_page(page_num)).parent_page_num == root.page_num


def two_nodes(pool):
    left, left_leaves = build(pool, [10])
    right, right_leaves = build(pool, [30])
    return left, right, [l.page_num for l in left_leaves], [l.page_num for l in right_leaves]


def test_move_first_to_end():
    pool = PagePool()
    left, right, lp, rp = two_nodes(pool)
    right.move_first_to_end(left, pool)
    assert values(left) == lp + rp[:1]
    assert values(right) == rp[1:]
    assert LeafNode(HEADER, pool.get_page(rp[0])).parent_page_num == left.page_num


def test_move_last_to_front():
    pool = PagePool()
    left, right, lp, rp = two_nodes(pool)
    left.move_last_to_front(right, pool)
    assert values(right) == lp[-1:] + rp
    assert values(left) == lp[:-1]
    assert LeafNode(HEADER, pool.get_page(lp[-1])).parent_page_num == right.page_num


def test_move_to_empties_node():
    pool = PagePool()
    left, right, lp, rp = two_nodes(pool)
    right.move_to(left, pool)
    assert right.size == 0
    assert values(left) == lp + rp
    assert all(LeafNode(HEADER, pool.get_page(p)).parent_page_num == left.page_num for p in rp)


def test_validate_good_root():
    pool = PagePool()
    root, _ = build(pool, [10, 20])
    assert root.validate(COMP, pool) is True


def test_validate_detects_wrong_parent():
    pool = PagePool()
    root, leaves = build(pool, [10, 20])
    leaves[1].parent_page_num = 999
    assert root.validate(COMP, pool) is False


def test_validate_root_with_single_child_fails():
    pool = PagePool()
    root, _ = build(pool, [10])
    root.remove_at(1)
    assert root.validate(COMP, pool) is False


def test_validate_child_internal_against_parent():
    pool = PagePool()
    top = new_internal(pool)
    left, _ = build(pool, [10])
    right, _ = build(pool, [30])
    top.create_new_root(left.page_num, key(20), right.page_num)
    left.parent_page_num = top.page_num
    right.parent_page_num = top.page_num
    assert left.validate(COMP, pool) is True
    assert right.validate(COMP, pool) is True
    right.set_key_at(1, key(15))
    assert right.validate(COMP, pool) is False


def test_validate_leaf_in_range():
    pool = PagePool()
    _, leaves = build(pool, [10, 20])
    assert all(validate_leaf(leaf, COMP, pool) for leaf in leaves)


def test_validate_leaf_below_separator():
    pool = PagePool()
    _, leaves = build(pool, [10, 20])
    leaves[1].insert(0, key(5), RID(1, 5))
    assert validate_leaf(leaves[1], COMP, pool) is False


def test_validate_leaf_above_next_separator():
    pool = PagePool()
    _, leaves = build(pool, [10, 20])
    leaves[0].insert(leaves[0].size, key(25), RID(1, 25))
    assert validate_leaf(leaves[0], COMP, pool) is False


def test_validate_leaf_not_in_parent():
    pool = PagePool()
    root, _ = build(pool, [10])
    stray = make_leaf(pool, [50], root.page_num)
    assert validate_leaf(stray, COMP, pool) is False


def test_describe_lists_children():
    pool = PagePool()
    node = new_internal(pool)
    node.create_new_root(100, key(5), 101)
    printer = KeyPrinter(AttrType.INTS, 4)
    text = node.describe(printer)
    assert text.startswith(str(node) + ",children:[")
    assert f"{{key:{printer(key(5))},value:101}}" in text
    assert "value:100}" in text
    assert text.endswith("]")


@settings(max_examples=50)
@given(st.lists(st.integers(-10_000, 10_000), min_size=1, max_size=40, unique=True))
def test_inserted_keys_route_to_their_children(keys):
    pool = PagePool()
    node = new_internal(pool)
    node.create_new_root(999, key(keys[0]), 1000)
    for i, v in enumerate(keys[1:], start=1):
        node.insert(key(v), 1000 + i, COMP)
    assert node.size == len(keys) + 1
    stored = [node.key_at(i) for i in range(1, node.size)]
    assert stored == [key(v) for v in sorted(keys)]
    for i, v in enumerate(keys):
        assert node.value_at(node.lookup(COMP, key(v))) == 1000 + i
    assert node.value_at(node.lookup(COMP, key(min(keys) - 1))) == 999