# tinystore

tinystore is a small, self-contained B+ tree index that stores its nodes in
fixed-size pages. It is meant for learning about and experimenting with
database internals.

The package is made up of these modules:

- `tinystore.pager` holds the `PagePool` class, an in-memory pool of pages
  numbered from 1. A pool can allocate, fetch and dispose of pages. It can
  also be saved to a file and loaded back. This module also defines the
  exception classes.
- `tinystore.record` holds `RID`, a record identifier made of a page number
  and a slot number, and `Record`, which pairs an identifier with its bytes.
- `tinystore.comparator` holds `AttrType` (`CHARS`, `INTS` and `FLOATS`). It
  also has the comparators and printers for attribute values and for full
  index keys.
- `tinystore.nodes` and `tinystore.internal` define how the tree is laid out
  on its pages: the `IndexFileHeader`, the `LeafNode` class and the
  `InternalNode` class.
- `tinystore.bplus_tree` holds `BplusTree`. This is a unique-key tree whose
  keys are an attribute value followed by a `RID`. It supports inserts, and
  deletes that merge or redistribute nodes. `validate_tree()` checks the
  tree's structure.

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install ".[test]"
```

## Example

```python
import struct

from tinystore.bplus_tree import BplusTree
from tinystore.comparator import AttrType
from tinystore.nodes import INVALID_PAGE_NUM, LeafNode
from tinystore.pager import PagePool
from tinystore.record import RID

pool = PagePool(8192)
tree = BplusTree.create(pool, AttrType.INTS, 4)

for i in range(100):
    tree.insert_entry(struct.pack("<i", i), RID(i + 1, 0))

tree.delete_entry(struct.pack("<i", 42), RID(43, 0))
assert tree.validate_tree()

# Walk the leaves from left to right.
leaf = tree.left_most_page()
while True:
    for i in range(leaf.size):
        print(leaf.value_at(i))
    if leaf.next_page == INVALID_PAGE_NUM:
        break
    leaf = LeafNode(tree.header, pool.get_page(leaf.next_page))

print(tree.print_tree())
```

### Creating a tree

`BplusTree.create(pool, attr_type, attr_length, internal_max_size=-1, leaf_max_size=-1)`
sets up a new tree in an empty pool. The pool's first page becomes the header
page. A negative maximum size means the tree uses as many items as fit on one
page. Otherwise, internal nodes need a maximum size of at least 3 and leaves a
maximum size of at least 2. Small maximum sizes are useful for exercising
splits and merges.

Keys are passed as bytes:

- `INTS` keys are 4-byte little-endian integers.
- `FLOATS` keys are 4-byte little-endian floats. They compare equal when they
  differ by no more than 1e-6.
- `CHARS` keys are fixed-length byte strings, padded with NUL bytes.

A key must be at least `attr_length` bytes long.

### Looking at the tree

- `find_leaf(key)` returns the leaf whose key range holds a full key, which
  you can build with `make_key(user_key, rid)`.
- `left_most_page()` and `right_most_page()` return the first and last leaves.
- `print_tree()` and `print_leafs()` log a description of the nodes and also
  return it as text.

### Saving and loading

`PagePool.save(path)` writes every page to a file. `PagePool.load(path)` reads
it back. To reattach to a tree in a loaded pool, call `BplusTree.open(pool)`.
`BplusTree.sync()` clears the pool's dirty flags and returns how many pages
were dirty.

## Errors

Failures raise exceptions derived from `tinystore.pager.StorageError`:

- `DuplicateKeyError` is raised when the same key and record id are inserted
  twice.
- `RecordNotFoundError` is raised when a deletion finds nothing, or when a
  leaf is looked up in an empty tree.
- `InvalidArgumentError` is raised for a key that is too short, an undefined
  attribute type, or node sizes out of range.
- `PageNotFoundError` is raised when a page is not allocated.
- `PageFullError` is raised when a node has no room left on its page.

## What it does not do

- tinystore is only an index. It does not store the records themselves and
  has no slotted record pages or record files. A `RID` is just a value that
  the tree keeps.
- It has no range-scan iterator. To read entries in order, walk the leaves as
  in the example above.
- The whole pool lives in memory. Pages reach disk only when `save` is called.
- It has no locking, no transactions and no command-line tool.

## Running the tests

```
pytest
```