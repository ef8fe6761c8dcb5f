"""A small paged storage engine: an in-memory page pool and a B+ tree index."""

__version__ = "0.1.0"