"""Comparison and printing of attribute values and index keys."""

from __future__ import annotations

import struct
from enum import IntEnum

from tinystore.record import RID

EPSILON = 1e-6

_INT = struct.Struct("<i")
_FLOAT = struct.Struct("<f")


class AttrType(IntEnum):
    UNDEFINED = 0
    CHARS = 1
    INTS = 2
    FLOATS = 3


def compare_int(a: int, b: int) -> int:
    return a - b


def compare_float(a: float, b: float) -> int:
    """Compare with a tolerance of EPSILON; returns -1, 0 or 1."""
    diff = a - b
    if diff > EPSILON:
        return 1
    if diff < -EPSILON:
        return -1
    return 0


def _signed(byte: int) -> int:
    return byte - 256 if byte > 127 else byte


def _byte_at(data: bytes | bytearray | memoryview, index: int) -> int:
    return data[index] if index < len(data) else 0


def compare_string(
    a: bytes | bytearray | memoryview,
    a_max_length: int,
    b: bytes | bytearray | memoryview,
    b_max_length: int,
) -> int:
    """Compare NUL-terminated byte strings held in fields of the given lengths."""
    maxlen = min(a_max_length, b_max_length)
    a_str = bytes(a[:maxlen]).split(b"\0", 1)[0]
    b_str = bytes(b[:maxlen]).split(b"\0", 1)[0]
    for ca, cb in zip(a_str + b"\0", b_str + b"\0"):
        if ca != cb:
            return ca - cb

    if a_max_length > maxlen:
        return _signed(_byte_at(a, maxlen))
    if b_max_length > maxlen:
        return -_signed(_byte_at(b, maxlen))
    return 0


class AttrComparator:
    """Compares two encoded attribute values of one type."""

    def __init__(self, attr_type: AttrType | int, attr_length: int) -> None:
        self.attr_type = AttrType(attr_type)
        self.attr_length = attr_length

    def __call__(self, v1: bytes | bytearray | memoryview, v2: bytes | bytearray | memoryview) -> int:
        if self.attr_type is AttrType.INTS:
            return compare_int(_INT.unpack_from(v1)[0], _INT.unpack_from(v2)[0])
        if self.attr_type is AttrType.FLOATS:
            return compare_float(_FLOAT.unpack_from(v1)[0], _FLOAT.unpack_from(v2)[0])
        if self.attr_type is AttrType.CHARS:
            return compare_string(v1, self.attr_length, v2, self.attr_length)
        raise ValueError(f"unknown attr type {self.attr_type!r}")


class KeyComparator:
    """Compares index keys: the attribute first, then the trailing RID."""

    def __init__(self, attr_type: AttrType | int, attr_length: int) -> None:
        self.attr_comparator = AttrComparator(attr_type, attr_length)

    @property
    def attr_length(self) -> int:
        return self.attr_comparator.attr_length

    def __call__(self, v1: bytes | bytearray | memoryview, v2: bytes | bytearray | memoryview) -> int:
        result = self.attr_comparator(v1, v2)
        if result != 0:
            return result
        offset = self.attr_length
        rid1 = RID.unpack(v1[offset:offset + RID.SIZE])
        rid2 = RID.unpack(v2[offset:offset + RID.SIZE])
        return rid1.compare(rid2)


class AttrPrinter:
    """Renders an encoded attribute value as text."""

    def __init__(self, attr_type: AttrType | int, attr_length: int) -> None:
        self.attr_type = AttrType(attr_type)
        self.attr_length = attr_length

    def __call__(self, v: bytes | bytearray | memoryview) -> str:
        if self.attr_type is AttrType.INTS:
            return str(_INT.unpack_from(v)[0])
        if self.attr_type is AttrType.FLOATS:
            return f"{_FLOAT.unpack_from(v)[0]:.6f}"
        if self.attr_type is AttrType.CHARS:
            text = bytes(v[:self.attr_length]).split(b"\0", 1)[0]
            return text.decode("utf-8", "replace")
        raise ValueError(f"unknown attr type {self.attr_type!r}")


class KeyPrinter:
    """Renders an index key as {key:...,rid:{...}}."""

    def __init__(self, attr_type: AttrType | int, attr_length: int) -> None:
        self.attr_printer = AttrPrinter(attr_type, attr_length)

    def __call__(self, v: bytes | bytearray | memoryview) -> str:
        offset = self.attr_printer.attr_length
        rid = RID.unpack(v[offset:offset + RID.SIZE])
        return f"{{key:{self.attr_printer(v)},rid:{{{rid}}}}}"