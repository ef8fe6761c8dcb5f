"""Record identifiers and in-memory records."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

_RID_FORMAT = struct.Struct("<ii")
_INT32_MAX = 2**31 - 1


@dataclass(frozen=True)
class RID:
    """Location of a record: the page it lives on and its slot within that page."""

    page_num: int
    slot_num: int

    SIZE: ClassVar[int] = _RID_FORMAT.size

    def compare(self, other: RID) -> int:
        """Return a negative, zero or positive number as self sorts before, with or after other."""
        page_diff = self.page_num - other.page_num
        if page_diff != 0:
            return page_diff
        return self.slot_num - other.slot_num

    @classmethod
    def min(cls) -> RID:
        """The smallest identifier; never used by real data."""
        return cls(0, 0)

    @classmethod
    def max(cls) -> RID:
        """The largest identifier that fits the on-page format."""
        return cls(_INT32_MAX, _INT32_MAX)

    def pack(self) -> bytes:
        """Encode as little-endian page and slot numbers."""
        return _RID_FORMAT.pack(self.page_num, self.slot_num)

    @classmethod
    def unpack(cls, data: bytes | bytearray | memoryview) -> RID:
        """Decode an identifier from the first SIZE bytes of data."""
        try:
            page_num, slot_num = _RID_FORMAT.unpack_from(data)
        except struct.error as exc:
            raise ValueError(f"a RID needs {cls.SIZE} bytes, got {len(data)}") from exc
        return cls(page_num, slot_num)

    def __str__(self) -> str:
        return f"PageNum:{self.page_num}, SlotNum:{self.slot_num}"


@dataclass
class Record:
    """A record's identifier together with its bytes."""

    rid: RID
    data: bytes | bytearray