import pytest
from hypothesis import given
from hypothesis import strategies as st

from tinystore.record import RID, Record

int32 = st.integers(min_value=-(2**31), max_value=2**31 - 1)
non_negative = st.integers(min_value=0, max_value=2**31 - 1)


def test_compare_orders_by_page_first():
    assert RID(1, 5).compare(RID(2, 0)) < 0
    assert RID(2, 0).compare(RID(1, 5)) > 0


def test_compare_orders_by_slot_within_page():
    assert RID(3, 1).compare(RID(3, 2)) < 0
    assert RID(3, 2).compare(RID(3, 2)) == 0


@given(non_negative, non_negative)
def test_min_and_max_bound_every_rid(page, slot):
    rid = RID(page, slot)
    assert RID.min().compare(rid) <= 0
    assert RID.max().compare(rid) >= 0


def test_min_is_page_zero_slot_zero():
    assert RID.min() == RID(0, 0)


@given(int32, int32)
def test_pack_unpack_round_trip(page, slot):
    rid = RID(page, slot)
    packed = rid.pack()
    assert len(packed) == RID.SIZE
    assert RID.unpack(packed) == rid


def test_unpack_reads_only_leading_bytes():
    data = RID(4, 9).pack() + b"trailing"
    assert RID.unpack(data) == RID(4, 9)


def test_unpack_short_data_raises():
    with pytest.raises(ValueError):
        RID.unpack(b"\x01\x02")


def test_str_format():
    assert str(RID(3, 7)) == "PageNum:3, SlotNum:7"


def test_rids_are_hashable_and_equal_by_value():
    assert {RID(1, 2), RID(1, 2), RID(2, 1)} == {RID(1, 2), RID(2, 1)}


def test_record_holds_rid_and_data():
    record = Record(RID(1, 2), b"abc")
    assert record.rid == RID(1, 2)
    assert record.data == b"abc"