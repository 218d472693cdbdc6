import pytest

from bitswap.cid import decode_cid
from bitswap.wantlist import Entry, Wantlist, new_ref_entry, sort_entries
from bitswap.wire import WantType

TEST_CIDS = [
    decode_cid(text)
    for text in (
        "QmQL8LqkEgYXaDHdNYCG2mmpow7Sp8Z8Kt3QS688vyBeC7",
        "QmcBDsdjgSXU7BP4A4V8LJCXENE5xVwnhrhRGVTJr9YCVj",
        "QmQakgd2wDxc3uUF4orGdEm28zUT9Mmimp5pyPG2SFS9Gj",
    )
]


def assert_has_cid(wl, c):
    entry = wl.get(c)
    assert entry is not None
    assert entry.cid == c


def test_basic_wantlist():
    wl = Wantlist()
    assert wl.add(TEST_CIDS[0], 5, WantType.BLOCK) is True
    assert_has_cid(wl, TEST_CIDS[0])
    assert wl.add(TEST_CIDS[1], 4, WantType.BLOCK) is True
    assert_has_cid(wl, TEST_CIDS[0])
    assert_has_cid(wl, TEST_CIDS[1])
    assert len(wl) == 2

    assert wl.add(TEST_CIDS[1], 4, WantType.BLOCK) is False
    assert_has_cid(wl, TEST_CIDS[0])
    assert_has_cid(wl, TEST_CIDS[1])
    assert len(wl) == 2

    assert wl.remove_type(TEST_CIDS[0], WantType.BLOCK) is True
    assert_has_cid(wl, TEST_CIDS[1])
    assert TEST_CIDS[0] not in wl


def test_add_have_then_block():
    wl = Wantlist()
    wl.add(TEST_CIDS[0], 5, WantType.HAVE)
    wl.add(TEST_CIDS[0], 5, WantType.BLOCK)
    entry = wl.get(TEST_CIDS[0])
    assert entry is not None
    assert entry.want_type == WantType.BLOCK


def test_add_block_then_have():
    wl = Wantlist()
    wl.add(TEST_CIDS[0], 5, WantType.BLOCK)
    assert wl.add(TEST_CIDS[0], 5, WantType.HAVE) is False
    entry = wl.get(TEST_CIDS[0])
    assert entry is not None
    assert entry.want_type == WantType.BLOCK


def test_add_have_then_remove_block():
    wl = Wantlist()
    wl.add(TEST_CIDS[0], 5, WantType.HAVE)
    wl.remove_type(TEST_CIDS[0], WantType.BLOCK)
    assert TEST_CIDS[0] not in wl


def test_add_block_then_remove_have():
    wl = Wantlist()
    wl.add(TEST_CIDS[0], 5, WantType.BLOCK)
    assert wl.remove_type(TEST_CIDS[0], WantType.HAVE) is False
    entry = wl.get(TEST_CIDS[0])
    assert entry is not None
    assert entry.want_type == WantType.BLOCK


@pytest.mark.parametrize("want_type", [WantType.HAVE, WantType.BLOCK])
def test_add_then_remove_any(want_type):
    wl = Wantlist()
    wl.add(TEST_CIDS[0], 5, want_type)
    assert wl.remove(TEST_CIDS[0]) is True
    assert TEST_CIDS[0] not in wl


def test_remove_missing_returns_false():
    wl = Wantlist()
    assert wl.remove(TEST_CIDS[0]) is False
    assert wl.remove_type(TEST_CIDS[0], WantType.BLOCK) is False


def test_absorb():
    wl = Wantlist()
    wl.add(TEST_CIDS[0], 5, WantType.BLOCK)
    wl.add(TEST_CIDS[1], 4, WantType.HAVE)
    wl.add(TEST_CIDS[2], 3, WantType.HAVE)

    wl2 = Wantlist()
    wl2.add(TEST_CIDS[0], 2, WantType.HAVE)
    wl2.add(TEST_CIDS[1], 1, WantType.BLOCK)

    wl.absorb(wl2)

    assert wl.get(TEST_CIDS[0]) == Entry(TEST_CIDS[0], 5, WantType.BLOCK)
    assert wl.get(TEST_CIDS[1]) == Entry(TEST_CIDS[1], 1, WantType.BLOCK)
    assert wl.get(TEST_CIDS[2]) == Entry(TEST_CIDS[2], 3, WantType.HAVE)


def test_sort_entries():
    wl = Wantlist()
    wl.add(TEST_CIDS[0], 3, WantType.BLOCK)
    wl.add(TEST_CIDS[1], 5, WantType.HAVE)
    wl.add(TEST_CIDS[2], 4, WantType.HAVE)

    entries = wl.entries()
    sort_entries(entries)
    assert [entry.cid for entry in entries] == [TEST_CIDS[1], TEST_CIDS[2], TEST_CIDS[0]]


def test_new_ref_entry_wants_block():
    entry = new_ref_entry(TEST_CIDS[0], 7)
    assert entry == Entry(TEST_CIDS[0], 7, WantType.BLOCK)


def test_get_missing_returns_none():
    assert Wantlist().get(TEST_CIDS[0]) is None