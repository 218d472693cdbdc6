import pytest

from bitswap.cid import RAW, new_cid_v0, new_cid_v1, sha256_multihash
from bitswap.wire import (
    BlockPresenceType,
    WantType,
    WireBlock,
    WireBlockPresence,
    WireEntry,
    WireError,
    WireMessage,
    unmarshal_message,
)

EXPECTED_PRESENCE = bytes([
    10, 34, 18, 32, 195, 171,
    143, 241, 55, 32, 232, 173,
    144, 71, 221, 57, 70, 107,
    60, 137, 116, 229, 146, 194,
    250, 56, 61, 74, 57, 96,
    113, 76, 174, 240, 196, 242,
])


def cid_of(text):
    return new_cid_v0(sha256_multihash(text.encode()))


def test_block_presence_encodes_custom_cid():
    presence = WireBlockPresence(cid=cid_of("foobar"))
    assert presence.marshal() == EXPECTED_PRESENCE
    assert presence.size() == len(EXPECTED_PRESENCE)


def test_dont_have_presence_appends_type():
    presence = WireBlockPresence(cid=cid_of("foobar"), type=BlockPresenceType.DONT_HAVE)
    assert presence.marshal() == EXPECTED_PRESENCE + b"\x10\x01"


def test_entry_encoding():
    c = cid_of("foo")
    entry = WireEntry(block=c, priority=1)
    assert entry.marshal() == b"\x0a\x22" + c.to_bytes() + b"\x10\x01"


@pytest.mark.parametrize(
    "entry",
    [
        WireEntry(block=cid_of("a")),
        WireEntry(block=cid_of("b"), priority=2**31 - 1, cancel=True,
                  want_type=WantType.HAVE, send_dont_have=True),
        WireEntry(block=cid_of("c"), priority=-5),
    ],
)
def test_entry_size_matches_encoding(entry):
    assert entry.size() == len(entry.marshal())


def test_empty_message_still_writes_wantlist():
    assert WireMessage().marshal() == b"\x0a\x00"


def test_empty_data_decodes_to_empty_message():
    assert unmarshal_message(b"") == WireMessage()


def test_full_message_round_trip():
    c1 = cid_of("one")
    c2 = new_cid_v1(RAW, sha256_multihash(b"two"))
    message = WireMessage(
        entries=[
            WireEntry(block=c1, priority=7, send_dont_have=True),
            WireEntry(block=c2, priority=-3, cancel=True, want_type=WantType.HAVE),
        ],
        full=True,
        blocks=[b"raw block", b""],
        payload=[WireBlock(prefix=c2.prefix().to_bytes(), data=b"two")],
        block_presences=[
            WireBlockPresence(cid=c1),
            WireBlockPresence(cid=c2, type=BlockPresenceType.DONT_HAVE),
        ],
        pending_bytes=1234,
    )
    encoded = message.marshal()
    assert message.size() == len(encoded)
    assert unmarshal_message(encoded) == message


def test_negative_priority_round_trip():
    message = WireMessage(entries=[WireEntry(block=cid_of("neg"), priority=-1)])
    decoded = unmarshal_message(message.marshal())
    assert decoded.entries[0].priority == -1


def test_entry_without_cid_field_decodes_as_missing():
    entry = b"\x10\x01"
    wantlist = b"\x0a" + bytes([len(entry)]) + entry
    data = b"\x0a" + bytes([len(wantlist)]) + wantlist
    decoded = unmarshal_message(data)
    assert decoded.entries[0].block is None
    assert decoded.entries[0].priority == 1


def test_empty_cid_field_is_rejected():
    message = WireMessage(entries=[WireEntry(block=None)])
    with pytest.raises(WireError):
        unmarshal_message(message.marshal())


def test_truncated_data_is_rejected():
    with pytest.raises(WireError):
        unmarshal_message(b"\x0a\x05\x01")


def test_wrong_wire_type_is_rejected():
    with pytest.raises(WireError):
        unmarshal_message(b"\x08\x01")


def test_unknown_fields_are_skipped():
    message = WireMessage(pending_bytes=9)
    data = message.marshal() + b"\x78\x05"
    assert unmarshal_message(data) == message


def test_unknown_enum_value_is_rejected():
    presence = b"\x0a\x22" + cid_of("x").to_bytes() + b"\x10\x07"
    data = b"\x22" + bytes([len(presence)]) + presence
    with pytest.raises(WireError):
        unmarshal_message(data)