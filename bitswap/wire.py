"""Protocol buffer encoding of bitswap messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator

from .cid import Cid, CidError, cast_cid, decode_uvarint, encode_uvarint

_VARINT = 0
_FIXED64 = 1
_LENGTH_DELIMITED = 2
_FIXED32 = 5


class WantType(IntEnum):
    """Whether a want asks for the block itself or only whether it is held."""

    BLOCK = 0
    HAVE = 1


class BlockPresenceType(IntEnum):
    """A HAVE or DONT_HAVE answer for a CID."""

    HAVE = 0
    DONT_HAVE = 1


class WireError(ValueError):
    """Raised when encoded message data cannot be decoded."""


def _key(number: int, wire_type: int) -> bytes:
    return encode_uvarint((number << 3) | wire_type)


def _varint_field(number: int, value: int) -> bytes:
    if value < 0:
        value += 1 << 64
    return _key(number, _VARINT) + encode_uvarint(value)


def _bytes_field(number: int, payload: bytes) -> bytes:
    return _key(number, _LENGTH_DELIMITED) + encode_uvarint(len(payload)) + payload


def _cid_bytes(cid: Cid | None) -> bytes:
    return cid.to_bytes() if cid is not None else b""


@dataclass
class WireEntry:
    """One wantlist entry as it appears on the wire."""

    block: Cid | None = None
    priority: int = 0
    cancel: bool = False
    want_type: WantType = WantType.BLOCK
    send_dont_have: bool = False

    def marshal(self) -> bytes:
        out = bytearray(_bytes_field(1, _cid_bytes(self.block)))
        if self.priority:
            out += _varint_field(2, self.priority)
        if self.cancel:
            out += _varint_field(3, 1)
        if self.want_type:
            out += _varint_field(4, int(self.want_type))
        if self.send_dont_have:
            out += _varint_field(5, 1)
        return bytes(out)

    def size(self) -> int:
        return len(self.marshal())


@dataclass
class WireBlock:
    """A block payload: its CID prefix and raw data."""

    prefix: bytes = b""
    data: bytes = b""

    def marshal(self) -> bytes:
        out = bytearray()
        if self.prefix:
            out += _bytes_field(1, self.prefix)
        if self.data:
            out += _bytes_field(2, self.data)
        return bytes(out)


@dataclass
class WireBlockPresence:
    """A HAVE or DONT_HAVE for a CID as it appears on the wire."""

    cid: Cid | None = None
    type: BlockPresenceType = BlockPresenceType.HAVE

    def marshal(self) -> bytes:
        out = bytearray(_bytes_field(1, _cid_bytes(self.cid)))
        if self.type:
            out += _varint_field(2, int(self.type))
        return bytes(out)

    def size(self) -> int:
        return len(self.marshal())


@dataclass
class WireMessage:
    """A complete bitswap message in wire form."""

    entries: list[WireEntry] = field(default_factory=list)
    full: bool = False
    blocks: list[bytes] = field(default_factory=list)
    payload: list[WireBlock] = field(default_factory=list)
    block_presences: list[WireBlockPresence] = field(default_factory=list)
    pending_bytes: int = 0

    def marshal(self) -> bytes:
        wantlist = b"".join(_bytes_field(1, entry.marshal()) for entry in self.entries)
        if self.full:
            wantlist += _varint_field(2, 1)
        out = bytearray(_bytes_field(1, wantlist))
        for raw in self.blocks:
            out += _bytes_field(2, raw)
        for block in self.payload:
            out += _bytes_field(3, block.marshal())
        for presence in self.block_presences:
            out += _bytes_field(4, presence.marshal())
        if self.pending_bytes:
            out += _varint_field(5, self.pending_bytes)
        return bytes(out)

    def size(self) -> int:
        return len(self.marshal())


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    try:
        return decode_uvarint(data, pos)
    except CidError as exc:
        raise WireError(str(exc)) from exc


def _fields(data: bytes) -> Iterator[tuple[int, int, int | bytes]]:
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        number, wire_type = key >> 3, key & 7
        if number == 0:
            raise WireError("illegal field number 0")
        if wire_type == _VARINT:
            value, pos = _read_varint(data, pos)
            yield number, wire_type, value
            continue
        if wire_type == _LENGTH_DELIMITED:
            length, pos = _read_varint(data, pos)
        elif wire_type == _FIXED64:
            length = 8
        elif wire_type == _FIXED32:
            length = 4
        else:
            raise WireError(f"unsupported wire type {wire_type}")
        if pos + length > len(data):
            raise WireError("unexpected end of data")
        yield number, wire_type, bytes(data[pos:pos + length])
        pos += length


def _expect(number: int, wire_type: int, expected: int) -> None:
    if wire_type != expected:
        raise WireError(f"wrong wire type {wire_type} for field {number}")


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value >= 1 << 31 else value


def _cid(value: bytes) -> Cid:
    try:
        return cast_cid(value)
    except CidError as exc:
        raise WireError(f"invalid cid: {exc}") from exc


def _enum(enum_type: type[IntEnum], value: int) -> IntEnum:
    try:
        return enum_type(_int32(value))
    except ValueError as exc:
        raise WireError(f"unknown {enum_type.__name__} value {value}") from exc


def _parse_entry(data: bytes) -> WireEntry:
    entry = WireEntry()
    for number, wire_type, value in _fields(data):
        if number == 1:
            _expect(number, wire_type, _LENGTH_DELIMITED)
            entry.block = _cid(value)
        elif number == 2:
            _expect(number, wire_type, _VARINT)
            entry.priority = _int32(value)
        elif number == 3:
            _expect(number, wire_type, _VARINT)
            entry.cancel = value != 0
        elif number == 4:
            _expect(number, wire_type, _VARINT)
            entry.want_type = _enum(WantType, value)
        elif number == 5:
            _expect(number, wire_type, _VARINT)
            entry.send_dont_have = value != 0
    return entry


def _parse_wantlist(data: bytes, message: WireMessage) -> None:
    for number, wire_type, value in _fields(data):
        if number == 1:
            _expect(number, wire_type, _LENGTH_DELIMITED)
            message.entries.append(_parse_entry(value))
        elif number == 2:
            _expect(number, wire_type, _VARINT)
            message.full = value != 0


def _parse_block(data: bytes) -> WireBlock:
    block = WireBlock()
    for number, wire_type, value in _fields(data):
        if number == 1:
            _expect(number, wire_type, _LENGTH_DELIMITED)
            block.prefix = value
        elif number == 2:
            _expect(number, wire_type, _LENGTH_DELIMITED)
            block.data = value
    return block


def _parse_presence(data: bytes) -> WireBlockPresence:
    presence = WireBlockPresence()
    for number, wire_type, value in _fields(data):
        if number == 1:
            _expect(number, wire_type, _LENGTH_DELIMITED)
            presence.cid = _cid(value)
        elif number == 2:
            _expect(number, wire_type, _VARINT)
            presence.type = _enum(BlockPresenceType, value)
    return presence


def unmarshal_message(data: bytes) -> WireMessage:
    """Decode a bitswap message from its protobuf encoding."""
    message = WireMessage()
    for number, wire_type, value in _fields(data):
        if number == 1:
            _expect(number, wire_type, _LENGTH_DELIMITED)
            _parse_wantlist(value, message)
        elif number == 2:
            _expect(number, wire_type, _LENGTH_DELIMITED)
            message.blocks.append(value)
        elif number == 3:
            _expect(number, wire_type, _LENGTH_DELIMITED)
            message.payload.append(_parse_block(value))
        elif number == 4:
            _expect(number, wire_type, _LENGTH_DELIMITED)
            message.block_presences.append(_parse_presence(value))
        elif number == 5:
            _expect(number, wire_type, _VARINT)
            message.pending_bytes = _int32(value)
    return message