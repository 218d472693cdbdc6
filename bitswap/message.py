"""Bitswap messages: wants, blocks and block presences, and their wire forms."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, BinaryIO

from .cid import (
    Cid,
    CidError,
    encode_uvarint,
    new_cid_v0,
    prefix_from_bytes,
    sha256_multihash,
)
from .wire import (
    BlockPresenceType,
    WantType,
    WireBlock,
    WireBlockPresence,
    WireEntry,
    WireError,
    WireMessage,
    unmarshal_message,
)

MESSAGE_SIZE_MAX = 1 << 22
_MAX_INT32 = (1 << 31) - 1
_MAX_VARINT_LEN = 10


class MessageError(ValueError):
    """Raised when a bitswap message cannot be built from received data."""


@dataclass(frozen=True)
class Block:
    """Raw block data together with its CID."""

    data: bytes
    cid: Cid

    def __len__(self) -> int:
        return len(self.data)


def new_block(data: bytes) -> Block:
    """Wrap ``data`` as a block with a version 0 sha2-256 CID."""
    data = bytes(data)
    return Block(data=data, cid=new_cid_v0(sha256_multihash(data)))


@dataclass(frozen=True)
class BlockPresence:
    """A HAVE or DONT_HAVE for a CID."""

    cid: Cid
    type: BlockPresenceType


@dataclass
class MessageEntry:
    """A wantlist entry in a message, with cancel and DONT_HAVE flags."""

    cid: Cid
    priority: int = 0
    want_type: WantType = WantType.BLOCK
    cancel: bool = False
    send_dont_have: bool = False

    def to_wire(self) -> WireEntry:
        """Return the entry in wire form."""
        return WireEntry(
            block=self.cid,
            priority=self.priority,
            cancel=self.cancel,
            want_type=self.want_type,
            send_dont_have=self.send_dont_have,
        )

    def size(self) -> int:
        """Return the encoded size of the entry in bytes."""
        return self.to_wire().size()


def max_entry_size() -> int:
    """Return the largest encoded size a wantlist entry can take."""
    entry = MessageEntry(
        cid=new_cid_v0(sha256_multihash(b"cid")),
        priority=_MAX_INT32,
        want_type=WantType.HAVE,
        cancel=True,
        send_dont_have=True,
    )
    return entry.size()


MAX_ENTRY_SIZE = max_entry_size()


def block_presence_size(cid: Cid) -> int:
    """Return the encoded size of a block presence for ``cid``."""
    return WireBlockPresence(cid=cid, type=BlockPresenceType.HAVE).size()


class BitSwapMessage:
    """A bitswap message under construction or as received."""

    def __init__(self, full: bool = False) -> None:
        self.full = full
        self._wantlist: dict[Cid, MessageEntry] = {}
        self._blocks: dict[Cid, Block] = {}
        self._block_presences: dict[Cid, BlockPresenceType] = {}
        self.pending_bytes = 0

    def clone(self) -> BitSwapMessage:
        """Return a copy of the message."""
        copy = BitSwapMessage(self.full)
        copy._wantlist = {
            cid: dataclasses.replace(entry) for cid, entry in self._wantlist.items()
        }
        copy._blocks = dict(self._blocks)
        copy._block_presences = dict(self._block_presences)
        copy.pending_bytes = self.pending_bytes
        return copy

    def reset(self, full: bool) -> None:
        """Clear the message so it can be reused."""
        self.full = full
        self._wantlist.clear()
        self._blocks.clear()
        self._block_presences.clear()
        self.pending_bytes = 0

    def is_empty(self) -> bool:
        """Report whether the message carries no wants, blocks or presences."""
        return not (self._blocks or self._wantlist or self._block_presences)

    def wantlist(self) -> list[MessageEntry]:
        """Return copies of the wantlist entries."""
        return [dataclasses.replace(entry) for entry in self._wantlist.values()]

    def blocks(self) -> list[Block]:
        """Return the blocks in the message."""
        return list(self._blocks.values())

    def block_presences(self) -> list[BlockPresence]:
        """Return the HAVE and DONT_HAVE entries in the message."""
        return [BlockPresence(cid, kind) for cid, kind in self._block_presences.items()]

    def _presences_of(self, kind: BlockPresenceType) -> list[Cid]:
        return [cid for cid, value in self._block_presences.items() if value == kind]

    def haves(self) -> list[Cid]:
        """Return the CIDs with a HAVE."""
        return self._presences_of(BlockPresenceType.HAVE)

    def dont_haves(self) -> list[Cid]:
        """Return the CIDs with a DONT_HAVE."""
        return self._presences_of(BlockPresenceType.DONT_HAVE)

    def remove(self, cid: Cid) -> None:
        """Drop any wantlist entry for ``cid``."""
        self._wantlist.pop(cid, None)

    def cancel(self, cid: Cid) -> int:
        """Add a CANCEL for ``cid``; return the size of a new entry, else 0."""
        return self._add_entry(cid, 0, True, WantType.BLOCK, False)

    def add_entry(
        self, cid: Cid, priority: int, want_type: WantType, send_dont_have: bool
    ) -> int:
        """Add a want for ``cid``; return the size of a new entry, else 0."""
        return self._add_entry(cid, priority, False, want_type, send_dont_have)

    def _add_entry(
        self,
        cid: Cid,
        priority: int,
        cancel: bool,
        want_type: WantType,
        send_dont_have: bool,
    ) -> int:
        existing = self._wantlist.get(cid)
        if existing is not None:
            if existing.want_type == want_type:
                existing.priority = priority
            if cancel:
                existing.cancel = True
            if send_dont_have:
                existing.send_dont_have = True
            if want_type == WantType.BLOCK and existing.want_type == WantType.HAVE:
                existing.want_type = want_type
            return 0
        entry = MessageEntry(
            cid=cid,
            priority=priority,
            want_type=want_type,
            cancel=cancel,
            send_dont_have=send_dont_have,
        )
        self._wantlist[cid] = entry
        return entry.size()

    def add_block(self, block: Block) -> None:
        """Add a block, replacing any presence for its CID."""
        self._block_presences.pop(block.cid, None)
        self._blocks[block.cid] = block

    def add_block_presence(self, cid: Cid, presence_type: BlockPresenceType) -> None:
        """Add a HAVE or DONT_HAVE unless the block itself is in the message."""
        if cid in self._blocks:
            return
        self._block_presences[cid] = presence_type

    def add_have(self, cid: Cid) -> None:
        """Add a HAVE for ``cid``."""
        self.add_block_presence(cid, BlockPresenceType.HAVE)

    def add_dont_have(self, cid: Cid) -> None:
        """Add a DONT_HAVE for ``cid``."""
        self.add_block_presence(cid, BlockPresenceType.DONT_HAVE)

    def size(self) -> int:
        """Return the approximate size of the message contents in bytes."""
        return (
            sum(len(block.data) for block in self._blocks.values())
            + sum(block_presence_size(cid) for cid in self._block_presences)
            + sum(entry.size() for entry in self._wantlist.values())
        )

    def _wire_entries(self) -> list[WireEntry]:
        return [entry.to_wire() for entry in self._wantlist.values()]

    def to_proto_v0(self) -> WireMessage:
        """Return the message in the wire form of protocol 1.0.0."""
        return WireMessage(
            entries=self._wire_entries(),
            full=self.full,
            blocks=[block.data for block in self._blocks.values()],
        )

    def to_proto_v1(self) -> WireMessage:
        """Return the message in the wire form of protocol 1.1.0 and later."""
        return WireMessage(
            entries=self._wire_entries(),
            full=self.full,
            payload=[
                WireBlock(prefix=block.cid.prefix().to_bytes(), data=block.data)
                for block in self._blocks.values()
            ],
            block_presences=[
                WireBlockPresence(cid=cid, type=kind)
                for cid, kind in self._block_presences.items()
            ],
            pending_bytes=self.pending_bytes,
        )

    def to_net_v0(self, writer: BinaryIO) -> None:
        """Write the length-prefixed 1.0.0 encoding to ``writer``."""
        _write(writer, self.to_proto_v0())

    def to_net_v1(self, writer: BinaryIO) -> None:
        """Write the length-prefixed 1.1.0 encoding to ``writer``."""
        _write(writer, self.to_proto_v1())

    def loggable(self) -> dict[str, Any]:
        """Return a summary of the message for logging."""
        return {
            "blocks": [str(cid) for cid in self._blocks],
            "wants": self.wantlist(),
        }


def _write(writer: BinaryIO, wire: WireMessage) -> None:
    body = wire.marshal()
    writer.write(encode_uvarint(len(body)) + body)


def message_from_wire(wire: WireMessage) -> BitSwapMessage:
    """Build a message from its decoded wire form."""
    message = BitSwapMessage(wire.full)
    for entry in wire.entries:
        if entry.block is None:
            raise MessageError("missing cid")
        message._add_entry(
            entry.block,
            entry.priority,
            entry.cancel,
            entry.want_type,
            entry.send_dont_have,
        )
    for data in wire.blocks:
        message.add_block(new_block(data))
    for payload in wire.payload:
        try:
            cid = prefix_from_bytes(payload.prefix).sum(payload.data)
        except CidError as exc:
            raise MessageError(f"invalid block payload: {exc}") from exc
        message.add_block(Block(data=payload.data, cid=cid))
    for presence in wire.block_presences:
        if presence.cid is None:
            raise MessageError("missing cid")
        message.add_block_presence(presence.cid, presence.type)
    message.pending_bytes = wire.pending_bytes
    return message


def _read_length(reader: BinaryIO) -> int:
    value = 0
    shift = 0
    for count in range(_MAX_VARINT_LEN):
        byte = reader.read(1)
        if not byte:
            if count == 0:
                raise EOFError("end of stream")
            raise MessageError("truncated length prefix")
        value |= (byte[0] & 0x7F) << shift
        if byte[0] < 0x80:
            return value
        shift += 7
    raise MessageError("length prefix overflows 64 bits")


def _read_exact(reader: BinaryIO, length: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < length:
        chunk = reader.read(length - len(chunks))
        if not chunk:
            raise MessageError("unexpected end of message")
        chunks += chunk
    return bytes(chunks)


def from_net(reader: BinaryIO) -> BitSwapMessage:
    """Read one length-prefixed message from ``reader``.

    Raises EOFError when the stream ends before a message starts.
    """
    length = _read_length(reader)
    if length > MESSAGE_SIZE_MAX:
        raise MessageError("message too large")
    data = _read_exact(reader, length)
    try:
        wire = unmarshal_message(data)
    except WireError as exc:
        raise MessageError(f"malformed message: {exc}") from exc
    return message_from_wire(wire)