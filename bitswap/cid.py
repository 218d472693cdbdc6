"""Content identifiers: varints, base58, multihashes and CIDs."""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass

IDENTITY = 0x00
SHA1 = 0x11
SHA2_256 = 0x12
SHA2_512 = 0x13

RAW = 0x55
DAG_PROTOBUF = 0x70

_HASHERS = {
    SHA1: hashlib.sha1,
    SHA2_256: hashlib.sha256,
    SHA2_512: hashlib.sha512,
}

_MAX_VARINT_LEN = 10
_UINT64_LIMIT = 1 << 64

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {char: index for index, char in enumerate(_B58_ALPHABET)}


class CidError(ValueError):
    """Raised when a CID, multihash, varint or encoding is malformed."""


def encode_uvarint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned LEB128 varint."""
    if value < 0 or value >= _UINT64_LIMIT:
        raise CidError(f"value out of range for uvarint: {value}")
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode_uvarint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a varint at ``offset``; return the value and the offset after it."""
    result = 0
    shift = 0
    window = data[offset:offset + _MAX_VARINT_LEN]
    for count, byte in enumerate(window, start=1):
        if count == _MAX_VARINT_LEN and byte > 1:
            raise CidError("varint overflows 64 bits")
        result |= (byte & 0x7F) << shift
        if byte < 0x80:
            return result, offset + count
        shift += 7
    if len(window) == _MAX_VARINT_LEN:
        raise CidError("varint overflows 64 bits")
    raise CidError("truncated varint")


def base58_encode(data: bytes) -> str:
    """Encode bytes with the bitcoin base58 alphabet."""
    zeros = len(data) - len(data.lstrip(b"\x00"))
    number = int.from_bytes(data, "big")
    digits = []
    while number:
        number, remainder = divmod(number, 58)
        digits.append(_B58_ALPHABET[remainder])
    return "1" * zeros + "".join(reversed(digits))


def base58_decode(text: str) -> bytes:
    """Decode a bitcoin base58 string."""
    if not text:
        raise CidError("zero length base58 string")
    number = 0
    for char in text:
        index = _B58_INDEX.get(char)
        if index is None:
            raise CidError(f"invalid base58 character {char!r}")
        number = number * 58 + index
    zeros = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\x00" * zeros + body


def _multihash_parts(multihash: bytes) -> tuple[int, bytes]:
    code, pos = decode_uvarint(multihash)
    length, pos = decode_uvarint(multihash, pos)
    digest = multihash[pos:]
    if len(digest) != length:
        raise CidError(
            f"multihash length mismatch: declared {length}, got {len(digest)}"
        )
    return code, digest


def _encode_multihash(code: int, digest: bytes) -> bytes:
    return encode_uvarint(code) + encode_uvarint(len(digest)) + digest


def sha256_multihash(data: bytes) -> bytes:
    """Return the sha2-256 multihash of ``data``."""
    return _encode_multihash(SHA2_256, hashlib.sha256(data).digest())


def _parse_cid(raw: bytes) -> tuple[int, int, bytes]:
    if len(raw) == 34 and raw[0] == SHA2_256 and raw[1] == 32:
        return 0, DAG_PROTOBUF, raw
    version, pos = decode_uvarint(raw)
    if version != 1:
        raise CidError(f"expected 1 as the cid version number, got: {version}")
    codec, pos = decode_uvarint(raw, pos)
    multihash = raw[pos:]
    _multihash_parts(multihash)
    return 1, codec, multihash


@dataclass(frozen=True, order=True, repr=False)
class Cid:
    """A content identifier held in its binary form."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, bytes):
            object.__setattr__(self, "raw", bytes(self.raw))
        _parse_cid(self.raw)

    @property
    def version(self) -> int:
        return _parse_cid(self.raw)[0]

    @property
    def codec(self) -> int:
        return _parse_cid(self.raw)[1]

    @property
    def multihash(self) -> bytes:
        return _parse_cid(self.raw)[2]

    def to_bytes(self) -> bytes:
        """Return the binary form of the CID."""
        return self.raw

    def prefix(self) -> Prefix:
        """Return the version, codec and hash parameters of this CID."""
        version, codec, multihash = _parse_cid(self.raw)
        code, digest = _multihash_parts(multihash)
        return Prefix(version=version, codec=codec, mh_type=code, mh_length=len(digest))

    def __str__(self) -> str:
        if self.version == 0:
            return base58_encode(self.raw)
        encoded = base64.b32encode(self.raw).decode("ascii").rstrip("=").lower()
        return "b" + encoded

    def __repr__(self) -> str:
        return f"Cid({self})"


@dataclass(frozen=True)
class Prefix:
    """The parameters needed to build a CID from raw data."""

    version: int
    codec: int
    mh_type: int
    mh_length: int = -1

    def to_bytes(self) -> bytes:
        """Encode the prefix as four varints."""
        return b"".join(
            encode_uvarint(value % _UINT64_LIMIT)
            for value in (self.version, self.codec, self.mh_type, self.mh_length)
        )

    def sum(self, data: bytes) -> Cid:
        """Hash ``data`` according to this prefix and return its CID."""
        if self.mh_type == IDENTITY:
            if self.mh_length not in (-1, len(data)):
                raise CidError("identity hash length must match the data length")
            digest = bytes(data)
        else:
            hasher = _HASHERS.get(self.mh_type)
            if hasher is None:
                raise CidError(f"unsupported multihash type {self.mh_type:#x}")
            full = hasher(data).digest()
            length = len(full) if self.mh_length == -1 else self.mh_length
            if length < 0 or length > len(full):
                raise CidError("requested length greater than digest")
            digest = full[:length]
        multihash = _encode_multihash(self.mh_type, digest)
        if self.version == 0:
            return new_cid_v0(multihash)
        if self.version == 1:
            return new_cid_v1(self.codec, multihash)
        raise CidError("invalid cid version")


def prefix_from_bytes(data: bytes) -> Prefix:
    """Read a prefix written by :meth:`Prefix.to_bytes`."""
    version, pos = decode_uvarint(data)
    codec, pos = decode_uvarint(data, pos)
    mh_type, pos = decode_uvarint(data, pos)
    mh_length, pos = decode_uvarint(data, pos)
    if mh_length >= 1 << 63:
        mh_length -= _UINT64_LIMIT
    return Prefix(version=version, codec=codec, mh_type=mh_type, mh_length=mh_length)


def new_cid_v0(multihash: bytes) -> Cid:
    """Build a version 0 CID from a sha2-256 multihash."""
    code, digest = _multihash_parts(multihash)
    if code != SHA2_256 or len(digest) != 32:
        raise CidError("version 0 cids require a 32 byte sha2-256 multihash")
    return Cid(bytes(multihash))


def new_cid_v1(codec: int, multihash: bytes) -> Cid:
    """Build a version 1 CID from a codec and a multihash."""
    _multihash_parts(multihash)
    return Cid(encode_uvarint(1) + encode_uvarint(codec) + bytes(multihash))


def cast_cid(data: bytes) -> Cid:
    """Interpret ``data`` as the binary form of a CID."""
    return Cid(bytes(data))


def _decode_base32(body: str) -> bytes:
    padding = "=" * (-len(body) % 8)
    return base64.b32decode(body + padding, casefold=True)


_MULTIBASE_DECODERS = {
    "z": base58_decode,
    "b": _decode_base32,
    "B": _decode_base32,
    "f": bytes.fromhex,
    "F": bytes.fromhex,
}


def decode_cid(text: str) -> Cid:
    """Parse the string form of a CID."""
    if len(text) < 2:
        raise CidError("cid too short")
    if len(text) == 46 and text.startswith("Qm"):
        return cast_cid(base58_decode(text))
    decoder = _MULTIBASE_DECODERS.get(text[0])
    if decoder is None:
        raise CidError(f"unsupported multibase prefix {text[0]!r}")
    try:
        raw = decoder(text[1:])
    except (binascii.Error, ValueError) as exc:
        raise CidError(f"invalid multibase data: {exc}") from exc
    return cast_cid(raw)