"""
Content identifier (CID) helpers.

Accepted forms:
    CIDv0: "Qm" + 44 base58btc chars (sha2-256 multihash, dag-pb)
    CIDv1: multibase prefix + encoding of varint(1) || varint(codec) || multihash
           "b" base32 lowercase, "z" base58btc, "k" base36 lowercase

Local content is addressed as CIDv1 with the json codec (0x0200) and a
sha2-256 multihash.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re

import base58

_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]+$")
_CIDV1_BASE58_RE = re.compile(r"^z[1-9A-HJ-NP-Za-km-z]+$")
_CIDV1_BASE36_RE = re.compile(r"^k[0-9a-z]+$")

CODEC_RAW = 0x55
CODEC_DAG_PB = 0x70
CODEC_JSON = 0x0200
MULTIHASH_SHA2_256 = 0x12
SHA2_256_SIZE = 32


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _decode_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Decode an unsigned varint at offset. Returns (value, next offset)."""
    value = 0
    shift = 0
    for i in range(offset, min(len(data), offset + 9)):
        byte = data[i]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, i + 1
        shift += 7
    raise ValueError("Truncated or oversized varint")


def _b32decode(text: str) -> bytes:
    padded = text.upper() + "=" * (-len(text) % 8)
    return base64.b32decode(padded)


def _b36decode(text: str) -> bytes:
    # Leading "0" digits carry leading zero bytes, as in base58.
    zeros = len(text) - len(text.lstrip("0"))
    value = int(text, 36)
    return b"\x00" * zeros + value.to_bytes((value.bit_length() + 7) // 8, "big")


def _check_multihash(data: bytes, offset: int) -> None:
    _hash_code, offset = _decode_varint(data, offset)
    digest_len, offset = _decode_varint(data, offset)
    if digest_len == 0 or len(data) - offset != digest_len:
        raise ValueError("Multihash digest length mismatch")


def decode_cid(value: str) -> bytes:
    """Binary form of a CID string.

    CIDv0 decodes to its bare sha2-256 multihash; CIDv1 to
    varint(1) || varint(codec) || multihash.

    Raises:
        ValueError: If value is not a well-formed CIDv0 or CIDv1.
    """
    if _CIDV0_RE.match(value):
        raw = base58.b58decode(value)
        if len(raw) != 2 + SHA2_256_SIZE or raw[0] != MULTIHASH_SHA2_256 or raw[1] != SHA2_256_SIZE:
            raise ValueError("CIDv0 is not a sha2-256 multihash")
        return raw

    try:
        if _CIDV1_BASE32_RE.match(value):
            raw = _b32decode(value[1:])
        elif _CIDV1_BASE58_RE.match(value):
            raw = base58.b58decode(value[1:])
        elif _CIDV1_BASE36_RE.match(value):
            raw = _b36decode(value[1:])
        else:
            raise ValueError(f"Unsupported CID form: {value[:8]!r}")
    except binascii.Error as e:
        raise ValueError(f"Invalid multibase payload: {e}") from e

    version, offset = _decode_varint(raw, 0)
    if version != 1:
        raise ValueError(f"Unsupported CID version: {version}")
    _codec, offset = _decode_varint(raw, offset)
    _check_multihash(raw, offset)
    return raw


def compute_cid(data: bytes, codec: int = CODEC_JSON) -> str:
    """CIDv1 (base32) for data using a sha2-256 multihash."""
    digest = hashlib.sha256(data).digest()
    multihash = _encode_varint(MULTIHASH_SHA2_256) + _encode_varint(len(digest)) + digest
    raw = _encode_varint(1) + _encode_varint(codec) + multihash
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")


def is_valid_cid(value: object) -> bool:
    """Check that value is a well-formed CIDv0 or CIDv1. Fail-closed."""
    if not isinstance(value, str) or not value:
        return False
    try:
        decode_cid(value)
    except ValueError:
        return False
    return True
