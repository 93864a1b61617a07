"""
keccak-256 and 0x-hex helpers shared by the tree, key tree, and ledger code.

keccak-256 is the pre-standard SHA-3 variant used on EVM chains, not
hashlib.sha3_256. Provided by pycryptodome.
"""

from __future__ import annotations

from Crypto.Hash import keccak


def keccak256(data: bytes) -> bytes:
    """Return the 32-byte keccak-256 digest of data."""
    return keccak.new(digest_bits=256, data=data).digest()


def to_hex(data: bytes) -> str:
    """Encode bytes as a lowercase 0x-prefixed hex string."""
    return "0x" + data.hex()


def from_hex(value: str) -> bytes:
    """Decode a hex string, with or without 0x prefix.

    Raises:
        ValueError: If value is not valid hex.
    """
    if not isinstance(value, str):
        raise ValueError(f"Expected hex string, got {type(value).__name__}")
    if value[:2] in ("0x", "0X"):
        value = value[2:]
    return bytes.fromhex(value)
