"""
Prime-order group operations over edwards25519 (libsodium via PyNaCl).

Elements are 32-byte canonical point encodings in the prime-order
subgroup; scalars are 32-byte little-endian integers mod L. libsodium
rejects small-order and off-subgroup points on every operation, so an
element that survives deserialize_element() is safe to multiply.
"""

from __future__ import annotations

import hashlib
import os
import struct

import nacl.bindings
import nacl.exceptions

ELEMENT_SIZE = 32
SCALAR_SIZE = 32

# Standard edwards25519 base point encoding.
GENERATOR = bytes.fromhex("58" + "66" * 31)

_ZERO_SCALAR = bytes(SCALAR_SIZE)
_HASH_TO_GROUP_ATTEMPTS = 1024


class GroupError(ValueError):
    """Invalid element or scalar, or an operation produced the identity."""


def i2osp(value: int, length: int) -> bytes:
    """Big-endian integer encoding (RFC 8017 I2OSP)."""
    return value.to_bytes(length, "big")


def length_prefixed(data: bytes) -> bytes:
    return i2osp(len(data), 2) + data


def is_zero_scalar(scalar: bytes) -> bool:
    return scalar == _ZERO_SCALAR


def is_canonical_scalar(scalar: bytes) -> bool:
    """32 bytes, already reduced mod L."""
    if len(scalar) != SCALAR_SIZE:
        return False
    return nacl.bindings.crypto_core_ed25519_scalar_reduce(scalar + _ZERO_SCALAR) == scalar


def random_scalar() -> bytes:
    """Uniformly random non-zero scalar (64 random bytes reduced mod L)."""
    while True:
        scalar = nacl.bindings.crypto_core_ed25519_scalar_reduce(os.urandom(64))
        if not is_zero_scalar(scalar):
            return scalar


def scalar_add(a: bytes, b: bytes) -> bytes:
    return nacl.bindings.crypto_core_ed25519_scalar_add(a, b)


def scalar_sub(a: bytes, b: bytes) -> bytes:
    return nacl.bindings.crypto_core_ed25519_scalar_sub(a, b)


def scalar_mul(a: bytes, b: bytes) -> bytes:
    return nacl.bindings.crypto_core_ed25519_scalar_mul(a, b)


def scalar_invert(s: bytes) -> bytes:
    if is_zero_scalar(s):
        raise GroupError("Cannot invert zero scalar")
    return nacl.bindings.crypto_core_ed25519_scalar_invert(s)


def hash_to_scalar(msg: bytes, dst: bytes) -> bytes:
    """SHA-512 over the length-prefixed DST and message, reduced mod L."""
    digest = hashlib.sha512(length_prefixed(dst) + msg).digest()
    return nacl.bindings.crypto_core_ed25519_scalar_reduce(digest)


def hash_to_group(msg: bytes, dst: bytes) -> bytes:
    """Map arbitrary bytes to a subgroup element by try-and-increment.

    Each counter value yields a candidate encoding; libsodium accepts a
    candidate only if it is canonical, on the curve, and in the prime-order
    subgroup (about one in sixteen).
    """
    prefix = length_prefixed(dst) + length_prefixed(msg)
    for counter in range(_HASH_TO_GROUP_ATTEMPTS):
        candidate = hashlib.sha512(prefix + struct.pack(">H", counter)).digest()[:ELEMENT_SIZE]
        if nacl.bindings.crypto_core_ed25519_is_valid_point(candidate):
            return candidate
    raise GroupError(f"Hash to group failed after {_HASH_TO_GROUP_ATTEMPTS} attempts")


def is_valid_element(element: bytes) -> bool:
    if not isinstance(element, bytes) or len(element) != ELEMENT_SIZE:
        return False
    return nacl.bindings.crypto_core_ed25519_is_valid_point(element)


def deserialize_element(data: bytes) -> bytes:
    """Validate a serialized element.

    Raises:
        GroupError: If data is not a valid subgroup element.
    """
    if not is_valid_element(data):
        raise GroupError("Invalid group element")
    return data


def element_mul(scalar: bytes, element: bytes) -> bytes:
    """scalar * element. Raises GroupError if the result is the identity."""
    try:
        return nacl.bindings.crypto_scalarmult_ed25519_noclamp(scalar, element)
    except nacl.exceptions.CryptoError as e:
        raise GroupError(f"Scalar multiplication failed: {e}") from e


def base_mul(scalar: bytes) -> bytes:
    """scalar * G. Raises GroupError if the result is the identity."""
    try:
        return nacl.bindings.crypto_scalarmult_ed25519_base_noclamp(scalar)
    except nacl.exceptions.CryptoError as e:
        raise GroupError(f"Base multiplication failed: {e}") from e


def element_add(p: bytes, q: bytes) -> bytes:
    try:
        return nacl.bindings.crypto_core_ed25519_add(p, q)
    except nacl.exceptions.CryptoError as e:
        raise GroupError(f"Point addition failed: {e}") from e
