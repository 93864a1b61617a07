"""
Symmetric encryption for permission content.

- Key derivation: HKDF-SHA256 over the VOPRF output and a 12-byte salt
- Key entries:    AES-256-GCM, serialized as base64(nonce(12) + ciphertext)
- Tree dump:      XSalsa20-Poly1305 secretbox (PyNaCl), base64(nonce(24) + ciphertext)

The `cryptography` package is lazily imported — a missing dependency
produces a clear error message.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Any

import nacl.exceptions
import nacl.secret

from gperm import HKDF_INFO, KEY_SIZE, NONCE_SIZE, SALT_SIZE, SECRETBOX_KEY_SIZE
from gperm.errors import DecryptionError

_GCM_TAG_SIZE = 16


def _import_cryptography():
    """Lazily import the cryptography primitives.

    Raises ImportError with a helpful message if not installed.
    """
    try:
        from cryptography.hazmat.primitives import hashes
        from cryptography.hazmat.primitives.ciphers.aead import AESGCM
        from cryptography.hazmat.primitives.kdf.hkdf import HKDF

        return AESGCM, HKDF, hashes
    except ImportError:
        raise ImportError(
            "cryptography is required for gperm encryption. "
            "Install with: pip install cryptography"
        )


def json_to_bytes(data: Any) -> bytes:
    """Serialize a JSON-compatible object to UTF-8 bytes."""
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def b64decode(value: str) -> bytes:
    """Strict base64 decode. Raises ValueError on malformed input."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"Invalid base64: {e}") from e


@dataclass(frozen=True)
class EncryptedPayload:
    """Container for an AES-256-GCM encrypted payload.

    Attributes:
        ciphertext: The encrypted data including GCM auth tag.
        nonce: The 12-byte nonce used for encryption.
    """

    ciphertext: bytes
    nonce: bytes

    def to_bytes(self) -> bytes:
        """Serialize to bytes: nonce(12) + ciphertext."""
        return self.nonce + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> EncryptedPayload:
        """Deserialize from bytes."""
        if len(data) < NONCE_SIZE + _GCM_TAG_SIZE:
            raise ValueError("Encrypted payload too short")
        return cls(ciphertext=data[NONCE_SIZE:], nonce=data[:NONCE_SIZE])

    def to_base64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    @classmethod
    def from_base64(cls, value: str) -> EncryptedPayload:
        return cls.from_bytes(b64decode(value))


def derive_key(
    oprf_output: bytes,
    salt: bytes | None = None,
) -> tuple[bytes, bytes]:
    """Derive an AES-256 key from a VOPRF output using HKDF-SHA256.

    Deterministic for a given (oprf_output, salt) pair, so a reader who
    re-runs the evaluation and supplies the stored salt gets the same key.

    Args:
        oprf_output: The finalized VOPRF output.
        salt: Optional 12-byte salt. Generated if not provided.

    Returns:
        (key, salt) tuple. The salt is not secret and is stored with the entry.
    """
    _, HKDF, hashes = _import_cryptography()

    if not oprf_output:
        raise ValueError("VOPRF output must not be empty")
    if salt is None:
        salt = os.urandom(SALT_SIZE)
    if len(salt) != SALT_SIZE:
        raise ValueError(f"Salt must be {SALT_SIZE} bytes")

    key = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        info=HKDF_INFO,
    ).derive(oprf_output)
    return key, salt


def encrypt_with_key(plaintext: bytes, key: bytes) -> EncryptedPayload:
    """Encrypt data with a raw 32-byte key using AES-256-GCM."""
    AESGCM, _, _ = _import_cryptography()

    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes")

    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return EncryptedPayload(ciphertext=ciphertext, nonce=nonce)


def decrypt_with_key(payload: EncryptedPayload, key: bytes) -> bytes:
    """Decrypt data with a raw key.

    Raises:
        DecryptionError: If authentication fails.
    """
    AESGCM, _, _ = _import_cryptography()
    from cryptography.exceptions import InvalidTag

    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes")

    try:
        return AESGCM(key).decrypt(payload.nonce, payload.ciphertext, None)
    except InvalidTag as e:
        raise DecryptionError("Decryption failed — wrong key or tampered ciphertext") from e


def aes_encrypt(key: bytes, plaintext: bytes) -> str:
    """AES-256-GCM encrypt and return base64(nonce + ciphertext)."""
    return encrypt_with_key(plaintext, key).to_base64()


def aes_decrypt(key: bytes, data: str) -> bytes:
    """Inverse of aes_encrypt.

    Raises:
        DecryptionError: If data is malformed or fails authentication.
    """
    try:
        payload = EncryptedPayload.from_base64(data)
    except ValueError as e:
        raise DecryptionError(f"Malformed ciphertext: {e}") from e
    return decrypt_with_key(payload, key)


def secretbox_encrypt(plaintext: bytes, key: bytes) -> str:
    """Encrypt with XSalsa20-Poly1305 and return base64(nonce + ciphertext)."""
    if len(key) != SECRETBOX_KEY_SIZE:
        raise ValueError(f"Secret key must be {SECRETBOX_KEY_SIZE} bytes")
    encrypted = nacl.secret.SecretBox(key).encrypt(plaintext)
    return base64.b64encode(bytes(encrypted)).decode("ascii")


def secretbox_decrypt(data: str, key: bytes) -> bytes:
    """Inverse of secretbox_encrypt.

    Raises:
        DecryptionError: If data is malformed or fails authentication.
    """
    if len(key) != SECRETBOX_KEY_SIZE:
        raise ValueError(f"Secret key must be {SECRETBOX_KEY_SIZE} bytes")
    try:
        return nacl.secret.SecretBox(key).decrypt(b64decode(data))
    except (ValueError, nacl.exceptions.CryptoError) as e:
        raise DecryptionError("Secretbox decryption failed — wrong key or tampered data") from e
