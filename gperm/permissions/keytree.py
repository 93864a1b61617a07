"""
Encryption key tree: one encrypted key entry per identity.

Write: proof bytes -> VOPRF output -> HKDF(output, fresh salt) -> AES key,
which encrypts the file key, the identity's agent key, and (PrivateComment
only) the comment key. The entry is stored under keccak256(proof bytes).

Read: the same proof bytes give the same VOPRF output; with the stored
salt that reproduces the AES key for exactly one entry.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterable

from gperm.errors import (
    DecryptionError,
    DuplicateIdentifierError,
    IdentifierNotFoundError,
    MissingIdentifierError,
    MissingKeyError,
)
from gperm.hashing import from_hex, keccak256, to_hex
from gperm.permissions.crypto import aes_decrypt, aes_encrypt, b64decode, derive_key
from gperm.permissions.merkle import MerkleTree, proof_bytes
from gperm.permissions.types import (
    DecryptedKeys,
    EncryptionKeyEntry,
    EncryptionKeyTree,
    Identity,
    PermissionType,
)
from gperm.voprf.evaluator import OprfEvaluator

logger = logging.getLogger(__name__)


def as_key_bytes(key: bytes | str) -> bytes:
    """File and comment keys may be given as raw bytes or as text."""
    if isinstance(key, str):
        return key.encode("utf-8")
    return bytes(key)


def tree_key(proof: bytes) -> str:
    """Key-tree lookup key for a proof: 0x-hex keccak256(proof bytes)."""
    return to_hex(keccak256(proof))


def create_key_entry(
    identifier: str,
    tree: MerkleTree,
    permission_type: PermissionType,
    agent_key: bytes,
    evaluator: OprfEvaluator,
    file_key: bytes | str,
    comment_key: bytes | str | None = None,
) -> tuple[str, EncryptionKeyEntry]:
    """Build the encrypted key entry for one identifier.

    Returns:
        (tree_key, entry) tuple.
    """
    proof = proof_bytes(tree, identifier)
    output = evaluator.process_input(proof)
    aes_key, salt = derive_key(output)

    encrypted_comment_key = None
    if PermissionType(permission_type) is PermissionType.PRIVATE_COMMENT:
        if comment_key is None:
            raise MissingKeyError("PrivateComment permission requires a comment key")
        encrypted_comment_key = aes_encrypt(aes_key, as_key_bytes(comment_key))

    entry = EncryptionKeyEntry(
        encrypted_file_key=aes_encrypt(aes_key, as_key_bytes(file_key)),
        salt=base64.b64encode(salt).decode("ascii"),
        encrypted_agent_key=aes_encrypt(aes_key, agent_key),
        encrypted_comment_key=encrypted_comment_key,
    )
    return tree_key(proof), entry


def _agent_key_bytes(identity: Identity) -> bytes:
    if not identity.agent_key:
        raise MissingIdentifierError(f"Identity {identity.kind.value!r} has no agent key")
    try:
        return from_hex(identity.agent_key)
    except ValueError as e:
        raise MissingIdentifierError(f"Agent key is not valid hex: {e}") from e


def build_encryption_key_tree(
    identities: Iterable[Identity],
    tree: MerkleTree,
    file_key: bytes | str,
    comment_key: bytes | str | None,
    evaluator: OprfEvaluator,
    permission_type: PermissionType,
) -> EncryptionKeyTree:
    """Build the key tree for a whole grant set.

    Every identity is checked for its identifier and agent key, and the
    comment key for PrivateComment, before the first evaluation, so a
    malformed grant set fails the build up front.

    Raises:
        MissingIdentifierError: If any identity lacks its identifier or agent key.
        DuplicateIdentifierError: If two identities share an identifier.
        MissingKeyError: If PrivateComment is requested without a comment key.
        OprfProcessingError: If any evaluation fails; no partial tree is returned.
    """
    permission_type = PermissionType(permission_type)
    if permission_type is PermissionType.PRIVATE_COMMENT and comment_key is None:
        raise MissingKeyError("PrivateComment permission requires a comment key")

    prepared = []
    seen: set[str] = set()
    for identity in identities:
        if identity is None:
            raise MissingIdentifierError("Identifier not found")
        identifier = identity.identifier
        if identifier in seen:
            raise DuplicateIdentifierError(
                f"Identifier {identifier!r} appears more than once in the grant set"
            )
        seen.add(identifier)
        prepared.append((identifier, _agent_key_bytes(identity)))

    key_tree: EncryptionKeyTree = {}
    for identifier, agent_key in prepared:
        key, entry = create_key_entry(
            identifier,
            tree,
            permission_type,
            agent_key,
            evaluator,
            file_key,
            comment_key,
        )
        key_tree[key] = entry

    logger.info("Built encryption key tree with %d entries", len(key_tree))
    return key_tree


def open_key_entry(
    identifier: str,
    tree: MerkleTree,
    key_tree: EncryptionKeyTree,
    evaluator: OprfEvaluator,
) -> DecryptedKeys:
    """Recover one identity's key material from the key tree.

    Raises:
        IdentifierNotFoundError: If the identifier is not in the tree or has
            no entry.
        OprfProcessingError: If the evaluation fails.
        DecryptionError: If the re-derived key does not open the entry.
    """
    proof = proof_bytes(tree, identifier)
    entry = key_tree.get(tree_key(proof))
    if entry is None:
        raise IdentifierNotFoundError("No key entry for identifier")

    try:
        salt = b64decode(entry.salt)
    except ValueError as e:
        raise DecryptionError(f"Malformed salt: {e}") from e

    output = evaluator.process_input(proof)
    try:
        aes_key, _ = derive_key(output, salt)
    except ValueError as e:
        raise DecryptionError(f"Cannot derive key from stored salt: {e}") from e

    comment_key = None
    if entry.encrypted_comment_key is not None:
        comment_key = aes_decrypt(aes_key, entry.encrypted_comment_key)

    return DecryptedKeys(
        file_key=aes_decrypt(aes_key, entry.encrypted_file_key),
        agent_key=aes_decrypt(aes_key, entry.encrypted_agent_key),
        comment_key=comment_key,
    )
