"""
Permission content packaging: the payload uploaded per grant set and the
call data that points the ledger at it.

    PermissionContent = {
        permissionTree:     secretbox(tree dump, file secret key)
        ownerPermissionSet: owner_encrypt(identity map)
        encryptionKeyTree:  {keccak256(proof): EncryptionKeyEntry}
    }

A write is all-or-nothing: the payload is uploaded only after every key
entry is built, and call data is produced only after the returned content
hash validates.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from gperm.cid import is_valid_cid
from gperm.errors import (
    DecryptionError,
    EmptySetError,
    InvalidContentHashError,
    InvalidTreeError,
    MissingIdentifierError,
    StoreError,
)
from gperm.permissions.crypto import json_to_bytes, secretbox_decrypt, secretbox_encrypt
from gperm.permissions.keytree import build_encryption_key_tree
from gperm.permissions.merkle import MerkleTree, build_tree
from gperm.permissions.types import (
    EncryptionKeyTree,
    FileRole,
    Identity,
    PermissionContent,
    PermissionType,
    PermissionUpdate,
    PublicPermissionContent,
    RegistryType,
    role_for,
)
from gperm.voprf.evaluator import OprfEvaluator

if TYPE_CHECKING:
    from gperm.ledger import PermissionLedger
    from gperm.store import ContentStore

logger = logging.getLogger(__name__)

EncryptionCallback = Callable[[bytes], str]
DecryptionCallback = Callable[[str], bytes]


def encrypt_membership_tree(tree: MerkleTree, secret_key: bytes) -> str:
    return secretbox_encrypt(json_to_bytes(tree.dump()), secret_key)


def decrypt_membership_tree(ciphertext: str, secret_key: bytes) -> MerkleTree:
    """Decrypt and validate a membership tree.

    Raises:
        DecryptionError: If the secret key does not open the ciphertext.
        InvalidTreeError: If the plaintext is not a valid tree dump.
    """
    plaintext = secretbox_decrypt(ciphertext, secret_key)
    try:
        dump = json.loads(plaintext.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidTreeError(f"Tree dump is not JSON: {e}") from e
    return MerkleTree.load(dump)


def encrypt_permission_map(
    identities: Mapping[str, Identity],
    encryption_callback: EncryptionCallback,
) -> str:
    data = {key: identity.to_dict() for key, identity in identities.items()}
    return encryption_callback(json_to_bytes(data))


def decrypt_permission_map(
    ciphertext: str,
    decryption_callback: DecryptionCallback,
) -> dict[str, Identity]:
    """Open the owner's identity map.

    Raises:
        DecryptionError: If the plaintext is not a JSON identity map.
    """
    plaintext = decryption_callback(ciphertext)
    try:
        data = json.loads(plaintext.decode("utf-8"))
        return {key: Identity.from_dict(item) for key, item in data.items()}
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise DecryptionError(f"Owner permission set is malformed: {e!r}") from e


def create_permission_content(
    tree: MerkleTree,
    identities: Mapping[str, Identity],
    key_tree: EncryptionKeyTree,
    secret_key: bytes,
    encryption_callback: EncryptionCallback,
) -> PermissionContent:
    return PermissionContent(
        permission_tree=encrypt_membership_tree(tree, secret_key),
        owner_permission_set=encrypt_permission_map(identities, encryption_callback),
        encryption_key_tree=key_tree,
    )


def role_assignments(
    identities: Mapping[str, Identity],
    permission_type: PermissionType,
) -> list[tuple[str, FileRole]]:
    """(agent account, role) pairs for the initialize call, one per identity."""
    role = role_for(permission_type)
    assignments = []
    for identity in identities.values():
        if not identity.agent_address:
            raise MissingIdentifierError(
                f"Identity of kind {identity.kind.value!r} has no agent address"
            )
        assignments.append((identity.agent_address, role))
    return assignments


def prepare_permission_update(
    file_id: int,
    permission_type: PermissionType,
    identities: Mapping[str, Identity],
    file_key: bytes | str,
    comment_key: bytes | str | None,
    secret_key: bytes,
    encryption_callback: EncryptionCallback,
    evaluator: OprfEvaluator,
    store: ContentStore,
    ledger: PermissionLedger,
    registry_type: RegistryType = RegistryType.PRIVATE,
    force: bool = True,
) -> PermissionUpdate:
    """Build, upload, and encode a complete replacement grant set.

    Raises:
        EmptySetError: If identities is empty.
        MissingIdentifierError: If an identity lacks its identifier.
        OprfProcessingError: If any evaluation fails (nothing is uploaded).
        InvalidContentHashError: If storage returns a malformed handle
            (no call data is produced).
    """
    if not identities:
        raise EmptySetError(
            "Invalid permission map, at least one item is required in permission map"
        )
    permission_type = PermissionType(permission_type)
    assignments = role_assignments(identities, permission_type)

    grantees = list(identities.values())
    tree = build_tree([identity.identifier for identity in grantees])
    key_tree = build_encryption_key_tree(
        grantees, tree, file_key, comment_key, evaluator, permission_type
    )
    content = create_permission_content(
        tree, identities, key_tree, secret_key, encryption_callback
    )

    content_hash = store.upload(content.to_dict())
    if not is_valid_cid(content_hash):
        raise InvalidContentHashError(f"Invalid content hash: {content_hash!r}")

    call_data = ledger.encode_initialize_call(
        file_id,
        content_hash,
        registry_type,
        assignments,
        force,
    )

    logger.info(
        "Prepared permission update for file %d: %d identities, %s",
        file_id, len(identities), content_hash,
    )
    return PermissionUpdate(
        content_hash=content_hash,
        call_data=call_data,
        contract_address=getattr(ledger, "address", ""),
    )


def _fetch_content(ledger: PermissionLedger, store: ContentStore, file_id: int) -> dict[str, Any]:
    record = ledger.get_file_permission(file_id)
    return store.fetch(record.content_hash)


def _parse_content(payload: Any, content_type: type) -> Any:
    try:
        return content_type.from_dict(payload)
    except (KeyError, TypeError, AttributeError) as e:
        raise StoreError(f"Malformed permission content: {e!r}") from e


def load_permission_content(
    ledger: PermissionLedger,
    store: ContentStore,
    file_id: int,
) -> PublicPermissionContent:
    """Current tree and key tree for a file. The owner grant list is dropped."""
    return _parse_content(_fetch_content(ledger, store, file_id), PublicPermissionContent)


def load_owner_permission_set(
    ledger: PermissionLedger,
    store: ContentStore,
    file_id: int,
    decryption_callback: DecryptionCallback,
) -> dict[str, Identity]:
    """Decrypt the owner's full identity map for a file."""
    content = _parse_content(_fetch_content(ledger, store, file_id), PermissionContent)
    return decrypt_permission_map(content.owner_permission_set, decryption_callback)
