"""
Granular permissions — membership tree, key tree, and permission content.

Provides:
    - MerkleTree / build_tree / proof_bytes / verify_membership — membership encoding
    - derive_key / aes_encrypt / aes_decrypt — HKDF + AES-256-GCM key entries
    - build_encryption_key_tree / open_key_entry — per-identity key tree
    - prepare_permission_update / load_permission_content — packaging
    - GranularPermissions — context object tying ledger, store, and evaluator

Requires `cryptography`, `PyNaCl`, and `pycryptodome`.
"""

from gperm.permissions.merkle import (
    MerkleProof,
    MerkleTree,
    build_tree,
    load_tree,
    proof_bytes,
    verify_membership,
    verify_proof,
)
from gperm.permissions.crypto import derive_key, aes_encrypt, aes_decrypt
from gperm.permissions.types import (
    DecryptedKeys,
    EncryptionKeyEntry,
    FilePermissionRecord,
    FileRole,
    Identity,
    IdentityKind,
    PermissionContent,
    PermissionType,
    PermissionUpdate,
    PublicPermissionContent,
    RegistryType,
    role_for,
)
from gperm.permissions.keytree import build_encryption_key_tree, open_key_entry
from gperm.permissions.content import (
    load_owner_permission_set,
    load_permission_content,
    prepare_permission_update,
)
from gperm.permissions.client import GranularPermissions

__all__ = [
    "MerkleProof",
    "MerkleTree",
    "build_tree",
    "load_tree",
    "proof_bytes",
    "verify_membership",
    "verify_proof",
    "derive_key",
    "aes_encrypt",
    "aes_decrypt",
    "DecryptedKeys",
    "EncryptionKeyEntry",
    "FilePermissionRecord",
    "FileRole",
    "Identity",
    "IdentityKind",
    "PermissionContent",
    "PermissionType",
    "PermissionUpdate",
    "PublicPermissionContent",
    "RegistryType",
    "role_for",
    "build_encryption_key_tree",
    "open_key_entry",
    "load_owner_permission_set",
    "load_permission_content",
    "prepare_permission_update",
    "GranularPermissions",
]
