"""
Data model for granular permissions.

Identity records and key entries serialize with camelCase keys so the
owner permission set and the key tree stay readable by other clients of
the same permission contract.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from gperm.errors import MissingIdentifierError


class PermissionType(str, Enum):
    """Sharing mode chosen by the file owner for a grant set."""

    PUBLIC_VIEW = "PublicView"
    PUBLIC_COMMENT = "PublicComment"
    PUBLIC_EDIT = "PublicEdit"
    PRIVATE_VIEW = "PrivateView"
    PRIVATE_COMMENT = "PrivateComment"
    PRIVATE_EDIT = "PrivateEdit"


class FileRole(IntEnum):
    """On-chain role, encoded as uint8 by the permission contract."""

    VIEW = 0
    COMMENT = 1
    EDIT = 2


class RegistryType(IntEnum):
    PRIVATE = 0
    DECENTRALISED = 1


class IdentityKind(str, Enum):
    EMAIL = "email"
    WALLET = "wallet"
    ENS = "ens"


# Public types never reach the contract with their own role; they fall
# back to View alongside PrivateView.
_ROLE_BY_PERMISSION: dict[PermissionType, FileRole] = {
    PermissionType.PUBLIC_VIEW: FileRole.VIEW,
    PermissionType.PUBLIC_COMMENT: FileRole.VIEW,
    PermissionType.PUBLIC_EDIT: FileRole.VIEW,
    PermissionType.PRIVATE_VIEW: FileRole.VIEW,
    PermissionType.PRIVATE_COMMENT: FileRole.COMMENT,
    PermissionType.PRIVATE_EDIT: FileRole.EDIT,
}


def role_for(permission_type: PermissionType | str) -> FileRole:
    """Map a permission type to the on-chain role granted to every identity.

    Raises:
        ValueError: If permission_type is not a known PermissionType.
    """
    return _ROLE_BY_PERMISSION[PermissionType(permission_type)]


@dataclass(frozen=True)
class Identity:
    """One grantee in a permission set.

    Attributes:
        kind: email, wallet, or ens.
        value: The email address, wallet address, or ENS name.
        address: Resolved wallet address (empty for email identities).
        agent_key: Hex private key of the identity's agent key pair.
        agent_address: Address of the agent account the role is granted to.
        is_owner: True for the file owner's own entry.
    """

    kind: IdentityKind
    value: str
    address: str = ""
    agent_key: str = ""
    agent_address: str = ""
    is_owner: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", IdentityKind(self.kind))

    @property
    def identifier(self) -> str:
        """The canonical identifier hashed into the membership tree.

        Email identities use the email address; wallet and ENS identities
        use the resolved address.

        Raises:
            MissingIdentifierError: If the kind's identifier field is empty.
        """
        if self.kind is IdentityKind.EMAIL:
            identifier = self.value
        else:
            identifier = self.address
        if not identifier:
            raise MissingIdentifierError(
                f"Identity of kind {self.kind.value!r} has no identifier"
            )
        return identifier

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.kind.value,
            "value": self.value,
            "address": self.address,
            "agentKey": self.agent_key,
            "agentAddress": self.agent_address,
        }
        if self.is_owner:
            d["isOwner"] = True
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Identity:
        return cls(
            kind=IdentityKind(d["type"]),
            value=d.get("value", ""),
            address=d.get("address", ""),
            agent_key=d.get("agentKey", ""),
            agent_address=d.get("agentAddress", ""),
            is_owner=bool(d.get("isOwner", False)),
        )


@dataclass(frozen=True)
class EncryptionKeyEntry:
    """Per-identity encrypted key material, keyed by keccak256(proof bytes)."""

    encrypted_file_key: str
    salt: str
    encrypted_agent_key: str
    encrypted_comment_key: str | None = None

    def to_dict(self) -> dict[str, str]:
        d = {
            "encryptedFileKey": self.encrypted_file_key,
            "salt": self.salt,
            "encryptedAgentKey": self.encrypted_agent_key,
        }
        if self.encrypted_comment_key is not None:
            d["encryptedCommentKey"] = self.encrypted_comment_key
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> EncryptionKeyEntry:
        return cls(
            encrypted_file_key=d["encryptedFileKey"],
            salt=d["salt"],
            encrypted_agent_key=d["encryptedAgentKey"],
            encrypted_comment_key=d.get("encryptedCommentKey"),
        )


EncryptionKeyTree = dict[str, EncryptionKeyEntry]


def key_tree_to_dict(tree: EncryptionKeyTree) -> dict[str, dict[str, str]]:
    return {key: entry.to_dict() for key, entry in tree.items()}


def key_tree_from_dict(d: dict[str, Any]) -> EncryptionKeyTree:
    return {key: EncryptionKeyEntry.from_dict(entry) for key, entry in d.items()}


@dataclass(frozen=True)
class PublicPermissionContent:
    """The part of the permission payload any reader may see."""

    permission_tree: str
    encryption_key_tree: EncryptionKeyTree = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "permissionTree": self.permission_tree,
            "encryptionKeyTree": key_tree_to_dict(self.encryption_key_tree),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PublicPermissionContent:
        return cls(
            permission_tree=d["permissionTree"],
            encryption_key_tree=key_tree_from_dict(d.get("encryptionKeyTree", {})),
        )


@dataclass(frozen=True)
class PermissionContent:
    """Payload uploaded to content-addressed storage for one grant set."""

    permission_tree: str
    owner_permission_set: str
    encryption_key_tree: EncryptionKeyTree = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "permissionTree": self.permission_tree,
            "ownerPermissionSet": self.owner_permission_set,
            "encryptionKeyTree": key_tree_to_dict(self.encryption_key_tree),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PermissionContent:
        return cls(
            permission_tree=d["permissionTree"],
            owner_permission_set=d["ownerPermissionSet"],
            encryption_key_tree=key_tree_from_dict(d.get("encryptionKeyTree", {})),
        )

    def public(self) -> PublicPermissionContent:
        """Drop the owner-only grant list."""
        return PublicPermissionContent(
            permission_tree=self.permission_tree,
            encryption_key_tree=dict(self.encryption_key_tree),
        )


@dataclass(frozen=True)
class FilePermissionRecord:
    """On-ledger permission record for a file."""

    content_hash: str
    registry_type: RegistryType
    extender_address: str


@dataclass(frozen=True)
class PermissionUpdate:
    """Result of preparing a grant: where the payload lives and the call data."""

    content_hash: str
    call_data: bytes
    contract_address: str = ""

    @property
    def call_data_hex(self) -> str:
        return "0x" + self.call_data.hex()


@dataclass(frozen=True)
class DecryptedKeys:
    """Key material recovered by one identity from its key entry."""

    file_key: bytes
    agent_key: bytes
    comment_key: bytes | None = None
