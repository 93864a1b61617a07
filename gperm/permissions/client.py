"""
GranularPermissions — one context object per permission contract.

Holds the collaborators (ledger, store, evaluator) explicitly; there is no
module-level client. Build one per file or per request when operations
run concurrently.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from gperm.permissions.content import (
    DecryptionCallback,
    EncryptionCallback,
    decrypt_membership_tree,
    load_owner_permission_set,
    load_permission_content,
    prepare_permission_update,
)
from gperm.permissions.keytree import open_key_entry
from gperm.permissions.types import (
    DecryptedKeys,
    FilePermissionRecord,
    Identity,
    PermissionType,
    PermissionUpdate,
    PublicPermissionContent,
    RegistryType,
)
from gperm.voprf.evaluator import OprfEvaluator

if TYPE_CHECKING:
    from gperm.ledger import PermissionLedger
    from gperm.store import ContentStore


class GranularPermissions:
    """Grant, read, and redeem per-identity file permissions.

    Usage:
        gp = GranularPermissions(contract, store, OprfEvaluator(service, pk))
        update = gp.prepare_permission_update(
            file_id=7,
            permission_type=PermissionType.PRIVATE_EDIT,
            identities=grant_set,
            file_key=file_key,
            comment_key=None,
            secret_key=tree_key,
            encryption_callback=owner_encrypt,
        )
        # submit update.call_data to update.contract_address
    """

    def __init__(
        self,
        ledger: PermissionLedger,
        store: ContentStore,
        evaluator: OprfEvaluator,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.evaluator = evaluator

    @property
    def contract_address(self) -> str:
        return getattr(self.ledger, "address", "")

    def get_current_file_permission(self, file_id: int) -> FilePermissionRecord:
        return self.ledger.get_file_permission(file_id)

    def prepare_permission_update(
        self,
        file_id: int,
        permission_type: PermissionType,
        identities: Mapping[str, Identity],
        file_key: bytes | str,
        comment_key: bytes | str | None,
        secret_key: bytes,
        encryption_callback: EncryptionCallback,
        registry_type: RegistryType = RegistryType.PRIVATE,
        force: bool = True,
    ) -> PermissionUpdate:
        """Replace the grant set of a file. See content.prepare_permission_update."""
        return prepare_permission_update(
            file_id,
            permission_type,
            identities,
            file_key,
            comment_key,
            secret_key,
            encryption_callback,
            evaluator=self.evaluator,
            store=self.store,
            ledger=self.ledger,
            registry_type=registry_type,
            force=force,
        )

    def get_permission_content(self, file_id: int) -> PublicPermissionContent:
        return load_permission_content(self.ledger, self.store, file_id)

    def get_owner_permission_set(
        self,
        file_id: int,
        decryption_callback: DecryptionCallback,
    ) -> dict[str, Identity]:
        return load_owner_permission_set(self.ledger, self.store, file_id, decryption_callback)

    def read_member_keys(
        self,
        file_id: int,
        identifier: str,
        secret_key: bytes,
    ) -> DecryptedKeys:
        """Member read path: recover this identifier's keys for a file.

        Raises:
            DecryptionError: If secret_key does not open the tree, or the
                re-derived key does not open the entry.
            IdentifierNotFoundError: If the identifier is not a grantee.
        """
        content = self.get_permission_content(file_id)
        tree = decrypt_membership_tree(content.permission_tree, secret_key)
        return open_key_entry(identifier, tree, content.encryption_key_tree, self.evaluator)
