"""
Permission contract access over Ethereum JSON-RPC.

Reads go through eth_call; writes are never submitted from here — the
core only produces call data for someone else to sign and send.

    getFilePermission(uint256)            -> (string, uint8, address)
    hasFilePermission(uint256,address,uint8) -> bool
    initializeFilePermission(uint256,string,uint8,(address,uint8)[],bool)

ABI encoding via eth-abi; HTTP via stdlib urllib.request.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from collections.abc import Sequence
from typing import Any, Protocol

from eth_abi import decode, encode

from gperm.errors import LedgerRPCError
from gperm.hashing import from_hex, keccak256
from gperm.permissions.types import FilePermissionRecord, FileRole, RegistryType

logger = logging.getLogger(__name__)

GET_FILE_PERMISSION = "getFilePermission(uint256)"
HAS_FILE_PERMISSION = "hasFilePermission(uint256,address,uint8)"
INITIALIZE_FILE_PERMISSION = (
    "initializeFilePermission(uint256,string,uint8,(address,uint8)[],bool)"
)


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256 of the canonical function signature."""
    return keccak256(signature.encode("ascii"))[:4]


def encode_initialize_call(
    file_id: int,
    metadata_hash: str,
    registry_type: RegistryType,
    permissions: Sequence[tuple[str, FileRole]],
    force: bool = True,
) -> bytes:
    """Encode initializeFilePermission call data."""
    args = encode(
        ["uint256", "string", "uint8", "(address,uint8)[]", "bool"],
        [
            int(file_id),
            metadata_hash,
            int(registry_type),
            [(account, int(role)) for account, role in permissions],
            bool(force),
        ],
    )
    return function_selector(INITIALIZE_FILE_PERMISSION) + args


class PermissionLedger(Protocol):
    """Read/encode surface of the permission contract used by the core."""

    address: str

    def get_file_permission(self, file_id: int) -> FilePermissionRecord: ...

    def encode_initialize_call(
        self,
        file_id: int,
        metadata_hash: str,
        registry_type: RegistryType,
        permissions: Sequence[tuple[str, FileRole]],
        force: bool = True,
    ) -> bytes: ...


class EthereumRPC:
    """Minimal Ethereum JSON-RPC client using stdlib urllib.

    Usage:
        rpc = EthereumRPC.from_env()
        block = rpc.call("eth_blockNumber")
    """

    def __init__(self, url: str, timeout: float = 30) -> None:
        if not url:
            raise ValueError("Ethereum RPC URL cannot be empty")
        self.url = url
        self.timeout = timeout
        self._id_counter = 0

    @classmethod
    def from_env(cls) -> EthereumRPC:
        """Create RPC client from the GPERM_RPC_URL environment variable."""
        url = os.environ.get("GPERM_RPC_URL", "")
        if not url:
            raise LedgerRPCError(
                "GPERM_RPC_URL not set. "
                "Set it to your chain's JSON-RPC endpoint."
            )
        return cls(url)

    def call(self, method: str, *params: Any) -> Any:
        """Execute a JSON-RPC call. Returns the 'result' field.

        Raises LedgerRPCError on transport or RPC-level errors.
        """
        self._id_counter += 1
        payload = json.dumps({
            "jsonrpc": "2.0",
            "id": self._id_counter,
            "method": method,
            "params": list(params),
        }).encode()

        req = urllib.request.Request(
            self.url,
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = json.loads(resp.read().decode())
        except urllib.error.HTTPError as e:
            raise LedgerRPCError(f"HTTP {e.code}: {e.reason}") from e
        except urllib.error.URLError as e:
            raise LedgerRPCError(f"Connection failed: {e.reason}") from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise LedgerRPCError(f"Malformed RPC response: {e}") from e
        except OSError as e:
            raise LedgerRPCError(f"RPC call failed: {e}") from e

        if not isinstance(body, dict):
            raise LedgerRPCError("Malformed RPC response: not an object")
        if body.get("error"):
            err = body["error"]
            msg = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            raise LedgerRPCError(f"RPC error: {msg}")

        return body.get("result")

    def eth_call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        """Run a read-only contract call and return the raw return data."""
        result = self.call("eth_call", {"to": to, "data": "0x" + data.hex()}, block)
        if not isinstance(result, str):
            raise LedgerRPCError(f"Unexpected eth_call result: {result!r}")
        try:
            return from_hex(result)
        except ValueError as e:
            raise LedgerRPCError(f"eth_call returned invalid hex: {e}") from e


class PermissionContract:
    """The permission contract at one address.

    Usage:
        contract = PermissionContract("0x...", EthereumRPC(url))
        record = contract.get_file_permission(42)
    """

    def __init__(self, address: str, rpc: EthereumRPC) -> None:
        if not address:
            raise ValueError("Permission contract address cannot be empty")
        self.address = address
        self.rpc = rpc

    def _read(self, signature: str, arg_types: list[str], args: list[Any], out_types: list[str]) -> tuple:
        data = function_selector(signature) + encode(arg_types, args)
        raw = self.rpc.eth_call(self.address, data)
        try:
            return decode(out_types, raw)
        except Exception as e:
            raise LedgerRPCError(f"Cannot decode {signature} result: {e}") from e

    def get_file_permission(self, file_id: int) -> FilePermissionRecord:
        """Read (content hash, registry type, extender address) for a file."""
        content_hash, registry_type, extender = self._read(
            GET_FILE_PERMISSION, ["uint256"], [int(file_id)], ["string", "uint8", "address"]
        )
        try:
            registry = RegistryType(registry_type)
        except ValueError as e:
            raise LedgerRPCError(f"Unknown registry type {registry_type}") from e

        logger.debug("File %d permission record: %s", file_id, content_hash)
        return FilePermissionRecord(
            content_hash=content_hash,
            registry_type=registry,
            extender_address=extender,
        )

    def has_file_permission(self, file_id: int, account: str, role: FileRole) -> bool:
        (allowed,) = self._read(
            HAS_FILE_PERMISSION,
            ["uint256", "address", "uint8"],
            [int(file_id), account, int(role)],
            ["bool"],
        )
        return bool(allowed)

    def encode_initialize_call(
        self,
        file_id: int,
        metadata_hash: str,
        registry_type: RegistryType,
        permissions: Sequence[tuple[str, FileRole]],
        force: bool = True,
    ) -> bytes:
        return encode_initialize_call(file_id, metadata_hash, registry_type, permissions, force)
