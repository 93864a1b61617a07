"""
Tests for ledger access, content identifiers, the local content store, and config.

All tests use mock RPC — no chain node required.
"""

from __future__ import annotations

import json
import os
import stat
from unittest.mock import MagicMock, patch

import base58
import pytest
from eth_abi import decode, encode

from gperm.cid import compute_cid, decode_cid, is_valid_cid
from gperm.config import DEFAULT_CONFIG, load_config, load_or_create_server_key
from gperm.errors import ConfigError, LedgerRPCError, StoreError
from gperm.ledger import (
    GET_FILE_PERMISSION,
    HAS_FILE_PERMISSION,
    EthereumRPC,
    PermissionContract,
    encode_initialize_call,
    function_selector,
)
from gperm.permissions.types import FileRole, RegistryType
from gperm.store import LocalContentStore, canonical_json
from gperm.voprf import group


CONTRACT = "0x" + "cc" * 20
EXTENDER = "0x" + "ab" * 20
CIDV0 = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"

_ENV_VARS = [
    "GPERM_RPC_URL",
    "GPERM_PERMISSION_CONTRACT",
    "GPERM_EVALUATION_URL",
    "GPERM_OPRF_PUBLIC_KEY",
    "GPERM_STORE_ROOT",
    "GPERM_API_KEY",
    "GPERM_OPRF_KEY",
]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_rpc():
    rpc = MagicMock(spec=EthereumRPC)
    rpc.url = "http://127.0.0.1:8545"
    return rpc


@pytest.fixture
def contract(mock_rpc):
    return PermissionContract(CONTRACT, mock_rpc)


@pytest.fixture
def tmp_store(tmp_path):
    return LocalContentStore(root=tmp_path / "store")


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out


def _mock_response(payload: dict) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = json.dumps(payload).encode()
    resp.__enter__ = MagicMock(return_value=resp)
    resp.__exit__ = MagicMock(return_value=False)
    return resp


# ---------------------------------------------------------------------------
# EthereumRPC
# ---------------------------------------------------------------------------

class TestEthereumRPC:
    def test_empty_url(self):
        with pytest.raises(ValueError):
            EthereumRPC("")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("GPERM_RPC_URL", "http://localhost:8545")
        assert EthereumRPC.from_env().url == "http://localhost:8545"

    def test_from_env_missing_url(self, clean_env):
        with pytest.raises(LedgerRPCError):
            EthereumRPC.from_env()

    @patch("gperm.ledger.urllib.request.urlopen")
    def test_call(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({"jsonrpc": "2.0", "id": 1, "result": "0x10"})
        rpc = EthereumRPC("http://localhost:8545")
        assert rpc.call("eth_blockNumber") == "0x10"

        req = mock_urlopen.call_args[0][0]
        body = json.loads(req.data.decode())
        assert body["method"] == "eth_blockNumber"
        assert body["jsonrpc"] == "2.0"
        assert body["params"] == []

    @patch("gperm.ledger.urllib.request.urlopen")
    def test_rpc_error(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response(
            {"jsonrpc": "2.0", "id": 1, "error": {"code": 3, "message": "execution reverted"}}
        )
        with pytest.raises(LedgerRPCError, match="execution reverted"):
            EthereumRPC("http://localhost:8545").call("eth_call")

    @patch("gperm.ledger.urllib.request.urlopen")
    def test_eth_call_hex(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({"jsonrpc": "2.0", "id": 1, "result": "0x0102"})
        rpc = EthereumRPC("http://localhost:8545")
        assert rpc.eth_call(CONTRACT, b"\xaa") == b"\x01\x02"

        body = json.loads(mock_urlopen.call_args[0][0].data.decode())
        assert body["params"] == [{"to": CONTRACT, "data": "0xaa"}, "latest"]

    @patch("gperm.ledger.urllib.request.urlopen")
    def test_eth_call_bad_result(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({"jsonrpc": "2.0", "id": 1, "result": None})
        with pytest.raises(LedgerRPCError):
            EthereumRPC("http://localhost:8545").eth_call(CONTRACT, b"")


# ---------------------------------------------------------------------------
# PermissionContract
# ---------------------------------------------------------------------------

class TestPermissionContract:
    def test_empty_address(self, mock_rpc):
        with pytest.raises(ValueError):
            PermissionContract("", mock_rpc)

    def test_get_file_permission(self, contract, mock_rpc):
        cid = compute_cid(b"{}")
        mock_rpc.eth_call.return_value = encode(
            ["string", "uint8", "address"], [cid, 0, EXTENDER]
        )

        record = contract.get_file_permission(42)

        assert record.content_hash == cid
        assert record.registry_type is RegistryType.PRIVATE
        assert record.extender_address.lower() == EXTENDER
        to, data = mock_rpc.eth_call.call_args[0]
        assert to == CONTRACT
        assert data == function_selector(GET_FILE_PERMISSION) + encode(["uint256"], [42])

    def test_get_file_permission_unknown_registry(self, contract, mock_rpc):
        mock_rpc.eth_call.return_value = encode(
            ["string", "uint8", "address"], ["", 9, EXTENDER]
        )
        with pytest.raises(LedgerRPCError):
            contract.get_file_permission(1)

    def test_get_file_permission_undecodable(self, contract, mock_rpc):
        mock_rpc.eth_call.return_value = b"\x00"
        with pytest.raises(LedgerRPCError):
            contract.get_file_permission(1)

    def test_has_file_permission(self, contract, mock_rpc):
        mock_rpc.eth_call.return_value = encode(["bool"], [True])
        assert contract.has_file_permission(3, EXTENDER, FileRole.EDIT) is True

        _, data = mock_rpc.eth_call.call_args[0]
        assert data[:4] == function_selector(HAS_FILE_PERMISSION)
        file_id, account, role = decode(["uint256", "address", "uint8"], data[4:])
        assert (file_id, account.lower(), role) == (3, EXTENDER, 2)

    def test_encode_initialize_call(self, contract):
        perms = [("0x" + "01" * 20, FileRole.VIEW), ("0x" + "02" * 20, FileRole.VIEW)]
        data = contract.encode_initialize_call(5, CIDV0, RegistryType.PRIVATE, perms)
        assert data == encode_initialize_call(5, CIDV0, RegistryType.PRIVATE, perms, True)

        file_id, cid, registry, permissions, force = decode(
            ["uint256", "string", "uint8", "(address,uint8)[]", "bool"], data[4:]
        )
        assert (file_id, cid, registry, force) == (5, CIDV0, 0, True)
        assert [(a.lower(), r) for a, r in permissions] == [(a, 0) for a, _ in perms]


# ---------------------------------------------------------------------------
# CID
# ---------------------------------------------------------------------------

class TestCid:
    def test_compute_cid_is_cidv1_json(self):
        cid = compute_cid(b"{}")
        assert cid.startswith("bagaaiera")
        assert is_valid_cid(cid)

    def test_compute_cid_deterministic(self):
        assert compute_cid(b"a") == compute_cid(b"a")
        assert compute_cid(b"a") != compute_cid(b"b")

    def test_cidv0(self):
        assert is_valid_cid(CIDV0)
        raw = decode_cid(CIDV0)
        assert len(raw) == 34
        assert raw[:2] == b"\x12\x20"

    def test_cidv1_base58btc(self):
        raw = decode_cid(compute_cid(b"{}"))
        cid = "z" + base58.b58encode(raw).decode("ascii")
        assert is_valid_cid(cid)
        assert decode_cid(cid) == raw

    def test_cidv1_base36(self):
        raw = decode_cid(compute_cid(b"{}"))
        cid = "k" + _base36(int.from_bytes(raw, "big"))
        assert is_valid_cid(cid)
        assert decode_cid(cid) == raw

    def test_cidv1_truncated_digest(self):
        raw = decode_cid(compute_cid(b"{}"))
        assert not is_valid_cid("z" + base58.b58encode(raw[:-1]).decode("ascii"))

    def test_cidv1_wrong_version(self):
        raw = b"\x02" + decode_cid(compute_cid(b"{}"))[1:]
        assert not is_valid_cid("z" + base58.b58encode(raw).decode("ascii"))

    @pytest.mark.parametrize("value", [
        "", None, 42, "not-a-cid", "Qm123", "bafy", "B" + "A" * 58,
        "../../etc/passwd", "b" + "a" * 10, "z0OIl", "kABC", "k000",
    ])
    def test_invalid(self, value):
        assert not is_valid_cid(value)


# ---------------------------------------------------------------------------
# LocalContentStore
# ---------------------------------------------------------------------------

class TestLocalContentStore:
    def test_upload_fetch(self, tmp_store):
        payload = {"permissionTree": "abc", "encryptionKeyTree": {}}
        cid = tmp_store.upload(payload)
        assert is_valid_cid(cid)
        assert cid == compute_cid(canonical_json(payload))
        assert tmp_store.fetch(cid) == payload
        assert tmp_store.contains(cid)

    def test_idempotent(self, tmp_store):
        a = tmp_store.upload({"x": 1, "y": 2})
        b = tmp_store.upload({"y": 2, "x": 1})
        assert a == b
        assert len(tmp_store.list()) == 1

    def test_list(self, tmp_store):
        assert tmp_store.list() == []
        cid = tmp_store.upload({"x": 1})
        (entry,) = tmp_store.list()
        assert entry["cid"] == cid
        assert entry["size"] == len(canonical_json({"x": 1}))
        assert "stored_at" in entry

    def test_missing(self, tmp_store):
        with pytest.raises(StoreError, match="not found"):
            tmp_store.fetch(compute_cid(b"never stored"))

    def test_invalid_cid(self, tmp_store):
        with pytest.raises(StoreError):
            tmp_store.fetch("../../etc/passwd")

    def test_tampered_object(self, tmp_store):
        cid = tmp_store.upload({"x": 1})
        (tmp_store.objects_dir / f"{cid}.json").write_bytes(b'{"x":2}')
        with pytest.raises(StoreError, match="does not match"):
            tmp_store.fetch(cid)

    def test_corrupt_index(self, tmp_store):
        tmp_store.upload({"x": 1})
        tmp_store.index_path.write_text("not json")
        assert tmp_store.list() == []


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestConfig:
    def test_defaults(self, tmp_path, clean_env):
        config = load_config(tmp_path / "missing.toml")
        assert config == DEFAULT_CONFIG

    def test_toml_overrides(self, tmp_path, clean_env):
        path = tmp_path / "config.toml"
        path.write_text(
            'rpc_url = "http://chain:8545"\n'
            f'permission_contract = "{CONTRACT}"\n'
            "port = 9999\n"
        )
        config = load_config(path)
        assert config["rpc_url"] == "http://chain:8545"
        assert config["permission_contract"] == CONTRACT
        assert config["port"] == 9999
        assert config["host"] == DEFAULT_CONFIG["host"]

    def test_env_overrides_toml(self, tmp_path, clean_env, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text('rpc_url = "http://chain:8545"\n')
        monkeypatch.setenv("GPERM_RPC_URL", "http://env:8545")
        monkeypatch.setenv("GPERM_STORE_ROOT", str(tmp_path / "s"))
        config = load_config(path)
        assert config["rpc_url"] == "http://env:8545"
        assert config["store_root"] == str(tmp_path / "s")

    def test_malformed_toml_falls_back(self, tmp_path, clean_env):
        path = tmp_path / "config.toml"
        path.write_text("this is = = not toml")
        assert load_config(path) == DEFAULT_CONFIG

    def test_server_key_created_and_reused(self, tmp_path, clean_env):
        key_path = tmp_path / "oprf" / "server_key"
        first = load_or_create_server_key(key_path)
        assert key_path.is_file()
        second = load_or_create_server_key(key_path)
        assert first == second
        assert group.base_mul(first.private_key) == first.public_key

    def test_server_key_from_env(self, tmp_path, clean_env, monkeypatch):
        key_path = tmp_path / "server_key"
        pair = load_or_create_server_key(key_path)
        monkeypatch.setenv("GPERM_OPRF_KEY", pair.private_key.hex())
        assert load_or_create_server_key(tmp_path / "unused") == pair
        assert not (tmp_path / "unused").exists()

    @pytest.mark.parametrize("value", [
        "not hex",
        "00" * 32,
        "01" * 16,
        "ff" * 32,
    ])
    def test_server_key_env_rejected(self, tmp_path, clean_env, monkeypatch, value):
        monkeypatch.setenv("GPERM_OPRF_KEY", value)
        with pytest.raises(ConfigError, match="GPERM_OPRF_KEY"):
            load_or_create_server_key(tmp_path / "unused")

    def test_server_key_file_rejected(self, tmp_path, clean_env):
        key_path = tmp_path / "server_key"
        key_path.write_text("zz")
        with pytest.raises(ConfigError) as exc:
            load_or_create_server_key(key_path)
        assert exc.value.__cause__ is not None

    @pytest.mark.skipif(os.name != "posix", reason="POSIX file modes")
    def test_server_key_file_mode(self, tmp_path, clean_env):
        key_path = tmp_path / "oprf" / "server_key"
        load_or_create_server_key(key_path)
        assert stat.S_IMODE(key_path.stat().st_mode) == 0o600
