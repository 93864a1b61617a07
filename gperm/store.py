"""
Content-addressed storage for permission payloads.

Storage layout:
    ~/.gperm/store/objects/<cid>.json   — canonical JSON payloads
    ~/.gperm/store/index.json           — metadata index (cid -> stored_at, size)

All writes are atomic (temp file + os.replace) for crash safety.
Content-addressed by CIDv1 — storing the same payload twice is a no-op.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from gperm import GPERM_HOME_DIR
from gperm.cid import compute_cid, is_valid_cid
from gperm.errors import StoreError

logger = logging.getLogger(__name__)

_DEFAULT_ROOT = Path.home() / GPERM_HOME_DIR / "store"


class ContentStore(Protocol):
    """Upload/fetch surface used by the permission packager."""

    def upload(self, payload: Any) -> str: ...

    def fetch(self, content_hash: str) -> Any: ...


def canonical_json(payload: Any) -> bytes:
    """Deterministic JSON bytes: sorted keys, no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _atomic_write(directory: Path, dest: Path, data: bytes, prefix: str) -> None:
    fd, tmp_path = tempfile.mkstemp(dir=str(directory), suffix=".tmp", prefix=prefix)
    try:
        os.write(fd, data)
        os.fsync(fd)
        os.close(fd)
        os.replace(tmp_path, str(dest))
    except Exception:
        try:
            os.close(fd)
        except OSError:
            pass
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class LocalContentStore:
    """File-based, content-addressed JSON store.

    Usage:
        store = LocalContentStore()
        cid = store.upload({"hello": "world"})
        payload = store.fetch(cid)
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root) if root else _DEFAULT_ROOT
        self.objects_dir = self.root / "objects"
        self.index_path = self.root / "index.json"

    def _ensure_dirs(self) -> None:
        self.objects_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _validate_cid(content_hash: str) -> None:
        """Validate CID format. Prevents path traversal via the hash."""
        if not is_valid_cid(content_hash):
            raise StoreError(f"Invalid content hash: {content_hash!r}")

    def _read_index(self) -> dict[str, dict[str, Any]]:
        """Read the JSON index. Returns empty dict if missing or corrupt."""
        if not self.index_path.is_file():
            return {}
        try:
            index = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return index if isinstance(index, dict) else {}

    def _write_index(self, index: dict[str, dict[str, Any]]) -> None:
        self._ensure_dirs()
        data = json.dumps(index, indent=2, sort_keys=True).encode("utf-8")
        _atomic_write(self.root, self.index_path, data, ".index_")

    def upload(self, payload: Any) -> str:
        """Store a JSON-serializable payload. Returns its CID."""
        data = canonical_json(payload)
        content_hash = compute_cid(data)
        self._ensure_dirs()

        dest = self.objects_dir / f"{content_hash}.json"
        if not dest.is_file():
            _atomic_write(self.objects_dir, dest, data, ".obj_")

        index = self._read_index()
        if content_hash not in index:
            index[content_hash] = {
                "stored_at": datetime.now(timezone.utc).isoformat(),
                "size": len(data),
            }
            self._write_index(index)

        logger.debug("Stored %d bytes as %s", len(data), content_hash)
        return content_hash

    def fetch(self, content_hash: str) -> Any:
        """Load a payload by CID.

        Raises StoreError if not found or if the stored bytes no longer
        match their address.
        """
        self._validate_cid(content_hash)
        path = self.objects_dir / f"{content_hash}.json"
        if not path.is_file():
            raise StoreError(f"Content not found: {content_hash}")

        data = path.read_bytes()
        if compute_cid(data) != content_hash:
            raise StoreError(f"Content does not match its hash: {content_hash}")
        return json.loads(data.decode("utf-8"))

    def contains(self, content_hash: str) -> bool:
        self._validate_cid(content_hash)
        return (self.objects_dir / f"{content_hash}.json").is_file()

    def list(self) -> list[dict[str, Any]]:
        """List stored payloads with their index metadata."""
        result = []
        for content_hash, meta in sorted(self._read_index().items()):
            entry: dict[str, Any] = {"cid": content_hash}
            entry.update(meta)
            result.append(entry)
        return result
