"""
API key authentication for the evaluation API.

Key sources (priority order):
    1. GPERM_API_KEY environment variable
    2. ~/.gperm/api/api_key file

With no key configured /evaluate rejects every request; the server must
be started with require_auth=False (`gperm serve --no-auth`) to run open.
Comparison uses hmac.compare_digest().
"""

from __future__ import annotations

import hmac
import os
from pathlib import Path

from gperm import GPERM_HOME_DIR

_KEY_FILE = Path.home() / GPERM_HOME_DIR / "api" / "api_key"


def load_api_key(key_file: Path | None = None) -> str:
    """Load the API key from env var or file. Returns empty string if not set."""
    key = os.environ.get("GPERM_API_KEY", "").strip()
    if key:
        return key
    path = key_file or _KEY_FILE
    if path.is_file():
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError:
            return ""
    return ""


def check_auth(auth_header: str, api_key: str) -> bool:
    """Validate a Bearer token against the configured API key.

    Returns False if api_key is empty (auth not configured, deny all).
    """
    if not api_key:
        return False
    if not auth_header:
        return False
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0] != "Bearer":
        return False
    token = parts[1].strip()
    if not token:
        return False
    return hmac.compare_digest(token, api_key)
