"""
Configuration for the gperm CLI and evaluation server.

Sources (later wins):
    1. DEFAULT_CONFIG
    2. ~/.gperm/config.toml
    3. GPERM_* environment variables

The OPRF server key lives at ~/.gperm/oprf/server_key (hex, mode 600)
unless GPERM_OPRF_KEY is set.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from gperm import API_DEFAULT_HOST, API_DEFAULT_PORT, GPERM_HOME_DIR
from gperm.errors import ConfigError
from gperm.voprf.protocol import KeyPair, VOPRFServer, generate_key_pair

logger = logging.getLogger(__name__)

_HOME = Path.home() / GPERM_HOME_DIR
_DEFAULT_CONFIG_PATH = _HOME / "config.toml"
_DEFAULT_SERVER_KEY_PATH = _HOME / "oprf" / "server_key"

DEFAULT_CONFIG: dict[str, Any] = {
    "rpc_url": "",
    "permission_contract": "",
    "evaluation_url": f"http://{API_DEFAULT_HOST}:{API_DEFAULT_PORT}/evaluate",
    "oprf_public_key": "",
    "store_root": "",
    "api_key": "",
    "host": API_DEFAULT_HOST,
    "port": API_DEFAULT_PORT,
}

_ENV_OVERRIDES = {
    "GPERM_RPC_URL": "rpc_url",
    "GPERM_PERMISSION_CONTRACT": "permission_contract",
    "GPERM_EVALUATION_URL": "evaluation_url",
    "GPERM_OPRF_PUBLIC_KEY": "oprf_public_key",
    "GPERM_STORE_ROOT": "store_root",
    "GPERM_API_KEY": "api_key",
}


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """Load config from TOML file and environment, falling back to defaults."""
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
    if path.is_file():
        try:
            import tomllib
        except ImportError:
            import tomli as tomllib

        try:
            with open(path, "rb") as f:
                file_config = tomllib.load(f)
            config.update(file_config)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Failed to load config from %s: %s", path, e)

    for env_name, key in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name, "").strip()
        if value:
            config[key] = value

    config["port"] = int(config["port"])
    return config


def _server_key_pair(hex_key: str, source: str) -> KeyPair:
    try:
        sk = bytes.fromhex(hex_key)
        server = VOPRFServer(sk)
    except ValueError as e:
        raise ConfigError(f"Invalid OPRF server key in {source}: {e}") from e
    return KeyPair(private_key=sk, public_key=server.public_key)


def load_or_create_server_key(key_path: Path | None = None) -> KeyPair:
    """Load or generate the OPRF server's evaluation key.

    GPERM_OPRF_KEY (hex) takes precedence over the key file. A new key
    file is created with mode 600.

    Raises:
        ConfigError: If the configured key is not a valid non-zero scalar.
    """
    env_key = os.environ.get("GPERM_OPRF_KEY", "").strip()
    if env_key:
        return _server_key_pair(env_key, "GPERM_OPRF_KEY")

    path = Path(key_path) if key_path else _DEFAULT_SERVER_KEY_PATH
    if path.is_file():
        return _server_key_pair(path.read_text().strip(), str(path))

    pair = generate_key_pair()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(pair.private_key.hex())
    logger.info("Generated OPRF server key at %s", path)
    return pair
