"""
gperm — granular, per-identity file permissions with oblivious key derivation.

Architecture:
    Ledger:   permission contract stores (content hash, registry type, extender)
    Storage:  content-addressed JSON payload (encrypted tree + owner set + key tree)
    VOPRF:    evaluation service turns Merkle proof bytes into per-identity keys
"""

__version__ = "0.1.0"

# Key derivation constants
KEY_SIZE = 32  # AES-256
SALT_SIZE = 12  # HKDF salt, stored beside each key entry
NONCE_SIZE = 12  # AES-GCM standard nonce
HKDF_INFO = b"VOPRF_ENCRYPTION_KEY"
SECRETBOX_KEY_SIZE = 32

# Membership tree
TREE_FORMAT = "simple-v1"

# OPRF evaluation API constants
API_DEFAULT_PORT = 8787
API_DEFAULT_HOST = "127.0.0.1"
API_MAX_REQUEST_BYTES = 64 * 1024
API_MAX_BATCH = 64  # blinded elements per evaluation request

# Local state
GPERM_HOME_DIR = ".gperm"
