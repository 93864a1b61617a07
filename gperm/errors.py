"""
Error taxonomy for gperm.

Every error raised by the library derives from GranularPermissionError.
Errors that replace a builtin the caller may already catch (ValueError,
LookupError) subclass it too.
"""

from __future__ import annotations


class GranularPermissionError(Exception):
    """Base class for all gperm errors."""


class EmptySetError(GranularPermissionError, ValueError):
    """No identities to build a membership tree from."""


class IdentifierNotFoundError(GranularPermissionError, LookupError):
    """Identifier is not a member of the tree (or has no key entry)."""


class InvalidTreeError(GranularPermissionError, ValueError):
    """A membership tree dump failed validation."""


class MissingIdentifierError(GranularPermissionError, ValueError):
    """A grant-set entry lacks its canonical identifier field."""


class OprfProcessingError(GranularPermissionError):
    """The oblivious evaluation exchange failed and must restart from blind."""


class OprfFinalizeError(OprfProcessingError):
    """The service evaluation was malformed, empty, or failed verification."""


class DecryptionError(GranularPermissionError, ValueError):
    """Ciphertext failed authentication (wrong key or tampered data)."""


class InvalidContentHashError(GranularPermissionError, ValueError):
    """Storage returned a handle that is not a well-formed content identifier."""


class LedgerRPCError(GranularPermissionError):
    """Error communicating with or returned by the ledger JSON-RPC endpoint."""


class StoreError(GranularPermissionError):
    """Error in content store operations."""


class DuplicateIdentifierError(GranularPermissionError, ValueError):
    """Two grant-set entries resolve to the same canonical identifier."""


class MissingKeyError(GranularPermissionError, ValueError):
    """A key the permission type requires (the comment key) was not given."""


class ConfigError(GranularPermissionError):
    """A configured value (such as the OPRF server key) is malformed."""
