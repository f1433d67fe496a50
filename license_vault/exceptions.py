"""
License Vault errors.

Every error raised by the vault core derives from ``VaultError``. Where a
builtin exception fits, the error also derives from it so callers that only
know about ``ValueError`` / ``LookupError`` / ``OSError`` keep working.

Security Note:
    Error messages never include secret values, passwords or key material.
"""
from typing import Optional


class VaultError(Exception):
    """Base class for all License Vault errors."""


class ValidationError(VaultError, ValueError):
    """A record field is missing or invalid, or the password is empty."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFound(VaultError, LookupError):
    """Operation on a record id that is not in the store."""

    def __init__(self, record_id: str):
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class NotInitialized(VaultError, RuntimeError):
    """Store used before ``initialize()`` or after ``close()``."""


class AuthenticationFailure(VaultError):
    """Authentication tag did not verify.

    Raised for a wrong password and for corrupted or tampered ciphertext
    alike; the two cases are deliberately not told apart.
    """


class MalformedEnvelope(VaultError, ValueError):
    """On-disk bytes cannot be parsed as an envelope."""


class PersistenceFailure(VaultError, OSError):
    """The encrypted snapshot could not be written."""


class CipherUnavailable(VaultError, RuntimeError):
    """The cipher backend an envelope needs is not available."""


class InitializationFailure(VaultError):
    """An existing store file could not be decoded, decrypted or parsed.

    The underlying error is chained as ``__cause__`` and kept in ``reason``.
    """

    def __init__(self, message: str, reason: Optional[BaseException] = None):
        super().__init__(message)
        self.reason = reason
