"""License Vault.

Keeps credential records (API keys, license keys, tokens, certificates)
in a single file sealed with a password-derived AEAD envelope.
"""
from .version import __version__
from .exceptions import (
    VaultError,
    ValidationError,
    NotFound,
    NotInitialized,
    AuthenticationFailure,
    MalformedEnvelope,
    PersistenceFailure,
    CipherUnavailable,
    InitializationFailure,
)
from .records import Record
from .query import QueryEngine, RecordStats
from .vault import (
    KdfParams,
    StoreConfig,
    CipherProvider,
    RecordStore,
    backend_info,
    is_degraded,
)

__all__ = [
    "__version__",
    "VaultError",
    "ValidationError",
    "NotFound",
    "NotInitialized",
    "AuthenticationFailure",
    "MalformedEnvelope",
    "PersistenceFailure",
    "CipherUnavailable",
    "InitializationFailure",
    "Record",
    "QueryEngine",
    "RecordStats",
    "KdfParams",
    "StoreConfig",
    "CipherProvider",
    "RecordStore",
    "backend_info",
    "is_degraded",
]
