"""Vault — Encrypted persistence for credential records.

Security Note (Threat Model):
    The store password and decrypted records live in process memory while
    the store is open. A memory dump of the process could expose them.
    ``close()`` drops both and zeroes the password buffer, but Python gives
    no guarantee that no other copy survives.
"""

from .config import KdfParams, StoreConfig
from .crypto import (
    CipherProvider,
    Envelope,
    backend_info,
    get_backend,
    is_degraded,
)
from .record_store import RecordStore

__all__ = [
    "KdfParams",
    "StoreConfig",
    "CipherProvider",
    "Envelope",
    "backend_info",
    "get_backend",
    "is_degraded",
    "RecordStore",
]
