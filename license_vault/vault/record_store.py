"""
RecordStore — Encrypted credential records persisted to a single file.

Provides the public CRUD API over the store snapshot:
- ``initialize(password, path)`` — load and decrypt an existing file, or start empty
- ``add(fields)`` / ``update(id, fields)`` / ``delete(id)`` — mutate and persist
- ``get(id)`` / ``get_all()`` — read the in-memory snapshot, never the disk
- ``close()`` — persist pending state, forget records and password

Every mutation re-encrypts and rewrites the *whole* snapshot. If the write
fails, the in-memory change is rolled back before the error propagates, so
memory never holds a record the file does not.

The file is overwritten in place: a crash between truncation and write can
lose the previous snapshot. Access is single-process, single-writer; the
store takes no locks.

Security Note:
    Never log secret values, passwords or ciphertext. Only log record ids,
    kinds, counts and paths.
"""
import logging
import functools
from pathlib import Path
from typing import Any, Callable, Optional, Union
from collections.abc import Mapping

from ..exceptions import (
    CipherUnavailable,
    InitializationFailure,
    NotFound,
    NotInitialized,
    PersistenceFailure,
    VaultError,
)
from ..query import QueryEngine
from ..records import (
    Record,
    create_record,
    dump_snapshot,
    load_snapshot,
    new_record_id,
    overlay_record,
)
from .config import StoreConfig
from .crypto import CipherProvider, Password, password_bytes
from .envelope import decode, encode

logger = logging.getLogger("license_vault.store")


def _requires_initialized(method: Callable) -> Callable:
    """Reject calls on a store that is not initialized (or already closed)."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if not self._initialized:
            raise NotInitialized(
                f"Record store is not initialized: call initialize() before {method.__name__}()"
            )
        return method(self, *args, **kwargs)
    return wrapper


class RecordStore:
    """Password-protected store of credential records.

    Args:
        config: Store settings (default path, KDF costs, known kinds).
        provider: Cipher provider; built from ``config.kdf`` when omitted.
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        provider: Optional[CipherProvider] = None,
    ):
        self.config = config or StoreConfig()
        self._provider = provider or CipherProvider(kdf=self.config.kdf)
        self._records: dict[str, Record] = {}
        self._password: Optional[bytearray] = None
        self._path: Optional[Path] = None
        self._initialized = False
        self._dirty = False

    def __repr__(self) -> str:
        return (
            f'<RecordStore [initialized:{self._initialized}, path:{self._path}] '
            f'records={len(self._records)}, degraded={self.degraded}>'
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def degraded(self) -> bool:
        """True when snapshots are sealed with the weak fallback backend."""
        return self._provider.degraded

    @property
    def query(self) -> QueryEngine:
        """Read-only search/filter/aggregate view over this store."""
        return QueryEngine(self, expiry_horizon_days=self.config.expiry_horizon_days)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, password: Password, path: Union[str, Path, None] = None) -> None:
        """Open the store file, or start empty when it does not exist.

        Calling it on an already initialized store is a no-op.

        Args:
            password: Store password (non-empty).
            path: Store file; defaults to ``config.path``.

        Raises:
            ValidationError: If password is empty.
            CipherUnavailable: If only the fallback backend is available and
                ``config.allow_fallback`` is False.
            InitializationFailure: If the file exists but cannot be read,
                decoded, decrypted or parsed. The cause is chained.
        """
        if self._initialized:
            logger.debug("Record store already initialized: %s", self._path)
            return
        secret = password_bytes(password)
        path = Path(path) if path is not None else self.config.path
        if self._provider.degraded:
            if not self.config.allow_fallback:
                raise CipherUnavailable(
                    "Only the degraded fallback cipher backend is available "
                    "and allow_fallback is disabled"
                )
            logger.warning(
                "Record store %s uses the DEGRADED %s backend; "
                "the file is weakly protected against brute force",
                path, self._provider.backend.name,
            )

        records: dict[str, Record] = {}
        dirty = True
        data = b""
        if path.exists():
            try:
                data = path.read_bytes()
            except OSError as err:
                raise InitializationFailure(
                    f"Cannot read record store {path}: {err}", reason=err,
                ) from err
        if data:
            try:
                envelope = decode(data)
                plaintext = self._provider.decrypt(envelope, secret)
                records = load_snapshot(plaintext)
            except VaultError as err:
                logger.error("Failed to open record store %s: %s", path, err)
                raise InitializationFailure(
                    f"Failed to open record store {path}: {err}", reason=err,
                ) from err
            # legacy files are rewritten in the versioned layout on close
            dirty = envelope.legacy
            if envelope.legacy:
                logger.info("Record store %s uses the legacy layout", path)

        self._records = records
        self._path = path
        self._password = bytearray(secret)
        self._dirty = dirty
        self._initialized = True
        logger.info(
            "Record store opened: %s (%d record(s))", path, len(records),
        )

    @classmethod
    def open(
        cls,
        password: Password,
        path: Union[str, Path, None] = None,
        config: Optional[StoreConfig] = None,
        provider: Optional[CipherProvider] = None,
    ) -> "RecordStore":
        """Build a store and initialize it in one step."""
        store = cls(config=config, provider=provider)
        store.initialize(password, path)
        return store

    def close(self) -> None:
        """Persist pending state, then discard records and password.

        The store is torn down even when the final save fails; the save
        error is re-raised afterwards. Closing a closed store is a no-op.
        """
        if not self._initialized:
            return
        try:
            if self._dirty:
                self.save()
        finally:
            self._teardown()

    def _teardown(self) -> None:
        self._records = {}
        if self._password is not None:
            # overwrite the buffer before releasing it
            for i in range(len(self._password)):
                self._password[i] = 0
        self._password = None
        self._initialized = False
        self._dirty = False
        logger.info("Record store closed: %s", self._path)

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @_requires_initialized
    def save(self) -> None:
        """Encrypt the whole snapshot and overwrite the store file.

        Raises:
            PersistenceFailure: If the file cannot be written.
        """
        plaintext = dump_snapshot(self._records)
        envelope = self._provider.encrypt(plaintext, bytes(self._password))
        data = encode(envelope)
        try:
            self._write(data)
        except OSError as err:
            raise PersistenceFailure(
                f"Failed to write record store {self._path}: {err}"
            ) from err
        self._dirty = False
        logger.debug(
            "Saved %d record(s) to %s (%d bytes)",
            len(self._records), self._path, len(data),
        )

    def _write(self, data: bytes) -> None:
        with open(self._path, "wb") as fp:
            fp.write(data)

    def _persist(self, operation: str, record_id: str, undo: Callable[[], None]) -> None:
        """Save, or undo the in-memory change and re-raise."""
        try:
            self.save()
        except Exception as err:
            undo()
            logger.error(
                "Vault %s rolled back for id=%s: %s", operation, record_id, err,
            )
            raise

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @_requires_initialized
    def add(self, fields: Mapping[str, Any]) -> str:
        """Validate, insert and persist a new record.

        ``id`` and ``created_at`` are assigned here; values passed for
        them are ignored.

        Returns:
            The new record id.

        Raises:
            ValidationError: On missing/invalid fields or unknown kind.
            PersistenceFailure: If the write fails (insertion rolled back).
        """
        record = create_record(fields, self.config.kinds)
        while record.id in self._records:
            record = record.model_copy(update={"id": new_record_id()})
        self._records[record.id] = record
        self._persist(
            "add", record.id, lambda: self._records.pop(record.id, None),
        )
        logger.debug("Vault add: id=%s kind=%s", record.id, record.kind)
        return record.id

    @_requires_initialized
    def update(self, record_id: str, fields: Mapping[str, Any]) -> bool:
        """Overlay fields onto an existing record and persist.

        Changes to ``id`` and ``created_at`` are silently skipped.

        Raises:
            NotFound: If record_id is absent.
            ValidationError: If the updated record is invalid (nothing changes).
            PersistenceFailure: If the write fails (prior record restored).
        """
        current = self._records.get(record_id)
        if current is None:
            raise NotFound(record_id)
        candidate = overlay_record(current, fields, self.config.kinds)

        def undo() -> None:
            self._records[record_id] = current

        self._records[record_id] = candidate
        self._persist("update", record_id, undo)
        logger.debug("Vault update: id=%s", record_id)
        return True

    @_requires_initialized
    def delete(self, record_id: str) -> bool:
        """Remove a record and persist.

        Raises:
            NotFound: If record_id is absent.
            PersistenceFailure: If the write fails (record restored).
        """
        removed = self._records.pop(record_id, None)
        if removed is None:
            raise NotFound(record_id)

        def undo() -> None:
            self._records[record_id] = removed

        self._persist("delete", record_id, undo)
        logger.debug("Vault delete: id=%s", record_id)
        return True

    @_requires_initialized
    def get(self, record_id: str) -> Optional[Record]:
        """Return a copy of the record, or None if absent."""
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    @_requires_initialized
    def get_all(self) -> dict[str, Record]:
        """Return a copy of the whole ``id -> Record`` snapshot."""
        return {
            record_id: record.model_copy(deep=True)
            for record_id, record in self._records.items()
        }

    @_requires_initialized
    def __len__(self) -> int:
        return len(self._records)

    @_requires_initialized
    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records
