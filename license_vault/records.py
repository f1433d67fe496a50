"""
Credential records and snapshot serialization.

A ``Record`` is one credential entry (API key, license key, token,
certificate). A snapshot is the complete ``id -> Record`` mapping, serialized
with orjson as the plaintext that gets encrypted to disk.
"""
import time
import secrets
from datetime import datetime, timezone
from typing import Any, Optional
from collections.abc import Iterable, Mapping

import orjson
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError

SNAPSHOT_VERSION = "1.0"

DEFAULT_KINDS = frozenset({"api_key", "license_key", "token", "certificate"})

# Never changed by update(); silently skipped when present in the overlay.
PROTECTED_FIELDS = frozenset({"id", "created_at"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_record_id() -> str:
    """Unique record id: creation second plus 64 random bits."""
    return f"{int(time.time())}_{secrets.token_hex(8)}"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Record(BaseModel):
    """A credential entry.

    ``secret_value`` is excluded from ``repr`` so it never ends up in logs
    or tracebacks by accident.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    name: str
    kind: str
    secret_value: str = Field(repr=False)
    description: str = ""
    created_at: datetime
    expires_at: Optional[datetime] = None
    tags: tuple[str, ...] = ()
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("name", "secret_value")
    @classmethod
    def required_text(cls, v: str, info: ValidationInfo) -> str:
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} is required")
        return v

    @field_validator("kind", mode="before")
    @classmethod
    def normalize_kind(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("kind")
    @classmethod
    def known_kind(cls, v: str, info: ValidationInfo) -> str:
        if not v:
            raise ValueError("kind is required")
        context = info.context or {}
        kinds = context.get("kinds", DEFAULT_KINDS)
        # kinds=None skips the membership check (records loaded from disk)
        if kinds is not None and v not in kinds:
            raise ValueError(
                f"Invalid kind '{v}'. Must be one of: {', '.join(sorted(kinds))}"
            )
        return v

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("created_at", "expires_at")
    @classmethod
    def timezone_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> Any:
        """Accept a comma separated string or any iterable of tags.

        Blank tags are dropped, duplicates removed keeping first-seen order.
        """
        if v is None:
            return ()
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, Iterable):
            return v
        seen: dict[str, None] = {}
        for tag in v:
            if not isinstance(tag, str):
                raise ValueError("tags must be strings")
            tag = tag.strip()
            if tag:
                seen.setdefault(tag, None)
        return tuple(seen)

    @field_validator("metadata", mode="before")
    @classmethod
    def stringify_metadata(cls, v: Any) -> Any:
        """Metadata is a flat string mapping; scalar values are stringified."""
        if v is None:
            return {}
        if not isinstance(v, Mapping):
            return v
        result = {}
        for key, value in v.items():
            if isinstance(value, (dict, list, tuple, set)):
                raise ValueError(f"metadata value for '{key}' must be a scalar")
            result[str(key)] = "" if value is None else str(value)
        return result

    @property
    def tag_set(self) -> frozenset[str]:
        """Tags lower-cased, for order- and case-insensitive matching."""
        return frozenset(tag.lower() for tag in self.tags)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (as_utc(now) or utcnow())


def validate_record(data: Mapping[str, Any], kinds=DEFAULT_KINDS) -> Record:
    """Build a Record from plain data.

    Args:
        data: Record fields.
        kinds: Accepted kinds; ``None`` accepts any non-empty kind.

    Raises:
        ValidationError: On a missing or invalid field.
    """
    if not isinstance(data, Mapping):
        raise ValidationError("Record data is required")
    try:
        return Record.model_validate(dict(data), context={"kinds": kinds})
    except PydanticValidationError as err:
        error = err.errors()[0]
        field = ".".join(str(loc) for loc in error["loc"]) or None
        raise ValidationError(
            f"Invalid record field '{field}': {error['msg']}", field=field,
        ) from err


def create_record(fields: Mapping[str, Any], kinds=DEFAULT_KINDS) -> Record:
    """Validate new record fields, assigning a fresh id and creation time."""
    if not isinstance(fields, Mapping):
        raise ValidationError("Record data is required")
    data = {k: v for k, v in fields.items() if k not in PROTECTED_FIELDS}
    data["id"] = new_record_id()
    data["created_at"] = utcnow()
    return validate_record(data, kinds)


def overlay_record(
    record: Record, updates: Mapping[str, Any], kinds=DEFAULT_KINDS,
) -> Record:
    """Return a candidate record with ``updates`` applied on top of ``record``.

    ``id`` and ``created_at`` are never overwritten.
    """
    if not isinstance(updates, Mapping):
        raise ValidationError("Update data is required")
    data = record.model_dump()
    for key, value in updates.items():
        if key in PROTECTED_FIELDS:
            continue
        data[key] = value
    return validate_record(data, kinds)


# ---------------------------------------------------------------------------
# Snapshot serialization
# ---------------------------------------------------------------------------

def dump_snapshot(
    records: Mapping[str, Record], timestamp: Optional[datetime] = None,
) -> bytes:
    """Serialize the full record set with format version and save time."""
    payload = {
        "version": SNAPSHOT_VERSION,
        "timestamp": (timestamp or utcnow()).isoformat(),
        "records": {
            record_id: record.model_dump(mode="json")
            for record_id, record in records.items()
        },
    }
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)


def load_snapshot(data: bytes) -> dict[str, Record]:
    """Parse a serialized snapshot back into ``id -> Record``.

    Stored kinds are not checked against the configured set: the snapshot
    is authenticated, and narrowing the configuration must not lock a
    store.

    Raises:
        ValidationError: If the snapshot or one of its records is invalid.
    """
    try:
        payload = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise ValidationError("Snapshot is not valid JSON", field="snapshot") from err
    if not isinstance(payload, dict) or not isinstance(payload.get("records"), dict):
        raise ValidationError("Snapshot has no record mapping", field="snapshot")
    records = {}
    for record_id, fields in payload["records"].items():
        record = validate_record(fields, kinds=None)
        if record.id != record_id:
            raise ValidationError(
                f"Snapshot key {record_id} does not match record id {record.id}",
                field="snapshot",
            )
        records[record_id] = record
    return records
