"""
Query Engine — read-only search, filter and aggregate over a store snapshot.

Every operation reads ``source.get_all()`` once and never mutates it or
triggers persistence. Text matching is case-insensitive throughout.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol
from collections import Counter

from pydantic import BaseModel, Field

from .records import Record, as_utc, utcnow

logger = logging.getLogger("license_vault.query")


class RecordSource(Protocol):
    def get_all(self) -> dict[str, Record]:
        ...


class RecordStats(BaseModel):
    """Aggregate counts over a snapshot."""

    total: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
    by_tag: dict[str, int] = Field(default_factory=dict)
    expired: int = 0
    expiring_soon: int = 0


def _newest_first(records) -> list[Record]:
    # id breaks ties between records created in the same instant
    return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)


def matches(record: Record, query: str) -> bool:
    """True when query (lower-cased) appears anywhere searchable in record."""
    if (
        query in record.name.lower()
        or query in record.description.lower()
        or query in record.kind.lower()
    ):
        return True
    if any(query in tag.lower() for tag in record.tags):
        return True
    return any(
        query in key.lower() or query in value.lower()
        for key, value in record.metadata.items()
    )


class QueryEngine:
    """Read-only view over a record source (usually a ``RecordStore``).

    Args:
        source: Anything exposing ``get_all() -> dict[str, Record]``.
        expiry_horizon_days: Window counted as "expiring soon" by ``stats()``.
    """

    def __init__(self, source: RecordSource, expiry_horizon_days: int = 30):
        self._source = source
        self.expiry_horizon = timedelta(days=expiry_horizon_days)

    def _records(self) -> list[Record]:
        return _newest_first(self._source.get_all().values())

    def search(self, query: str) -> list[Record]:
        """Records whose name, description, kind, tags or metadata contain query."""
        needle = query.lower()
        results = [r for r in self._records() if matches(r, needle)]
        logger.debug("Search matched %d record(s)", len(results))
        return results

    def filter_by_kind(self, kind: str) -> list[Record]:
        kind = kind.lower()
        return [r for r in self._records() if r.kind.lower() == kind]

    def filter_by_tag(self, tag: str) -> list[Record]:
        tag = tag.lower()
        return [r for r in self._records() if tag in r.tag_set]

    def get_by_name(self, name: str) -> Optional[Record]:
        """Newest record whose name is exactly ``name``, or None."""
        for record in self._records():
            if record.name == name:
                return record
        return None

    def list(
        self,
        kind: Optional[str] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Record]:
        """All records, newest first, optionally filtered and truncated.

        Args:
            kind: Keep only records of this kind.
            tag: Keep only records carrying this tag.
            limit: Keep at most this many (ignored unless positive).
        """
        records = self._records()
        if kind:
            kind = kind.lower()
            records = [r for r in records if r.kind.lower() == kind]
        if tag:
            tag = tag.lower()
            records = [r for r in records if tag in r.tag_set]
        if limit is not None and limit > 0:
            records = records[:limit]
        return records

    def stats(self, now: Optional[datetime] = None) -> RecordStats:
        """Counts by kind and tag, plus expired / expiring-soon totals."""
        now = as_utc(now) or utcnow()
        horizon = now + self.expiry_horizon
        records = self._source.get_all().values()
        by_kind: Counter = Counter()
        by_tag: Counter = Counter()
        expired = expiring = 0
        for record in records:
            by_kind[record.kind] += 1
            by_tag.update(record.tags)
            if record.expires_at is None:
                continue
            if record.expires_at <= now:
                expired += 1
            elif record.expires_at <= horizon:
                expiring += 1
        return RecordStats(
            total=len(records),
            by_kind=dict(by_kind),
            by_tag=dict(by_tag),
            expired=expired,
            expiring_soon=expiring,
        )
