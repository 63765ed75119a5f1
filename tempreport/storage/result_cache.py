from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from tempreport.models.report import ProcessedRow, iso_instant

DEFAULT_TTL = timedelta(minutes=30)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(central_ids: Iterable[str], start: datetime, end: datetime) -> str:
    return f"{','.join(sorted(central_ids))}|{iso_instant(start)}|{iso_instant(end)}"


@dataclass
class CacheEntry:
    written_at: datetime
    rows: list[ProcessedRow]
    missing_slots: dict[str, list[str]] = field(default_factory=dict)


class ResultCache:
    """In-memory TTL cache of processed report rows.

    Stale entries are never evicted; they are simply ignored on lookup and
    overwritten by the next ``put`` for the same key.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() - entry.written_at >= self.ttl:
            return None
        return entry

    def put(
        self,
        key: str,
        rows: list[ProcessedRow],
        missing_slots: Optional[dict[str, list[str]]] = None,
    ) -> CacheEntry:
        entry = CacheEntry(
            written_at=self.clock(),
            rows=list(rows),
            missing_slots=dict(missing_slots or {}),
        )
        self._entries[key] = entry
        return entry

    def __len__(self) -> int:
        return len(self._entries)
