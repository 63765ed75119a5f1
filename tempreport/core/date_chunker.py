"""
Date range helpers: local-calendar query windows and chunking.

All instants handled here are aware datetimes. Local-day boundaries are
computed in the configured zone so DST transitions never shift a chunk off
local midnight.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from tempreport.core.slots import floor_to_slot
from tempreport.models.report import DateChunk

END_OF_DAY = time(23, 59, 59, 999000)


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def local_end_of_day(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, END_OF_DAY, tzinfo=tz).astimezone(timezone.utc)


def build_query_window(
    start_date: date,
    end_date: date,
    tz: ZoneInfo,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Translate a local calendar range into a UTC window.

    The window starts at local 00:00 of ``start_date`` and ends at local
    23:59:59.999 of ``end_date``. An end lying in the future is clipped to
    ``now`` floored to its 30-minute slot.
    """
    start = local_midnight(start_date, tz)
    end = local_end_of_day(end_date, tz)

    if now is not None and end > now:
        end = floor_to_slot(now)

    return start, end


def create_date_chunks(
    start: datetime,
    end: datetime,
    chunk_size_days: int = 30,
    tz: ZoneInfo = ZoneInfo("UTC"),
) -> list[DateChunk]:
    if chunk_size_days < 1:
        raise ValueError("chunk_size_days must be at least 1")
    if start > end:
        return []

    chunks = []
    chunk_start = start
    current_day = start.astimezone(tz).date()

    while chunk_start <= end:
        last_day = current_day + timedelta(days=chunk_size_days - 1)
        chunk_end = min(local_end_of_day(last_day, tz), end)
        chunks.append(DateChunk(start=chunk_start, end=chunk_end))

        current_day = last_day + timedelta(days=1)
        chunk_start = local_midnight(current_day, tz)

    return chunks

