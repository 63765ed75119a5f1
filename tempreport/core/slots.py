from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

SLOT = timedelta(minutes=30)
SLOT_MS = 30 * 60 * 1000

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def epoch_ms(instant: datetime) -> int:
    return (instant - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=ms)


def snap_to_slot(instant: datetime) -> datetime:
    """Round to the nearest 30-minute boundary; exact halves round up."""
    ms = epoch_ms(instant)
    return from_epoch_ms((ms + SLOT_MS // 2) // SLOT_MS * SLOT_MS)


def floor_to_slot(instant: datetime) -> datetime:
    ms = epoch_ms(instant)
    return from_epoch_ms(ms // SLOT_MS * SLOT_MS)


def local_day(instant: datetime, tz: ZoneInfo) -> date:
    return instant.astimezone(tz).date()


def day_slots(day: date, tz: ZoneInfo) -> list[datetime]:
    """Every 30-minute slot of a local day, 00:00 through 23:30 local.

    Steps are taken in UTC so days with a DST transition get the real
    number of slots.
    """
    start = datetime(day.year, day.month, day.day, tzinfo=tz).astimezone(
        timezone.utc
    )
    slots = []
    current = start
    while local_day(current, tz) == day:
        slots.append(current)
        current += SLOT
    return slots
