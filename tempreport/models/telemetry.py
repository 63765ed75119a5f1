import math
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel

DEVICE_KEY_FIELDS = (
    "device_label",
    "deviceLabel",
    "label",
    "deviceName",
    "device",
    "name",
)
TIMESTAMP_FIELDS = ("time_interval", "timestamp")
UNKNOWN_DEVICE = "unknown"


def parse_instant(value: Any) -> Optional[datetime]:
    """Parse an ISO string, datetime or epoch-milliseconds number into an
    aware UTC datetime. Returns None for anything unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text.replace(" ", "T"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class RawReading(BaseModel):
    device_key: str
    timestamp: Optional[datetime] = None
    value: Optional[float] = None

    @classmethod
    def from_payload(cls, item: dict) -> "RawReading":
        device_key = UNKNOWN_DEVICE
        for field in DEVICE_KEY_FIELDS:
            if item.get(field):
                device_key = str(item[field])
                break

        raw_ts = None
        for field in TIMESTAMP_FIELDS:
            if field in item:
                raw_ts = item[field]
                break

        return cls(
            device_key=device_key,
            timestamp=parse_instant(raw_ts),
            value=_to_float(item.get("value")),
        )


class Gap(BaseModel):
    start_index: int
    end_index: int
    start_slot: datetime
    end_slot: datetime
    size: int


class SeriesPoint(BaseModel):
    slot: datetime
    value: Optional[float] = None
    interpolated: bool = False
    missing: bool = False
    gap_size: Optional[int] = None
    reason: Optional[str] = None
