from datetime import date, datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from tempreport.models.telemetry import RawReading


class DateChunk(BaseModel):
    start: datetime
    end: datetime


class CentralRequest(BaseModel):
    devices: list[str] = Field(default_factory=list)
    date_start: datetime
    date_end: datetime

    def to_body(self) -> dict:
        return {
            "devices": self.devices,
            "dateStart": iso_instant(self.date_start),
            "dateEnd": iso_instant(self.date_end),
        }


class CentralFailure(BaseModel):
    central_id: str
    status: Union[int, str]
    status_text: str
    url: str


class ChunkResult(BaseModel):
    readings: dict[str, list[RawReading]] = Field(default_factory=dict)
    failures: list[CentralFailure] = Field(default_factory=list)


class ProcessedRow(BaseModel):
    central_id: str
    device_label: str
    localized_timestamp: str
    sort_key: int
    temperature: str
    interpolated: bool = False
    value_was_clamped: bool = False
    missing: bool = False
    missing_reason: Optional[str] = None
    gap_size: Optional[int] = None


class ReportRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    devices: Optional[list[str]] = None
    central_ids: Optional[list[str]] = None


class ReportResult(BaseModel):
    query_key: str
    rows: list[ProcessedRow] = Field(default_factory=list)
    failures: list[CentralFailure] = Field(default_factory=list)
    missing_slots: dict[str, list[str]] = Field(default_factory=dict)
    from_cache: bool = False


def iso_instant(value: datetime) -> str:
    """Millisecond ISO-8601 in UTC with a trailing Z."""
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")
