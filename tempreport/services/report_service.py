import logging
import random
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from tempreport.config.settings import Settings, get_settings
from tempreport.core.backend_normalizer import normalize_readings
from tempreport.core.clamp import clamp_temperature, format_temperature
from tempreport.core.date_chunker import build_query_window, create_date_chunks
from tempreport.core.query_guard import QueryGuard, guarded_query
from tempreport.core.regularizer import SeriesRegularizer
from tempreport.core.rpc_client import RpcClient, get_http_client
from tempreport.core.slots import epoch_ms
from tempreport.models.report import (
    CentralFailure,
    CentralRequest,
    ProcessedRow,
    ReportRequest,
    ReportResult,
    iso_instant,
)
from tempreport.models.telemetry import RawReading, SeriesPoint
from tempreport.storage.device_directory import DeviceDirectory
from tempreport.storage.result_cache import ResultCache, cache_key, utcnow

logger = logging.getLogger(__name__)

LOCAL_TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M"


class QueryValidationError(ValueError):
    pass


class ReportPipelineError(Exception):
    pass


@dataclass
class ReportContext:
    """Mutable state shared by the runs of one report pipeline."""

    cache: ResultCache
    guard: QueryGuard = field(default_factory=QueryGuard)

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: Callable[[], datetime] = utcnow
    ) -> "ReportContext":
        ttl = timedelta(seconds=settings.cache_ttl_seconds)
        return cls(cache=ResultCache(ttl=ttl, clock=clock))


@dataclass
class _Accumulator:
    rows: list[ProcessedRow] = field(default_factory=list)
    failures: list[CentralFailure] = field(default_factory=list)
    missing: dict[str, set[str]] = field(default_factory=lambda: defaultdict(set))


class TemperatureReportService:
    def __init__(
        self,
        rpc_client: RpcClient,
        directory: DeviceDirectory,
        context: ReportContext,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.rpc = rpc_client
        self.directory = directory
        self.context = context
        self.settings = settings or get_settings()
        self.clock = clock
        self.tz = ZoneInfo(self.settings.local_timezone)
        self.legacy_offset = timedelta(hours=self.settings.legacy_offset_hours)
        self.regularizer = SeriesRegularizer(
            tz=self.tz,
            max_gap_slots=self.settings.max_gap_slots,
            allow_cross_midnight=self.settings.allow_cross_midnight,
            include_missing=self.settings.include_missing_in_output,
            neighbor_weight=self.settings.interpolation_neighbor_weight,
            rng=rng,
        )

    async def generate_report(self, request: ReportRequest) -> ReportResult:
        start_date, end_date, devices, centrals = self._validate(request)

        start, end = build_query_window(start_date, end_date, self.tz, now=self.clock())
        if start > end:
            raise QueryValidationError("Start date lies in the future")

        key = cache_key(centrals, start, end)

        async with guarded_query(self.context.guard, key):
            cached = self.context.cache.get(key)
            if cached:
                logger.info(f"[CACHE HIT] {key}: {len(cached.rows)} rows")
                return ReportResult(
                    query_key=key,
                    rows=cached.rows,
                    missing_slots=cached.missing_slots,
                    from_cache=True,
                )

            try:
                return await self._run(key, start, end, devices, centrals)
            except Exception as e:
                logger.error(f"Report {key} failed: {e}", exc_info=True)
                raise ReportPipelineError("Failed to load report data") from e

    def _validate(
        self, request: ReportRequest
    ) -> tuple[date, date, list[str], list[str]]:
        if request.start_date is None or request.end_date is None:
            raise QueryValidationError("Both start_date and end_date are required")
        if request.start_date > request.end_date:
            raise QueryValidationError("start_date must not be after end_date")

        selected = (
            request.devices if request.devices is not None else self.directory.devices
        )
        devices = list(dict.fromkeys(self.directory.resolve(d) for d in selected))
        if not devices:
            raise QueryValidationError("Select at least one device for the report")

        requested = (
            request.central_ids
            if request.central_ids is not None
            else self.directory.central_ids()
        )
        centrals = sorted({self.settings.resolve_central(c) for c in requested})
        if not centrals:
            raise QueryValidationError("No central configured for the report")

        return request.start_date, request.end_date, devices, centrals

    async def _run(
        self,
        key: str,
        start: datetime,
        end: datetime,
        devices: list[str],
        centrals: list[str],
    ) -> ReportResult:
        chunks = create_date_chunks(start, end, self.settings.chunk_size_days, self.tz)
        acc = _Accumulator()
        logger.info(
            f"Report {key}: {len(devices)} devices, {len(centrals)} centrals, "
            f"{len(chunks)} chunks"
        )

        for number, chunk in enumerate(chunks, start=1):
            logger.info(
                f"[CHUNK {number}/{len(chunks)}] "
                f"{iso_instant(chunk.start)} .. {iso_instant(chunk.end)}"
            )
            requests = {
                central_id: CentralRequest(
                    devices=self.directory.devices_for_central(central_id, devices),
                    date_start=chunk.start,
                    date_end=chunk.end,
                )
                for central_id in centrals
            }
            outcome = await self.rpc.fetch_chunk(requests)
            acc.failures.extend(outcome.failures)

            for central_id, readings in outcome.readings.items():
                normalized = normalize_readings(
                    central_id,
                    readings,
                    self.settings.legacy_centrals,
                    self.legacy_offset,
                )
                self._process_central(central_id, normalized, chunk.end, acc)

        rows = sorted(acc.rows, key=lambda r: (r.device_label, r.sort_key))
        missing_slots = {
            device: sorted(slots) for device, slots in sorted(acc.missing.items())
        }
        failures = _unique_by_central(acc.failures)

        self._audit_expected_labels(rows)
        self.context.cache.put(key, rows, missing_slots)

        if failures:
            logger.warning(
                f"Report {key}: {len(failures)} unreachable centrals: "
                + ", ".join(f"{f.central_id} ({f.status})" for f in failures)
            )
        logger.info(f"Report {key}: {len(rows)} rows processed")

        return ReportResult(
            query_key=key,
            rows=rows,
            failures=failures,
            missing_slots=missing_slots,
        )

    def _process_central(
        self,
        central_id: str,
        readings: list[RawReading],
        chunk_end: datetime,
        acc: _Accumulator,
    ) -> None:
        by_device: dict[str, list[RawReading]] = defaultdict(list)
        for reading in readings:
            by_device[self.directory.resolve(reading.device_key)].append(reading)

        for device, device_readings in by_device.items():
            points = self.regularizer.regularize(
                device_readings, window_end=chunk_end, device_name=device
            )
            label = self.directory.label_for(device)
            for point in points:
                acc.rows.append(self._to_row(central_id, label, point))
                if point.interpolated or point.missing:
                    acc.missing[device].add(iso_instant(point.slot))

    def _to_row(self, central_id: str, label: str, point: SeriesPoint) -> ProcessedRow:
        value, was_clamped = clamp_temperature(
            point.value, self.settings.clamp_min, self.settings.clamp_max
        )
        return ProcessedRow(
            central_id=central_id,
            device_label=label,
            localized_timestamp=point.slot.astimezone(self.tz).strftime(
                LOCAL_TIMESTAMP_FORMAT
            ),
            sort_key=epoch_ms(point.slot),
            temperature=format_temperature(value),
            interpolated=point.interpolated,
            value_was_clamped=was_clamped,
            missing=point.missing,
            missing_reason=point.reason,
            gap_size=point.gap_size,
        )

    def _audit_expected_labels(self, rows: list[ProcessedRow]) -> None:
        expected = self.directory.expected_labels
        if not expected:
            return
        present = {row.device_label for row in rows}
        absent = [label for label in expected if label not in present]
        if absent:
            logger.warning(f"Labels without real data, left out of the report: {absent}")


def _unique_by_central(failures: list[CentralFailure]) -> list[CentralFailure]:
    unique: dict[str, CentralFailure] = {}
    for failure in failures:
        unique.setdefault(failure.central_id, failure)
    return list(unique.values())


_service: Optional[TemperatureReportService] = None


async def get_report_service() -> TemperatureReportService:
    global _service

    if _service is None:
        settings = get_settings()
        _service = TemperatureReportService(
            RpcClient(await get_http_client(), settings),
            DeviceDirectory.from_file(
                settings.device_config_path, settings.central_aliases
            ),
            ReportContext.from_settings(settings),
            settings,
        )

    return _service


def reset_report_service():
    global _service
    _service = None
