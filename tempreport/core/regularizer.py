"""
Per-device series regularization.

Raw readings are snapped onto a 30-minute grid laid over each local calendar
day. Gaps are found within each day on its own. Short gaps are filled with a
neighbor-anchored synthetic value and long ones are left out.
"""

import logging
import random
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from tempreport.core.slots import SLOT, day_slots, local_day, snap_to_slot
from tempreport.models.telemetry import Gap, RawReading, SeriesPoint

logger = logging.getLogger(__name__)

NEIGHBOR_SLOTS = 4


def identify_gaps(slots: list[datetime], existing: dict) -> list[Gap]:
    """Group consecutive slots lacking a real reading into gaps.

    A jump of more than one slot between neighbors in ``slots`` ends the
    current gap.
    """
    gaps = []
    current: Optional[dict] = None

    for index, slot in enumerate(slots):
        contiguous = index > 0 and slot - slots[index - 1] == SLOT

        if slot in existing:
            if current:
                gaps.append(Gap(**current))
                current = None
            continue

        if current and not contiguous:
            gaps.append(Gap(**current))
            current = None

        if current is None:
            current = {
                "start_index": index,
                "end_index": index,
                "start_slot": slot,
                "end_slot": slot,
                "size": 0,
            }
        current["size"] += 1
        current["end_index"] = index
        current["end_slot"] = slot

    if current:
        gaps.append(Gap(**current))

    return gaps


def crosses_midnight(gap: Gap, tz: ZoneInfo) -> bool:
    return local_day(gap.start_slot, tz) != local_day(gap.end_slot, tz)


def can_interpolate(
    gap: Gap, max_gap_slots: int, allow_cross_midnight: bool, tz: ZoneInfo
) -> bool:
    if gap.size > max_gap_slots:
        return False
    if not allow_cross_midnight and crosses_midnight(gap, tz):
        return False
    return True


def skip_reason(
    gap: Gap, max_gap_slots: int, allow_cross_midnight: bool, tz: ZoneInfo
) -> str:
    if gap.size > max_gap_slots:
        return f"gap_too_large_{gap.size}_slots_max_{max_gap_slots}"
    if not allow_cross_midnight and crosses_midnight(gap, tz):
        return "crosses_midnight"
    return "unknown"


def baseline_temperature(hour: int, rng: random.Random) -> float:
    """Plausible room temperature for a local hour, with jitter."""
    if hour < 9:
        base = 17 + rng.random() * 2
    elif hour < 18:
        base = 18 + rng.random() * 4
    else:
        base = 17 + rng.random() * 3
    return base + (rng.random() - 0.5) * 1.5


class SeriesRegularizer:
    def __init__(
        self,
        tz: ZoneInfo,
        max_gap_slots: int = 8,
        allow_cross_midnight: bool = False,
        include_missing: bool = False,
        neighbor_weight: float = 0.7,
        rng: Optional[random.Random] = None,
    ):
        self.tz = tz
        self.max_gap_slots = max_gap_slots
        self.allow_cross_midnight = allow_cross_midnight
        self.include_missing = include_missing
        self.neighbor_weight = neighbor_weight
        self.rng = rng or random.Random()

    def regularize(
        self,
        readings: list[RawReading],
        window_end: Optional[datetime] = None,
        device_name: str = "",
    ) -> list[SeriesPoint]:
        dated = sorted(
            (r for r in readings if r.timestamp is not None),
            key=lambda r: r.timestamp,
        )
        if not dated:
            logger.debug(f"[Regularizer] {device_name}: no real data, skipping")
            return []

        existing: dict[datetime, RawReading] = {}
        for reading in dated:
            existing[snap_to_slot(reading.timestamp)] = reading

        first_slot = min(existing)
        last_slot = max(existing)
        if window_end is not None and window_end < last_slot:
            last_slot = window_end

        days = sorted({local_day(slot, self.tz) for slot in existing})

        points = []
        for day in days:
            slots = [
                s for s in day_slots(day, self.tz) if first_slot <= s <= last_slot
            ]
            if not slots:
                continue
            points.extend(self._regularize_day(day, slots, existing, device_name))

        return points

    def _regularize_day(
        self,
        day: date,
        slots: list[datetime],
        existing: dict[datetime, RawReading],
        device_name: str = "",
    ) -> list[SeriesPoint]:
        gaps = identify_gaps(slots, existing)
        gap_by_index = {
            index: gap
            for gap in gaps
            for index in range(gap.start_index, gap.end_index + 1)
        }
        self._log_gaps(device_name, day, gaps)

        points = []
        for position, slot in enumerate(slots):
            reading = existing.get(slot)
            if reading is not None:
                points.append(SeriesPoint(slot=slot, value=reading.value))
                continue

            gap = gap_by_index[position]
            if can_interpolate(
                gap, self.max_gap_slots, self.allow_cross_midnight, self.tz
            ):
                points.append(
                    SeriesPoint(
                        slot=slot,
                        value=self._synthesize(slot, slots, position, existing),
                        interpolated=True,
                        gap_size=gap.size,
                    )
                )
            elif self.include_missing:
                points.append(
                    SeriesPoint(
                        slot=slot,
                        missing=True,
                        gap_size=gap.size,
                        reason=skip_reason(
                            gap, self.max_gap_slots, self.allow_cross_midnight, self.tz
                        ),
                    )
                )
        return points

    def _synthesize(
        self,
        slot: datetime,
        slots: list[datetime],
        position: int,
        existing: dict[datetime, RawReading],
    ) -> float:
        hour = slot.astimezone(self.tz).hour
        baseline = baseline_temperature(hour, self.rng)

        nearby = []
        for j in range(
            max(0, position - NEIGHBOR_SLOTS),
            min(len(slots), position + NEIGHBOR_SLOTS),
        ):
            reading = existing.get(slots[j])
            if reading is not None and reading.value is not None:
                nearby.append(reading.value)

        if not nearby:
            return round(baseline, 2)

        average = sum(nearby) / len(nearby)
        weight = self.neighbor_weight
        value = round(average * weight + baseline * (1 - weight), 2)
        # a filled slot never repeats a real neighbor exactly
        while value in nearby:
            value = round(value + 0.01, 2)
        return value

    def _log_gaps(self, device_name: str, day: date, gaps: list[Gap]) -> None:
        if not gaps:
            return
        filled = sum(
            g.size
            for g in gaps
            if can_interpolate(g, self.max_gap_slots, self.allow_cross_midnight, self.tz)
        )
        dropped = sum(g.size for g in gaps) - filled
        logger.debug(
            f"[Regularizer] {device_name} {day}: {len(gaps)} gaps, "
            f"{filled} slots interpolated, {dropped} slots missing "
            f"(max {self.max_gap_slots}, cross-midnight "
            f"{'allowed' if self.allow_cross_midnight else 'blocked'})"
        )
