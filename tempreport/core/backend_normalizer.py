import logging
from collections.abc import Collection
from datetime import timedelta

from tempreport.models.telemetry import RawReading

logger = logging.getLogger(__name__)

LEGACY_OFFSET = timedelta(hours=3)


def is_legacy_central(central_id: str, legacy_centrals: Collection[str]) -> bool:
    return central_id in legacy_centrals


def normalize_readings(
    central_id: str,
    readings: list[RawReading],
    legacy_centrals: Collection[str],
    offset: timedelta = LEGACY_OFFSET,
) -> list[RawReading]:
    """Undo the forward shift legacy centrals apply to their instants.

    Modern centrals report true UTC and are returned untouched.
    """
    if not is_legacy_central(central_id, legacy_centrals):
        return readings

    normalized = [
        reading.model_copy(update={"timestamp": reading.timestamp - offset})
        if reading.timestamp is not None
        else reading
        for reading in readings
    ]

    if normalized:
        logger.debug(
            f"[LEGACY -{offset}] {central_id}: first reading "
            f"{readings[0].timestamp} -> {normalized[0].timestamp}"
        )

    return normalized
