import math
from typing import Any, Optional

TEMPERATURE_MIN = 17.0
TEMPERATURE_MAX = 25.0


def clamp_temperature(
    value: Any,
    lower: float = TEMPERATURE_MIN,
    upper: float = TEMPERATURE_MAX,
) -> tuple[Optional[float], bool]:
    """Bound a reading to ``[lower, upper]``.

    Returns ``(value, was_clamped)``. Anything that is not a finite number
    maps to ``(None, False)``.
    """
    if value is None or isinstance(value, bool):
        return None, False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None, False
    if not math.isfinite(number):
        return None, False

    if number < lower:
        return round(lower, 2), True
    if number > upper:
        return round(upper, 2), True
    return round(number, 2), False


def format_temperature(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return f"{value:.2f}"
