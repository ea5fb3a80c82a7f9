"""Value normalizer — coerce raw extracted values to a metric's declared type.

``normalize`` never raises. Anything it cannot type becomes ``CellMarker.EMPTY``.
"""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Any, Union

from waterfall.metrics.schema import CURRENCY_SYMBOLS, MetricType

NOT_FOUND_SENTINELS = frozenset({"Not found", "N/A"})

_NUMERIC_NOISE_RE = re.compile("[,\\s" + re.escape("".join(sorted(CURRENCY_SYMBOLS))) + "]")
_LEADING_DECIMAL_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


class CellMarker(str, Enum):
    """Non-value cell states. ``EMPTY`` means not found, ``ERROR`` means extraction failed."""

    EMPTY = ""
    ERROR = "Error"


CellValue = Union[float, int, str, CellMarker]


def _finite(number: float) -> float | None:
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _parse_decimal(text: str) -> float | None:
    """Parse the decimal at the start of ``text``, ignoring trailing units ("USD", "M")."""
    match = _LEADING_DECIMAL_RE.match(text.strip())
    if match is None:
        return None
    return _finite(float(match.group()))


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _finite(float(value))
    return _parse_decimal(_NUMERIC_NOISE_RE.sub("", str(value)))


def _compact(number: float) -> float | int:
    return int(number) if number.is_integer() else number


def normalize(raw_value: Any, metric_type: MetricType) -> CellValue:
    """Coerce ``raw_value`` to ``metric_type``.

    - number: currency symbols and thousands separators stripped, leading decimal
      parsed ("5,000,000 USD" -> 5000000, "$5.2M" -> 5.2)
    - percentage: "15%" -> 0.15; decimal fractions (0.15 or "0.15") pass through
    - date: passed through unchanged
    - text: stringified
    """
    if raw_value is None or (isinstance(raw_value, str) and raw_value in NOT_FOUND_SENTINELS):
        return CellMarker.EMPTY

    try:
        if metric_type == MetricType.NUMBER:
            number = _as_number(raw_value)
            return CellMarker.EMPTY if number is None else _compact(number)

        if metric_type == MetricType.PERCENTAGE:
            if isinstance(raw_value, str):
                if "%" in raw_value:
                    number = _parse_decimal(raw_value.replace("%", "").strip())
                    return CellMarker.EMPTY if number is None else number / 100
                # already a decimal fraction, just serialized as text
                number = _parse_decimal(raw_value.strip())
                return CellMarker.EMPTY if number is None else number
            if isinstance(raw_value, (int, float)) and _as_number(raw_value) is not None:
                return raw_value
            return CellMarker.EMPTY

        if metric_type == MetricType.DATE:
            return raw_value

        return str(raw_value)
    except Exception:
        return CellMarker.EMPTY
