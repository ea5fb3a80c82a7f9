"""Metric schema parsing — free-text metric specification into typed definitions.

A specification is line oriented. Each non-blank line names one metric and may
carry a type hint after a colon::

    - Company Name
    - Transaction Value: number ($)
    - Closing Date: date
    - Revenue Multiple: percent

Line order is preserved; it becomes the workbook column order.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel

_BULLET_RE = re.compile(r"^[-•*]\s*")
_ANNOTATION_RE = re.compile(r"\([^)]*\)")
_KEY_UNSAFE_RE = re.compile(r"[^a-z0-9]")

CURRENCY_SYMBOLS = frozenset("$€£¥₹")


class MetricType(str, Enum):
    """Declared value type of a metric column."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    PERCENTAGE = "percentage"


class MetricDefinition(BaseModel):
    """One named, typed metric. Immutable once parsed."""

    name: str
    type: MetricType = MetricType.TEXT
    key: str

    model_config = {"frozen": True}


MetricSchema = list[MetricDefinition]


def strip_bullet(line: str) -> str:
    """Remove surrounding whitespace and one leading bullet marker."""
    return _BULLET_RE.sub("", line.strip()).strip()


def clean_spec_lines(spec_text: str) -> list[str]:
    """Return the non-blank specification lines with bullets removed."""
    cleaned = (strip_bullet(line) for line in spec_text.splitlines())
    return [line for line in cleaned if line]


def metric_key(name: str) -> str:
    return _KEY_UNSAFE_RE.sub("_", name.lower())


def infer_metric_type(hint: str) -> MetricType:
    """Infer a metric type from a lower-cased type hint.

    First match wins, checked in the order number, date, percentage.
    """
    if "number" in hint or "amount" in hint or any(c in CURRENCY_SYMBOLS for c in hint):
        return MetricType.NUMBER
    if "date" in hint:
        return MetricType.DATE
    if "percent" in hint or "%" in hint:
        return MetricType.PERCENTAGE
    return MetricType.TEXT


def parse_metric_line(line: str) -> MetricDefinition | None:
    """Parse a single specification line, or None when it names nothing."""
    line = strip_bullet(line)
    if not line:
        return None

    name, sep, hint = line.partition(":")
    if sep:
        name = name.strip()
        metric_type = infer_metric_type(hint.strip().lower())
    else:
        name = _ANNOTATION_RE.sub("", line).strip()
        metric_type = MetricType.TEXT

    if not name:
        return None
    return MetricDefinition(name=name, type=metric_type, key=metric_key(name))


def parse_metric_spec(spec_text: str) -> MetricSchema:
    """Parse a multi-line metric specification into an ordered schema.

    Duplicate names are kept as-is; lookups downstream match on name first.
    """
    schema: MetricSchema = []
    for line in spec_text.splitlines():
        metric = parse_metric_line(line)
        if metric is not None:
            schema.append(metric)
    return schema
