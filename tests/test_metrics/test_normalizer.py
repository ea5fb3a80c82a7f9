"""Tests for raw value normalization."""

import pytest

from waterfall.metrics.normalizer import CellMarker, normalize
from waterfall.metrics.schema import MetricType


class TestSentinels:
    @pytest.mark.parametrize("raw", [None, "Not found", "N/A"])
    @pytest.mark.parametrize("metric_type", list(MetricType))
    def test_absent_values_become_empty(self, raw, metric_type):
        assert normalize(raw, metric_type) is CellMarker.EMPTY

    def test_empty_marker_distinct_from_error_marker(self):
        assert CellMarker.EMPTY != CellMarker.ERROR


class TestNumber:
    def test_currency_and_separators(self):
        assert normalize("$1,000,000", MetricType.NUMBER) == 1000000

    def test_decimal(self):
        assert normalize("2.5", MetricType.NUMBER) == 2.5
        assert normalize("€ 1,234.50", MetricType.NUMBER) == 1234.5

    def test_native_numbers(self):
        assert normalize(5000000, MetricType.NUMBER) == 5000000
        assert normalize(2.5, MetricType.NUMBER) == 2.5

    def test_negative(self):
        assert normalize("-$3,000", MetricType.NUMBER) == -3000

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("5,000,000 USD", 5000000),
            ("$5.2M", 5.2),
            ("1,250 (approx.)", 1250),
            ("3e3 units", 3000),
        ],
    )
    def test_trailing_units_ignored(self, raw, expected):
        assert normalize(raw, MetricType.NUMBER) == expected

    @pytest.mark.parametrize("raw", [float("nan"), float("inf"), "1e999"])
    def test_non_finite(self, raw):
        assert normalize(raw, MetricType.NUMBER) is CellMarker.EMPTY

    @pytest.mark.parametrize("raw", ["about a million", "", "nan", True, {"a": 1}])
    def test_unparsable(self, raw):
        assert normalize(raw, MetricType.NUMBER) is CellMarker.EMPTY


class TestPercentage:
    def test_percent_sign_divided(self):
        assert normalize("15%", MetricType.PERCENTAGE) == pytest.approx(0.15)
        assert normalize("2.5 %", MetricType.PERCENTAGE) == pytest.approx(0.025)

    def test_decimal_passes_through(self):
        assert normalize(0.15, MetricType.PERCENTAGE) == 0.15
        assert normalize("0.15", MetricType.PERCENTAGE) == pytest.approx(0.15)

    def test_unparsable(self):
        assert normalize("about 15%ish", MetricType.PERCENTAGE) is CellMarker.EMPTY
        assert normalize("high", MetricType.PERCENTAGE) is CellMarker.EMPTY

    def test_trailing_text_after_percent(self):
        assert normalize("15% (approx.)", MetricType.PERCENTAGE) == pytest.approx(0.15)

    @pytest.mark.parametrize("raw", [float("nan"), float("inf"), float("-inf"), "NaN", True])
    def test_non_finite_and_non_numeric(self, raw):
        assert normalize(raw, MetricType.PERCENTAGE) is CellMarker.EMPTY


class TestDateAndText:
    def test_date_unchanged(self):
        assert normalize("12/31/2023", MetricType.DATE) == "12/31/2023"
        assert normalize("Dec 31, 2023", MetricType.DATE) == "Dec 31, 2023"

    def test_text_stringified(self):
        assert normalize("Acme Corp", MetricType.TEXT) == "Acme Corp"
        assert normalize(42, MetricType.TEXT) == "42"

    def test_deterministic(self):
        assert normalize("$5,000", MetricType.NUMBER) == normalize("$5,000", MetricType.NUMBER)
