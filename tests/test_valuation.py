"""Deterministic tests for deal value estimation.

Uses the real valuation functions (no mocking). Qualification ramp of
16/hr at 40% markup, 2 heads starting and 5 after 180 days:

    bill rate       16 * 1.4   = 22.4
    annual / head   22.4 * 2080 = 46,592
    range           93,184 - 232,960
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.crm.deals.valuation import (
    deal_sort_value,
    estimate_revenue_range,
    format_compact_currency,
    format_currency,
    get_deal_close_date,
    get_deal_estimated_value,
    get_deal_value_for_pipeline,
    parse_revenue_range,
)


def _qualified_deal(**timeline) -> dict:
    return {
        "stageData": {
            "qualification": {
                "expectedAveragePayRate": 16,
                "expectedAverageMarkup": 40,
                "staffPlacementTimeline": timeline or {"starting": 2, "after180Days": 5},
            }
        }
    }


# ── Display string ───────────────────────────────────────────────────────────


class TestDealEstimatedValue:
    def test_qualification_range(self) -> None:
        assert get_deal_estimated_value(_qualified_deal()) == "$93,184 - $232,960"

    def test_flat_estimated_revenue(self) -> None:
        assert get_deal_estimated_value({"estimatedRevenue": 50000}) == "$50,000"

    def test_numeric_string_revenue(self) -> None:
        assert get_deal_estimated_value({"estimatedRevenue": "50,000"}) == "$50,000"

    def test_neither(self) -> None:
        assert get_deal_estimated_value({"name": "Empty"}) == "-"
        assert get_deal_estimated_value(None) == "-"

    def test_zero_revenue_is_dash(self) -> None:
        assert get_deal_estimated_value({"estimatedRevenue": 0}) == "-"

    def test_range_string_revenue_reformatted(self) -> None:
        deal = {"estimatedRevenue": "$87,360 - $218,400"}
        assert get_deal_estimated_value(deal) == "$87,360 - $218,400"


# ── Range estimation ─────────────────────────────────────────────────────────


class TestEstimateRevenueRange:
    def test_bill_rate_and_annual(self) -> None:
        revenue = estimate_revenue_range(_qualified_deal())
        assert revenue.bill_rate == pytest.approx(22.4)
        assert revenue.annual_revenue_per_employee == pytest.approx(46592)
        assert revenue.min == pytest.approx(93184)
        assert revenue.max == pytest.approx(232960)
        assert revenue.midpoint == pytest.approx(163072)

    def test_defaults_for_missing_rates(self) -> None:
        deal = {"stageData": {"qualification": {"staffPlacementTimeline": {"starting": 1}}}}
        revenue = estimate_revenue_range(deal)
        assert revenue.bill_rate == pytest.approx(22.4)
        assert revenue.min == revenue.max

    def test_high_end_falls_back_to_latest_checkpoint(self) -> None:
        revenue = estimate_revenue_range(_qualified_deal(starting=1, after30Days=2, after90Days=3))
        assert revenue.max == pytest.approx(46592 * 3)

    def test_empty_ramp_is_none(self) -> None:
        assert estimate_revenue_range(_qualified_deal(starting=0)) is None

    def test_no_qualification_is_none(self) -> None:
        assert estimate_revenue_range({"stageData": {}}) is None


# ── Pipeline and sorting values ──────────────────────────────────────────────


class TestPipelineValue:
    def test_range_uses_high_end(self) -> None:
        assert get_deal_value_for_pipeline(_qualified_deal()) == pytest.approx(232960)

    def test_flat_revenue(self) -> None:
        assert get_deal_value_for_pipeline({"estimatedRevenue": 50000}) == 50000

    def test_range_string_high_end(self) -> None:
        deal = {"expectedAnnualRevenueRange": "$10,000 - $20,000"}
        assert get_deal_value_for_pipeline(deal) == 20000

    def test_nothing_is_zero(self) -> None:
        assert get_deal_value_for_pipeline({}) == 0.0

    def test_sort_value_uses_low_end(self) -> None:
        assert deal_sort_value(_qualified_deal()) == pytest.approx(93184)
        assert deal_sort_value({"estimatedRevenue": "$5 - $9"}) == 5


# ── Formatting helpers ───────────────────────────────────────────────────────


class TestFormatting:
    @pytest.mark.parametrize(
        "value,expected",
        [(0, "$0"), (1234.5, "$1,234.5"), (1000000, "$1,000,000"), (12.34567, "$12.346")],
    )
    def test_format_currency(self, value, expected) -> None:
        assert format_currency(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [(1_250_000, "$1.2M"), (93_184, "$93K"), (950, "$950")],
    )
    def test_format_compact_currency(self, value, expected) -> None:
        assert format_compact_currency(value) == expected

    def test_parse_revenue_range(self) -> None:
        assert parse_revenue_range("$87,360 - $218,400") == (87360.0, 218400.0)
        assert parse_revenue_range("about 5k") is None
        assert parse_revenue_range(None) is None


class TestCloseDate:
    def test_expected_close_preferred(self) -> None:
        deal = {
            "stageData": {"qualification": {"expectedCloseDate": "2024-09-01"}},
            "closeDate": "2024-12-01",
        }
        assert get_deal_close_date(deal) == datetime(2024, 9, 1, tzinfo=timezone.utc)

    def test_falls_back_to_close_date(self) -> None:
        assert get_deal_close_date({"closeDate": "2024-12-01T00:00:00Z"}) == datetime(
            2024, 12, 1, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize(
        "stamp",
        [
            {"_seconds": 1e20},
            {"seconds": float("nan")},
            {"seconds": 1700000000, "nanoseconds": "12"},
            {"seconds": "1700000000"},
        ],
    )
    def test_malformed_timestamp_map_is_none(self, stamp) -> None:
        assert get_deal_close_date({"closeDate": stamp}) is None
        deal = {"stageData": {"qualification": {"expectedCloseDate": stamp}}, "closeDate": "2024-12-01"}
        assert get_deal_close_date(deal) == datetime(2024, 12, 1, tzinfo=timezone.utc)

    def test_timestamp_map_with_nanoseconds(self) -> None:
        deal = {"closeDate": {"seconds": 1717200000, "nanoseconds": 500_000_000}}
        assert get_deal_close_date(deal) == datetime(2024, 6, 1, 0, 0, 0, 500000, tzinfo=timezone.utc)
