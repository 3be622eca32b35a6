"""Deal value estimation from qualification-stage staffing data.

A staffing deal is worth the bill rate of each placed worker over a
full-time year, times the headcount. Qualification captures the expected
pay rate, markup, and a placement ramp (starting, after 30/90/180 days), so
the estimate is a range:

    bill_rate        = pay_rate * (1 + markup / 100)
    annual_per_head  = bill_rate * 2080
    min              = annual_per_head * starting
    max              = annual_per_head * (after180Days | after90Days | after30Days | starting)

Deals without qualification data fall back to the flat ``estimatedRevenue``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from src.crm.core.dates import safe_datetime

ANNUAL_HOURS_PER_EMPLOYEE = 2080
DEFAULT_PAY_RATE = 16.0
DEFAULT_MARKUP_PERCENT = 40.0

# Ramp checkpoints consulted for the high end, latest first
_HIGH_END_CHECKPOINTS = ("after180Days", "after90Days", "after30Days")

_RANGE_PATTERN = re.compile(r"\$([\d,]+(?:\.\d+)?)\s*-\s*\$([\d,]+(?:\.\d+)?)")


class RevenueRange(BaseModel):
    """Annual revenue range implied by a deal's placement ramp."""

    min: float
    max: float
    bill_rate: float
    annual_revenue_per_employee: float

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2


# ── Number helpers ──────────────────────────────────────────────────────────


def _to_number(value: Any) -> float | None:
    """Parse ints, floats, and numeric strings ("1,200", "$50000"); None otherwise."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.replace(",", "").replace("$", "").strip()
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _truthy_number(value: Any) -> float:
    """Mirror ``value || 0`` on numeric input: missing, zero, or junk -> 0."""
    return _to_number(value) or 0.0


def format_currency(value: float) -> str:
    """Format like en-US ``toLocaleString``: grouping, up to 3 decimals, no trailing zeros."""
    text = f"{value:,.3f}".rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return f"${text}"


def format_compact_currency(value: float) -> str:
    """Short chart label: $1.2M, $93K, $950."""
    if value >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    if value >= 1000:
        return f"${value / 1000:.0f}K"
    return format_currency(value)


def parse_revenue_range(text: Any) -> tuple[float, float] | None:
    """Parse a stored ``"$87,360 - $218,400"`` string into (low, high)."""
    if not isinstance(text, str) or "-" not in text:
        return None
    match = _RANGE_PATTERN.search(text)
    if match is None:
        return None
    low = float(match.group(1).replace(",", ""))
    high = float(match.group(2).replace(",", ""))
    return low, high


# ── Estimation ──────────────────────────────────────────────────────────────


def _qualification(deal: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if not isinstance(deal, Mapping):
        return None
    stage_data = deal.get("stageData")
    if not isinstance(stage_data, Mapping):
        return None
    qualification = stage_data.get("qualification")
    return qualification if isinstance(qualification, Mapping) and qualification else None


def estimate_revenue_range(deal: Mapping[str, Any] | None) -> RevenueRange | None:
    """Revenue range from qualification data, or None if there is no usable ramp.

    Missing or zero pay rate and markup fall back to the house defaults
    (16/hr, 40%). A ramp whose starting and latest headcounts are both zero
    yields None.
    """
    qualification = _qualification(deal)
    if qualification is None:
        return None
    timeline = qualification.get("staffPlacementTimeline")
    if not isinstance(timeline, Mapping) or not timeline:
        return None

    pay_rate = _truthy_number(qualification.get("expectedAveragePayRate")) or DEFAULT_PAY_RATE
    markup = _truthy_number(qualification.get("expectedAverageMarkup")) or DEFAULT_MARKUP_PERCENT

    bill_rate = pay_rate * (1 + markup / 100)
    annual_per_employee = bill_rate * ANNUAL_HOURS_PER_EMPLOYEE

    starting = _truthy_number(timeline.get("starting"))
    latest = starting
    for checkpoint in _HIGH_END_CHECKPOINTS:
        count = _truthy_number(timeline.get(checkpoint))
        if count:
            latest = count
            break

    if starting <= 0 and latest <= 0:
        return None

    return RevenueRange(
        min=annual_per_employee * starting,
        max=annual_per_employee * latest,
        bill_rate=bill_rate,
        annual_revenue_per_employee=annual_per_employee,
    )


def get_deal_estimated_value(deal: Mapping[str, Any] | None) -> str:
    """Display string for a deal's value.

    ``"$93,184 - $232,960"`` for a qualification range, ``"$50,000"`` for a
    flat estimate, ``"-"`` when the deal carries neither.
    """
    revenue = estimate_revenue_range(deal)
    if revenue is not None:
        return f"{format_currency(revenue.min)} - {format_currency(revenue.max)}"

    if not isinstance(deal, Mapping):
        return "-"
    flat = deal.get("estimatedRevenue")
    amount = _to_number(flat)
    if amount:
        return format_currency(amount)
    parsed = parse_revenue_range(flat)
    if parsed is not None:
        return f"{format_currency(parsed[0])} - {format_currency(parsed[1])}"
    return "-"


def get_deal_value_for_pipeline(deal: Mapping[str, Any] | None) -> float:
    """Single number for pipeline charts: the high end of any range.

    Order: qualification range max, numeric ``estimatedRevenue``, the high
    end of a range string in ``estimatedRevenue`` or
    ``expectedAnnualRevenueRange``, else 0.
    """
    revenue = estimate_revenue_range(deal)
    if revenue is not None:
        return revenue.max
    if not isinstance(deal, Mapping):
        return 0.0

    flat = deal.get("estimatedRevenue")
    parsed = parse_revenue_range(flat)
    if parsed is not None:
        return parsed[1]
    amount = _to_number(flat)
    if amount is not None:
        return amount

    parsed = parse_revenue_range(deal.get("expectedAnnualRevenueRange"))
    if parsed is not None:
        return parsed[1]
    return 0.0


def deal_sort_value(deal: Mapping[str, Any] | None) -> float:
    """Sort key for the deals table: the low end of the displayed value."""
    revenue = estimate_revenue_range(deal)
    if revenue is not None:
        return revenue.min
    if not isinstance(deal, Mapping):
        return 0.0
    flat = deal.get("estimatedRevenue")
    parsed = parse_revenue_range(flat)
    if parsed is not None:
        return parsed[0]
    return _to_number(flat) or 0.0


def get_deal_close_date(deal: Mapping[str, Any] | None) -> datetime | None:
    """Expected close from qualification data, else the deal's ``closeDate``."""
    qualification = _qualification(deal)
    if qualification is not None:
        expected = safe_datetime(qualification.get("expectedCloseDate"))
        if expected is not None:
            return expected
    if isinstance(deal, Mapping):
        return safe_datetime(deal.get("closeDate"))
    return None
