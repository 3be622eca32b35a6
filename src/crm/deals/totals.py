"""Company pipeline totals rolled up from deals through locations and divisions.

Totals are normally precomputed server-side (``updateCompanyPipelineTotals``)
and cached on the company document as ``pipelineValue``, ``closedValue`` and
``divisionTotals``. cached_company_totals() reads those figures back;
compute_company_totals() recomputes them from deals, and
resolve_company_totals() prefers the former.

Open deals (status neither ``closed`` nor ``lost``) contribute the low and
high ends of their revenue range; closed deals contribute the midpoint.
Deals without a qualification ramp are counted but add no value.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, Field

from src.crm.deals.valuation import estimate_revenue_range

OPEN_EXCLUDED_STATUSES = frozenset({"closed", "lost"})
CLOSED_STATUS = "closed"
UNASSIGNED_LOCATION = "unassigned"


class PipelineValue(BaseModel):
    low: float = 0.0
    high: float = 0.0
    deal_count: int = 0

    def add(self, other: PipelineValue) -> None:
        self.low += other.low
        self.high += other.high
        self.deal_count += other.deal_count


class ClosedValue(BaseModel):
    total: float = 0.0
    deal_count: int = 0

    def add(self, other: ClosedValue) -> None:
        self.total += other.total
        self.deal_count += other.deal_count


class LocationTotals(BaseModel):
    location_id: str
    division: str | None = None
    pipeline_value: PipelineValue = Field(default_factory=PipelineValue)
    closed_value: ClosedValue = Field(default_factory=ClosedValue)


class DivisionTotals(BaseModel):
    pipeline_value: PipelineValue = Field(default_factory=PipelineValue)
    closed_value: ClosedValue = Field(default_factory=ClosedValue)
    locations: list[str] = Field(default_factory=list)


class CompanyTotals(BaseModel):
    pipeline_value: PipelineValue = Field(default_factory=PipelineValue)
    closed_value: ClosedValue = Field(default_factory=ClosedValue)
    division_totals: dict[str, DivisionTotals] = Field(default_factory=dict)
    locations: list[LocationTotals] = Field(default_factory=list)
    cached: bool = False

    def to_document(self) -> dict[str, Any]:
        """camelCase fields as stored on the company document."""
        return {
            "pipelineValue": _pipeline_doc(self.pipeline_value),
            "closedValue": _closed_doc(self.closed_value),
            "divisionTotals": {
                name: {
                    "pipelineValue": _pipeline_doc(division.pipeline_value),
                    "closedValue": _closed_doc(division.closed_value),
                    "locations": list(division.locations),
                }
                for name, division in self.division_totals.items()
            },
        }


def _pipeline_doc(value: PipelineValue) -> dict[str, Any]:
    return {"low": value.low, "high": value.high, "dealCount": value.deal_count}


def _closed_doc(value: ClosedValue) -> dict[str, Any]:
    return {"total": value.total, "dealCount": value.deal_count}


# ── Computation ─────────────────────────────────────────────────────────────


def _location_totals(location_id: str, division: str | None, deals: list[Mapping[str, Any]]) -> LocationTotals:
    totals = LocationTotals(location_id=location_id, division=division)
    for deal in deals:
        status = deal.get("status")
        revenue = estimate_revenue_range(deal)
        if status == CLOSED_STATUS:
            totals.closed_value.deal_count += 1
            if revenue is not None:
                totals.closed_value.total += revenue.midpoint
        elif status not in OPEN_EXCLUDED_STATUSES:
            totals.pipeline_value.deal_count += 1
            if revenue is not None:
                totals.pipeline_value.low += revenue.min
                totals.pipeline_value.high += revenue.max
    return totals


def compute_company_totals(
    deals: Iterable[Mapping[str, Any]],
    locations: Iterable[Mapping[str, Any]],
) -> CompanyTotals:
    """Roll deal values up to locations, divisions, and the company.

    Deals whose ``locationId`` matches none of the company's locations are
    grouped under an ``unassigned`` location so they still reach the
    company totals.

    Args:
        deals: The company's deal documents.
        locations: Documents from the company's ``locations`` subcollection.
    """
    location_docs = [loc for loc in locations if isinstance(loc, Mapping) and loc.get("id")]
    known_ids = {loc["id"] for loc in location_docs}

    by_location: dict[str, list[Mapping[str, Any]]] = {loc["id"]: [] for loc in location_docs}
    unassigned: list[Mapping[str, Any]] = []
    for deal in deals:
        if not isinstance(deal, Mapping):
            continue
        location_id = deal.get("locationId")
        if location_id in known_ids:
            by_location[location_id].append(deal)
        else:
            unassigned.append(deal)

    company = CompanyTotals()
    for location in location_docs:
        division = location.get("division") or None
        totals = _location_totals(location["id"], division, by_location[location["id"]])
        company.locations.append(totals)
        if division:
            bucket = company.division_totals.setdefault(division, DivisionTotals())
            bucket.pipeline_value.add(totals.pipeline_value)
            bucket.closed_value.add(totals.closed_value)
            bucket.locations.append(location["id"])
        company.pipeline_value.add(totals.pipeline_value)
        company.closed_value.add(totals.closed_value)

    if unassigned:
        totals = _location_totals(UNASSIGNED_LOCATION, None, unassigned)
        company.locations.append(totals)
        company.pipeline_value.add(totals.pipeline_value)
        company.closed_value.add(totals.closed_value)

    return company


# ── Cached totals ───────────────────────────────────────────────────────────


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _pipeline_from_doc(raw: Mapping[str, Any]) -> PipelineValue:
    return PipelineValue(
        low=_number(raw.get("low")),
        high=_number(raw.get("high")),
        deal_count=int(_number(raw.get("dealCount"))),
    )


def _closed_from_doc(raw: Any) -> ClosedValue:
    if not isinstance(raw, Mapping):
        return ClosedValue()
    return ClosedValue(total=_number(raw.get("total")), deal_count=int(_number(raw.get("dealCount"))))


def cached_company_totals(company: Mapping[str, Any]) -> CompanyTotals | None:
    """Totals stored on the company document, or None when absent."""
    pipeline = company.get("pipelineValue")
    if not isinstance(pipeline, Mapping):
        return None

    divisions_raw = company.get("divisionTotals")
    if not isinstance(divisions_raw, Mapping):
        divisions_raw = company.get("divisions")
    divisions: dict[str, DivisionTotals] = {}
    if isinstance(divisions_raw, Mapping):
        for name, raw in divisions_raw.items():
            if not isinstance(raw, Mapping):
                continue
            divisions[name] = DivisionTotals(
                pipeline_value=_pipeline_from_doc(raw.get("pipelineValue") or {}),
                closed_value=_closed_from_doc(raw.get("closedValue")),
                locations=[str(x) for x in raw.get("locations") or []],
            )

    return CompanyTotals(
        pipeline_value=_pipeline_from_doc(pipeline),
        closed_value=_closed_from_doc(company.get("closedValue")),
        division_totals=divisions,
        cached=True,
    )


def resolve_company_totals(
    company: Mapping[str, Any],
    deals: Iterable[Mapping[str, Any]],
    locations: Iterable[Mapping[str, Any]],
) -> CompanyTotals:
    """Cached totals of the company document, else computed from ``deals``."""
    cached = cached_company_totals(company)
    if cached is not None:
        return cached
    return compute_company_totals(deals, locations)
