"""Funnel and bubble-chart aggregation over deals.

Both charts group deals by their resolved stage (see stages.resolve_deal_stage)
and sum the pipeline value of each deal (valuation.get_deal_value_for_pipeline).
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Literal

import structlog
from pydantic import BaseModel

from src.crm.deals.stages import (
    DEFAULT_STAGES,
    STAGE_ALIASES,
    PipelineStage,
    get_stage_color,
    resolve_deal_stage,
)
from src.crm.deals.valuation import format_compact_currency, get_deal_value_for_pipeline

logger = structlog.get_logger(__name__)

FunnelMode = Literal["count", "value"]

# Bars never render narrower than this share of the widest bar
MIN_BAR_WIDTH_PERCENT = 15.0


class FunnelStage(BaseModel):
    id: str
    label: str
    count: int
    value: float
    value_label: str
    color: str
    drop_off: int = 0
    width_percent: float = 100.0


class BubblePoint(BaseModel):
    stage: str
    stage_id: str
    order: int
    probability: float
    count: int
    value: float
    color: str


class _Bucket:
    __slots__ = ("count", "value")

    def __init__(self) -> None:
        self.count = 0
        self.value = 0.0


def _js_round(value: float) -> int:
    """Half-up rounding (Math.round), unlike Python's round-half-even."""
    return int(math.floor(value + 0.5))


def group_deals_by_stage(
    deals: Iterable[Mapping[str, Any]],
    stages: Sequence[PipelineStage] = DEFAULT_STAGES,
    aliases: Mapping[str, str] = STAGE_ALIASES,
) -> dict[str, _Bucket]:
    """Count and sum pipeline value per stage id. Unresolvable deals are dropped."""
    buckets: dict[str, _Bucket] = {}
    unmapped = 0
    for deal in deals:
        if not isinstance(deal, Mapping):
            continue
        stage = resolve_deal_stage(deal, stages, aliases)
        if stage is None:
            unmapped += 1
            continue
        bucket = buckets.setdefault(stage.id, _Bucket())
        bucket.count += 1
        bucket.value += get_deal_value_for_pipeline(deal)
    if unmapped:
        logger.debug("pipeline_deals_unmapped", count=unmapped)
    return buckets


def build_funnel(
    deals: Iterable[Mapping[str, Any]],
    stages: Sequence[PipelineStage] = DEFAULT_STAGES,
    mode: FunnelMode = "count",
    aliases: Mapping[str, str] = STAGE_ALIASES,
) -> list[FunnelStage]:
    """Ordered funnel rows; stages with no deals are omitted.

    ``drop_off`` is the percentage lost against the previous row shown.
    ``width_percent`` scales the chosen metric to the largest row, floored
    at MIN_BAR_WIDTH_PERCENT.
    """
    buckets = group_deals_by_stage(deals, stages, aliases)
    ordered = sorted(stages, key=lambda s: s.order)

    rows: list[FunnelStage] = []
    previous_count = 0
    for stage in ordered:
        bucket = buckets.get(stage.id)
        if bucket is None or bucket.count == 0:
            continue
        drop_off = 0
        if previous_count > 0:
            drop_off = _js_round((previous_count - bucket.count) / previous_count * 100)
        rows.append(
            FunnelStage(
                id=stage.id,
                label=stage.name,
                count=bucket.count,
                value=bucket.value,
                value_label=format_compact_currency(bucket.value),
                color=get_stage_color(stage.name),
                drop_off=drop_off,
            )
        )
        previous_count = bucket.count

    metric = (lambda r: r.count) if mode == "count" else (lambda r: r.value)
    peak = max((metric(r) for r in rows), default=0) or 1
    for row in rows:
        row.width_percent = max(min(metric(row) / peak * 100, 100.0), MIN_BAR_WIDTH_PERCENT)
    return rows


def build_bubble_chart(
    deals: Iterable[Mapping[str, Any]],
    stages: Sequence[PipelineStage] = DEFAULT_STAGES,
    aliases: Mapping[str, str] = STAGE_ALIASES,
) -> list[BubblePoint]:
    """One bubble per populated stage: x = stage order, y = probability, size = value."""
    buckets = group_deals_by_stage(deals, stages, aliases)
    points = []
    for stage in sorted(stages, key=lambda s: s.order):
        bucket = buckets.get(stage.id)
        if bucket is None:
            continue
        points.append(
            BubblePoint(
                stage=stage.name,
                stage_id=stage.id,
                order=stage.order,
                probability=stage.probability,
                count=bucket.count,
                value=bucket.value,
                color=get_stage_color(stage.name),
            )
        )
    return points
