"""Deal health ("AI Health") heuristic: probability and green/yellow/red.

Deterministic rubric, no model calls. The score blends the stage-defined
probability with the deal's own stored probability, then applies an
activity bonus derived from how recently the deal was touched:

    days since update  <= 3   +15
                       <= 7   +10
                       <= 14  +5
                       > 30   -10
    activityCount7d    >= 5   +5   (when present on the record)
    emailCount7d       >= 3   +5   (when present on the record)

The bonus shifts the probability (clamped 0-100) and stretches or shrinks
the recency thresholds used for the health band by ``bonus / 5`` days.

Exports:
    DealHealthConfig: Tunable rubric constants.
    DealHealthScore: Result model.
    DealHealthScorer: Applies the rubric to one deal.
    get_deal_probability / get_deal_health: Convenience wrappers.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from src.crm.core.dates import safe_datetime, utcnow

HealthBand = Literal["green", "yellow", "red"]

# Fields consulted for "last touched", most specific first
RECENCY_FIELDS = ("lastActivityAt", "updatedAt", "lastUpdated", "createdAt")


class DealHealthConfig(BaseModel):
    """Rubric constants. Defaults reproduce the production heuristic."""

    # (max_days, bonus) checked in order; first tier that fits wins
    activity_tiers: list[tuple[int, int]] = Field(
        default_factory=lambda: [(3, 15), (7, 10), (14, 5)]
    )
    stale_after_days: int = 30
    stale_penalty: int = -10

    activity_signal_threshold: int = 5
    activity_signal_bonus: int = 5
    email_signal_threshold: int = 3
    email_signal_bonus: int = 5

    green_days: int = 7
    yellow_days: int = 14
    green_min_probability: int = 50
    bonus_upgrade_threshold: int = 10

    # Bonus points per day of threshold shift
    bonus_per_shift_day: int = 5
    min_threshold_days: int = 1


class DealHealthScore(BaseModel):
    """Outcome of scoring a single deal."""

    probability: int
    health: HealthBand
    base_probability: float
    activity_bonus: int
    days_since_update: int | None = None
    green_days: int
    yellow_days: int


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().rstrip("%"))
        except ValueError:
            return None
    return None


class DealHealthScorer:
    """Score deal momentum from stage probability and recency signals.

    Args:
        config: Rubric constants; defaults to DealHealthConfig().
    """

    def __init__(self, config: DealHealthConfig | None = None) -> None:
        self._config = config or DealHealthConfig()

    @property
    def config(self) -> DealHealthConfig:
        return self._config

    # ── Inputs ───────────────────────────────────────────────────────────

    @staticmethod
    def base_probability(deal: Mapping[str, Any], stage_probability: float | None) -> float:
        """Average of stage and deal probability when both exist, else whichever does."""
        deal_probability = _number(deal.get("probability"))
        known = [p for p in (stage_probability, deal_probability) if p is not None]
        if not known:
            return 0.0
        return sum(known) / len(known)

    @staticmethod
    def days_since_update(deal: Mapping[str, Any], now: datetime) -> int | None:
        """Whole days since the most recent of the recency fields, or None."""
        stamps = [safe_datetime(deal.get(field)) for field in RECENCY_FIELDS]
        stamps = [s for s in stamps if s is not None]
        if not stamps:
            return None
        delta = now - max(stamps)
        return max(0, delta.days)

    # ── Rubric ───────────────────────────────────────────────────────────

    def activity_bonus(self, deal: Mapping[str, Any], days: int | None) -> int:
        cfg = self._config
        bonus = 0
        if days is not None:
            for max_days, tier_bonus in cfg.activity_tiers:
                if days <= max_days:
                    bonus += tier_bonus
                    break
            else:
                if days > cfg.stale_after_days:
                    bonus += cfg.stale_penalty

        activity_count = _number(deal.get("activityCount7d"))
        if activity_count is not None and activity_count >= cfg.activity_signal_threshold:
            bonus += cfg.activity_signal_bonus
        email_count = _number(deal.get("emailCount7d"))
        if email_count is not None and email_count >= cfg.email_signal_threshold:
            bonus += cfg.email_signal_bonus
        return bonus

    def _shifted(self, threshold: int, bonus: int) -> int:
        cfg = self._config
        # Truncate toward zero so -3 does not shrink a threshold
        shift = int(bonus / cfg.bonus_per_shift_day) if cfg.bonus_per_shift_day else 0
        return max(cfg.min_threshold_days, threshold + shift)

    def classify(self, probability: int, days: int | None, bonus: int) -> tuple[HealthBand, int, int]:
        """Health band plus the bonus-adjusted green/yellow day thresholds."""
        cfg = self._config
        green_days = self._shifted(cfg.green_days, bonus)
        yellow_days = max(green_days, self._shifted(cfg.yellow_days, bonus))
        strong = probability >= cfg.green_min_probability

        if days is None:
            # No timestamps at all: judge by probability alone, never green
            return ("yellow" if strong else "red"), green_days, yellow_days
        if days <= green_days and strong:
            return "green", green_days, yellow_days
        if days <= yellow_days:
            if bonus >= cfg.bonus_upgrade_threshold and strong:
                return "green", green_days, yellow_days
            return "yellow", green_days, yellow_days
        return "red", green_days, yellow_days

    def score(
        self,
        deal: Mapping[str, Any] | None,
        stage_probability: float | None = None,
        now: datetime | None = None,
    ) -> DealHealthScore:
        """Score one deal.

        Args:
            deal: Deal document.
            stage_probability: Probability of the deal's pipeline stage, if known.
            now: Reference time; defaults to the current UTC time.
        """
        deal = deal if isinstance(deal, Mapping) else {}
        now = safe_datetime(now) or utcnow()

        base = self.base_probability(deal, stage_probability)
        days = self.days_since_update(deal, now)
        bonus = self.activity_bonus(deal, days)
        probability = int(round(min(100.0, max(0.0, base + bonus))))
        health, green_days, yellow_days = self.classify(probability, days, bonus)

        return DealHealthScore(
            probability=probability,
            health=health,
            base_probability=base,
            activity_bonus=bonus,
            days_since_update=days,
            green_days=green_days,
            yellow_days=yellow_days,
        )


def get_deal_probability(
    deal: Mapping[str, Any] | None,
    stage_probability: float | None = None,
    now: datetime | None = None,
    config: DealHealthConfig | None = None,
) -> int:
    """Bonus-adjusted probability, 0-100."""
    return DealHealthScorer(config).score(deal, stage_probability, now).probability


def get_deal_health(
    deal: Mapping[str, Any] | None,
    stage_probability: float | None = None,
    now: datetime | None = None,
    config: DealHealthConfig | None = None,
) -> HealthBand:
    """Green/yellow/red band for a deal."""
    return DealHealthScorer(config).score(deal, stage_probability, now).health
