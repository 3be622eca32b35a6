"""Pipeline stage catalogue, colors, and stage-name canonicalization.

Deals written over the years carry stage names from several taxonomies
("qualified", "closed_won", "Proposal Review", "proposalDrafted"...).
canonicalize_stage() maps any of them onto the tenant's ordered stage list:

    1. exact stage id
    2. exact stage name
    3. case-insensitive stage name
    4. alias table (lowercase, ``_``/``-`` treated as spaces)

Deals that still do not resolve are bucketed by probability band
(stage_for_probability) when charted.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel

DEFAULT_STAGE_COLOR = "#7f8c8d"

# Stage name -> hex, keyed by the canonical display names
STAGE_COLORS: dict[str, str] = {
    "Discovery": "#BBDEFB",
    "Qualification": "#64B5F6",
    "Scoping": "#1E88E5",
    "Proposal Drafted": "#FFE082",
    "Proposal Review": "#FFA726",
    "Negotiation": "#F4511E",
    "Verbal Agreement": "#9CCC65",
    "Closed – Won": "#2E7D32",
    "Closed – Lost": "#E53935",
    "Onboarding": "#BA68C8",
    "Live Account": "#4527A0",
    "Dormant": "#000000",
}

CLOSED_STAGE_NAMES = frozenset({"Closed – Won", "Closed – Lost", "Dormant"})
WON_STAGE_NAMES = frozenset({"Closed – Won", "Live Account"})


class PipelineStage(BaseModel):
    """One column of the pipeline."""

    id: str
    name: str
    probability: float = 0
    order: int = 0

    @property
    def color(self) -> str:
        return get_stage_color(self.name)


DEFAULT_STAGES: tuple[PipelineStage, ...] = (
    PipelineStage(id="discovery", name="Discovery", probability=10, order=0),
    PipelineStage(id="qualification", name="Qualification", probability=20, order=1),
    PipelineStage(id="scoping", name="Scoping", probability=30, order=2),
    PipelineStage(id="proposalDrafted", name="Proposal Drafted", probability=40, order=3),
    PipelineStage(id="proposalReview", name="Proposal Review", probability=50, order=4),
    PipelineStage(id="negotiation", name="Negotiation", probability=70, order=5),
    PipelineStage(id="verbalAgreement", name="Verbal Agreement", probability=90, order=6),
    PipelineStage(id="closedWon", name="Closed – Won", probability=100, order=7),
    PipelineStage(id="closedLost", name="Closed – Lost", probability=0, order=8),
    PipelineStage(id="onboarding", name="Onboarding", probability=100, order=9),
    PipelineStage(id="liveAccount", name="Live Account", probability=100, order=10),
    PipelineStage(id="dormant", name="Dormant", probability=0, order=11),
)

# Stage used for deals that carry no stage at all
DEFAULT_STAGE_NAME = "Qualification"

# Historical stage variants -> canonical stage name. Keys are normalized
# with _alias_key(). "won"/"closed won" land on Onboarding and "lost" on
# Dormant: the charts were built against the account-lifecycle taxonomy.
STAGE_ALIASES: dict[str, str] = {
    "lead": "Discovery",
    "new": "Discovery",
    "prospect": "Discovery",
    "prospecting": "Discovery",
    "discovery call": "Discovery",
    "qualified": "Qualification",
    "qualifying": "Qualification",
    "opportunity": "Qualification",
    "scope": "Scoping",
    "scoping call": "Scoping",
    "needs analysis": "Scoping",
    "proposal": "Proposal Drafted",
    "proposal drafted": "Proposal Drafted",
    "proposaldrafted": "Proposal Drafted",
    "proposal sent": "Proposal Review",
    "proposal review": "Proposal Review",
    "proposalreview": "Proposal Review",
    "review": "Proposal Review",
    "negotiating": "Negotiation",
    "contract": "Negotiation",
    "verbal": "Verbal Agreement",
    "verbal agreement": "Verbal Agreement",
    "verbalagreement": "Verbal Agreement",
    "verbal commit": "Verbal Agreement",
    "won": "Onboarding",
    "closed won": "Onboarding",
    "closedwon": "Onboarding",
    "onboard": "Onboarding",
    "live": "Live Account",
    "live account": "Live Account",
    "liveaccount": "Live Account",
    "active": "Live Account",
    "active account": "Live Account",
    "lost": "Dormant",
    "closed lost": "Dormant",
    "closedlost": "Dormant",
    "inactive": "Dormant",
}

# (min probability, stage name) checked top-down for unmapped deals
PROBABILITY_BANDS: tuple[tuple[float, str], ...] = (
    (90, "Verbal Agreement"),
    (70, "Negotiation"),
    (50, "Proposal Review"),
    (25, "Qualification"),
    (0, "Discovery"),
)

_SEPARATORS = re.compile(r"[\s_\-–]+")


def _alias_key(value: str) -> str:
    return _SEPARATORS.sub(" ", value.strip().lower()).strip()


def get_stage_color(stage: str | None) -> str:
    """Hex color for a stage name (case-insensitive), or the default grey."""
    if not stage:
        return DEFAULT_STAGE_COLOR
    name = stage.strip()
    if name in STAGE_COLORS:
        return STAGE_COLORS[name]
    lowered = name.lower()
    for key, color in STAGE_COLORS.items():
        if key.lower() == lowered:
            return color
    return DEFAULT_STAGE_COLOR


def is_active_stage(stage: str | None) -> bool:
    return bool(stage) and stage not in CLOSED_STAGE_NAMES


def is_won_stage(stage: str | None) -> bool:
    return stage in WON_STAGE_NAMES


def stages_from_documents(documents: Iterable[Mapping[str, Any]]) -> list[PipelineStage]:
    """Build ordered stages from ``crm_pipeline_stages`` documents.

    Documents without an id or name are skipped. Falls back to DEFAULT_STAGES
    when nothing usable is stored.
    """
    stages = []
    for index, doc in enumerate(documents):
        stage_id = doc.get("id")
        name = doc.get("name") or doc.get("label")
        if not stage_id or not name:
            continue
        probability = doc.get("probability")
        order = doc.get("order")
        stages.append(
            PipelineStage(
                id=str(stage_id),
                name=str(name),
                probability=probability if isinstance(probability, (int, float)) else 0,
                order=order if isinstance(order, int) else index,
            )
        )
    if not stages:
        return list(DEFAULT_STAGES)
    return sorted(stages, key=lambda s: s.order)


def find_stage_by_name(name: str, stages: Sequence[PipelineStage]) -> PipelineStage | None:
    lowered = name.lower()
    for stage in stages:
        if stage.name.lower() == lowered:
            return stage
    return None


def canonicalize_stage(
    stage: Any,
    stages: Sequence[PipelineStage] = DEFAULT_STAGES,
    aliases: Mapping[str, str] = STAGE_ALIASES,
) -> PipelineStage | None:
    """Resolve a stored stage value onto one of ``stages``; None if it does not map."""
    if not isinstance(stage, str) or not stage.strip():
        return None
    value = stage.strip()

    for candidate in stages:
        if candidate.id == value:
            return candidate
    for candidate in stages:
        if candidate.name == value:
            return candidate
    by_name = find_stage_by_name(value, stages)
    if by_name is not None:
        return by_name

    target = aliases.get(_alias_key(value))
    if target is not None:
        return find_stage_by_name(target, stages)
    return None


def stage_for_probability(
    probability: Any,
    stages: Sequence[PipelineStage] = DEFAULT_STAGES,
    bands: Sequence[tuple[float, str]] = PROBABILITY_BANDS,
) -> PipelineStage | None:
    """Bucket an unmapped deal by its probability."""
    if isinstance(probability, bool) or not isinstance(probability, (int, float)):
        probability = 0
    for minimum, name in bands:
        if probability >= minimum:
            return find_stage_by_name(name, stages)
    return None


def resolve_deal_stage(
    deal: Mapping[str, Any],
    stages: Sequence[PipelineStage] = DEFAULT_STAGES,
    aliases: Mapping[str, str] = STAGE_ALIASES,
) -> PipelineStage | None:
    """Stage a deal is charted under: its canonical stage, else its probability band."""
    raw = deal.get("stage")
    if not raw:
        return find_stage_by_name(DEFAULT_STAGE_NAME, stages) or (stages[0] if stages else None)
    resolved = canonicalize_stage(raw, stages, aliases)
    if resolved is not None:
        return resolved
    return stage_for_probability(deal.get("probability"), stages)
