"""Salesperson KPI dashboard: progress against targets for the current period.

Periods are daily, keyed by ISO date (``2026-10-19``). For each active
assignment the tracking row of the period supplies the current value:

    percentage = current / target * 100      (0 when target <= 0)
    status     = completed >= 100, on_track >= 80, else behind
    remaining  = max(0, target - current)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.crm.core.dates import utcnow

COMPLETED_PERCENT = 100.0
ON_TRACK_PERCENT = 80.0


class KPIStatus(str, Enum):
    COMPLETED = "completed"
    ON_TRACK = "on_track"
    BEHIND = "behind"


class ActivityType(str, Enum):
    CALL = "call"
    EMAIL = "email"
    MEETING = "meeting"
    PROPOSAL = "proposal"
    FOLLOW_UP = "follow_up"
    RESEARCH = "research"
    OTHER = "other"


class KPIProgress(BaseModel):
    assignment_id: str
    kpi_id: str
    kpi_name: str
    current_value: float = 0.0
    target_value: float = 0.0
    percentage_complete: float = 0.0
    status: KPIStatus = KPIStatus.BEHIND
    remaining_to_target: float = 0.0
    suggested_tasks: list[dict[str, Any]] = Field(default_factory=list)


class KPISummary(BaseModel):
    total_kpis: int = 0
    on_track: int = 0
    behind: int = 0
    completed: int = 0
    overall_progress: float = 0.0


class KPIDashboard(BaseModel):
    salesperson_id: str
    period: str
    kpis: list[KPIProgress] = Field(default_factory=list)
    summary: KPISummary = Field(default_factory=KPISummary)


class KPIActivityCreate(BaseModel):
    """A unit of work logged against a KPI."""

    kpi_id: str
    activity_type: ActivityType = ActivityType.CALL
    description: str = ""
    value: float = 1
    duration: float = 0
    outcome: str = "positive"
    notes: str = ""
    related_to: dict[str, Any] | None = None


def current_period(now: datetime | date | None = None) -> str:
    """Daily period key for ``now`` (defaults to today, UTC)."""
    now = now or utcnow()
    return now.date().isoformat() if isinstance(now, datetime) else now.isoformat()


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def kpi_status(percentage: float) -> KPIStatus:
    if percentage >= COMPLETED_PERCENT:
        return KPIStatus.COMPLETED
    if percentage >= ON_TRACK_PERCENT:
        return KPIStatus.ON_TRACK
    return KPIStatus.BEHIND


def percentage_complete(current: float, target: float) -> float:
    return current / target * 100 if target > 0 else 0.0


def build_kpi_dashboard(
    salesperson_id: str,
    assignments: Iterable[Mapping[str, Any]],
    tracking: Iterable[Mapping[str, Any]],
    suggestions: Iterable[Mapping[str, Any]] = (),
    period: str | None = None,
    kpi_names: Mapping[str, str] | None = None,
) -> KPIDashboard | None:
    """Progress of every assignment for ``period``; None when there are no assignments.

    Args:
        salesperson_id: Owner of the assignments.
        assignments: ``kpi_assignments`` documents (``kpiId``, ``target``).
        tracking: ``kpi_tracking`` documents (``kpiAssignmentId``, ``period``, ``currentValue``).
        suggestions: ``kpi_task_suggestions`` documents; completed ones are skipped.
        period: Period key; defaults to today.
        kpi_names: Optional kpiId -> display name map.
    """
    assignments = [a for a in assignments if isinstance(a, Mapping)]
    if not assignments:
        return None
    period = period or current_period()
    names = kpi_names or {}

    current_by_assignment: dict[str, float] = {}
    for row in tracking:
        if row.get("period") == period and row.get("kpiAssignmentId"):
            current_by_assignment[row["kpiAssignmentId"]] = _number(row.get("currentValue"))

    open_suggestions = [dict(s) for s in suggestions if not s.get("isCompleted")]

    kpis = []
    for assignment in assignments:
        kpi_id = str(assignment.get("kpiId", ""))
        current = current_by_assignment.get(assignment.get("id"), 0.0)
        target = _number(assignment.get("target"))
        percentage = percentage_complete(current, target)
        kpis.append(
            KPIProgress(
                assignment_id=str(assignment.get("id", "")),
                kpi_id=kpi_id,
                kpi_name=names.get(kpi_id, kpi_id),
                current_value=current,
                target_value=target,
                percentage_complete=percentage,
                status=kpi_status(percentage),
                remaining_to_target=max(0.0, target - current),
                suggested_tasks=[s for s in open_suggestions if s.get("kpiId") == kpi_id],
            )
        )

    summary = KPISummary(
        total_kpis=len(kpis),
        on_track=sum(1 for k in kpis if k.status == KPIStatus.ON_TRACK),
        behind=sum(1 for k in kpis if k.status == KPIStatus.BEHIND),
        completed=sum(1 for k in kpis if k.status == KPIStatus.COMPLETED),
        overall_progress=sum(k.percentage_complete for k in kpis) / len(kpis),
    )
    return KPIDashboard(salesperson_id=salesperson_id, period=period, kpis=kpis, summary=summary)


def log_kpi_activity(tracking: Mapping[str, Any], value: float) -> dict[str, Any]:
    """Fields to write back to a tracking row after logging ``value`` units of work."""
    new_value = _number(tracking.get("currentValue")) + value
    target = _number(tracking.get("targetValue"))
    return {
        "currentValue": new_value,
        "percentageComplete": percentage_complete(new_value, target),
    }


def activity_document(
    activity: KPIActivityCreate, salesperson_id: str, now: datetime | None = None
) -> dict[str, Any]:
    """``kpi_activities`` document for a logged activity."""
    return {
        "kpiId": activity.kpi_id,
        "activityType": activity.activity_type.value,
        "description": activity.description,
        "value": activity.value,
        "duration": activity.duration,
        "outcome": activity.outcome,
        "notes": activity.notes,
        "relatedTo": activity.related_to,
        "salespersonId": salesperson_id,
        "activityDate": current_period(now),
    }
