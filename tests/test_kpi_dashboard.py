"""Deterministic tests for KPI dashboard progress and activity logging."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from src.crm.kpi.dashboard import (
    ActivityType,
    KPIActivityCreate,
    KPIStatus,
    activity_document,
    build_kpi_dashboard,
    current_period,
    kpi_status,
    log_kpi_activity,
    percentage_complete,
)

PERIOD = "2024-06-15"

ASSIGNMENTS = [
    {"id": "a1", "kpiId": "calls", "target": 10},
    {"id": "a2", "kpiId": "emails", "target": 5},
    {"id": "a3", "kpiId": "meetings", "target": 2},
]

TRACKING = [
    {"kpiAssignmentId": "a1", "period": PERIOD, "currentValue": 8},
    {"kpiAssignmentId": "a2", "period": PERIOD, "currentValue": 6},
    {"kpiAssignmentId": "a3", "period": "2024-06-14", "currentValue": 2},
]


class TestKPIDashboard:
    def test_progress_per_assignment(self) -> None:
        dashboard = build_kpi_dashboard("u1", ASSIGNMENTS, TRACKING, period=PERIOD)

        by_kpi = {k.kpi_id: k for k in dashboard.kpis}
        assert by_kpi["calls"].percentage_complete == pytest.approx(80)
        assert by_kpi["calls"].status == KPIStatus.ON_TRACK
        assert by_kpi["calls"].remaining_to_target == 2
        assert by_kpi["emails"].status == KPIStatus.COMPLETED
        assert by_kpi["emails"].remaining_to_target == 0
        # Tracking from another period does not count
        assert by_kpi["meetings"].current_value == 0
        assert by_kpi["meetings"].status == KPIStatus.BEHIND

    def test_summary(self) -> None:
        summary = build_kpi_dashboard("u1", ASSIGNMENTS, TRACKING, period=PERIOD).summary
        assert summary.total_kpis == 3
        assert (summary.completed, summary.on_track, summary.behind) == (1, 1, 1)
        assert summary.overall_progress == pytest.approx((80 + 120 + 0) / 3)

    def test_open_suggestions_attached(self) -> None:
        suggestions = [
            {"id": "s1", "kpiId": "calls", "title": "Call back Acme"},
            {"id": "s2", "kpiId": "calls", "isCompleted": True},
            {"id": "s3", "kpiId": "emails"},
        ]
        dashboard = build_kpi_dashboard("u1", ASSIGNMENTS, TRACKING, suggestions, period=PERIOD)
        calls = next(k for k in dashboard.kpis if k.kpi_id == "calls")
        assert [s["id"] for s in calls.suggested_tasks] == ["s1"]

    def test_kpi_names(self) -> None:
        dashboard = build_kpi_dashboard(
            "u1", ASSIGNMENTS[:1], [], period=PERIOD, kpi_names={"calls": "Daily calls"}
        )
        assert dashboard.kpis[0].kpi_name == "Daily calls"

    def test_no_assignments(self) -> None:
        assert build_kpi_dashboard("u1", [], TRACKING) is None

    def test_zero_target(self) -> None:
        assert percentage_complete(5, 0) == 0.0

    @pytest.mark.parametrize("pct,expected", [(100, "completed"), (80, "on_track"), (79.9, "behind")])
    def test_status_thresholds(self, pct, expected) -> None:
        assert kpi_status(pct).value == expected


class TestActivityLogging:
    def test_log_adds_value(self) -> None:
        update = log_kpi_activity({"currentValue": 3, "targetValue": 10}, 2)
        assert update == {"currentValue": 5, "percentageComplete": 50.0}

    def test_activity_document(self) -> None:
        activity = KPIActivityCreate(kpi_id="calls", activity_type=ActivityType.EMAIL, description="Intro")
        doc = activity_document(activity, "u1", datetime(2024, 6, 15, 9, tzinfo=timezone.utc))
        assert doc["activityType"] == "email"
        assert doc["salespersonId"] == "u1"
        assert doc["activityDate"] == PERIOD
        assert doc["value"] == 1

    def test_current_period(self) -> None:
        assert current_period(date(2024, 6, 15)) == PERIOD
        assert current_period(datetime(2024, 6, 15, 23, tzinfo=timezone.utc)) == PERIOD
