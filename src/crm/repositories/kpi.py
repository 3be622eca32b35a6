"""KPI collections: assignments, tracking rows, logged activities, task suggestions."""

from __future__ import annotations

from typing import Any

import structlog

from src.crm.kpi.dashboard import (
    KPIActivityCreate,
    activity_document,
    current_period,
    log_kpi_activity,
)
from src.crm.repositories.base import FirestoreRepository

logger = structlog.get_logger(__name__)


class KPIAssignmentRepository(FirestoreRepository):
    collection_name = "kpi_assignments"

    async def list_active(self, tenant_id: str, salesperson_id: str) -> list[dict[str, Any]]:
        return await self.list(
            tenant_id,
            [("salespersonId", "==", salesperson_id), ("isActive", "==", True)],
        )


class KPITrackingRepository(FirestoreRepository):
    collection_name = "kpi_tracking"

    async def list_for_salesperson(self, tenant_id: str, salesperson_id: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, [("salespersonId", "==", salesperson_id)])


class KPISuggestionRepository(FirestoreRepository):
    collection_name = "kpi_task_suggestions"

    async def list_for_salesperson(self, tenant_id: str, salesperson_id: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, [("salespersonId", "==", salesperson_id)])

    async def accept(self, tenant_id: str, suggestion_id: str) -> None:
        await self.update(tenant_id, suggestion_id, {"isAccepted": True})

    async def complete(self, tenant_id: str, suggestion_id: str) -> None:
        await self.update(tenant_id, suggestion_id, {"isCompleted": True})


class KPIActivityRepository(FirestoreRepository):
    collection_name = "kpi_activities"

    async def log(
        self,
        tenant_id: str,
        salesperson_id: str,
        activity: KPIActivityCreate,
        tracking: KPITrackingRepository,
    ) -> str:
        """Record an activity and bump the matching tracking row of the current period.

        Returns the new activity id. A KPI with no tracking row for the
        period is logged without a tracking update.
        """
        activity_id = await self.create(
            tenant_id, activity_document(activity, salesperson_id)
        )
        period = current_period()
        rows = await tracking.list(
            tenant_id,
            [
                ("salespersonId", "==", salesperson_id),
                ("kpiId", "==", activity.kpi_id),
                ("period", "==", period),
            ],
            limit=1,
        )
        if rows:
            row = rows[0]
            await tracking.update(tenant_id, row["id"], log_kpi_activity(row, activity.value))
        else:
            logger.info(
                "kpi_tracking_row_missing",
                tenant_id=tenant_id,
                salesperson_id=salesperson_id,
                kpi_id=activity.kpi_id,
                period=period,
            )
        return activity_id
