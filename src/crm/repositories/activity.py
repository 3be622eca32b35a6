"""Tasks and activities: the Firestore sources of the calendar."""

from __future__ import annotations

from typing import Any

from src.crm.core.firestore import SnapshotCallback, Subscription
from src.crm.repositories.base import FirestoreRepository

APPOINTMENT_CLASSIFICATION = "appointment"
CALENDAR_EVENT_ACTIVITY = "calendar_event"


class TaskRepository(FirestoreRepository):
    collection_name = "tasks"

    @staticmethod
    def appointment_filters(user_id: str) -> list[tuple[str, str, Any]]:
        return [
            ("classification", "==", APPOINTMENT_CLASSIFICATION),
            ("assignedTo", "==", user_id),
        ]

    async def list_appointments(self, tenant_id: str, user_id: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, self.appointment_filters(user_id))

    def subscribe_appointments(
        self, tenant_id: str, user_id: str, callback: SnapshotCallback
    ) -> Subscription:
        return self.subscribe(
            tenant_id,
            self.appointment_filters(user_id),
            callback,
            name=f"{tenant_id}/appointments/{user_id}",
        )


class ActivityRepository(FirestoreRepository):
    collection_name = "activities"

    @staticmethod
    def calendar_event_filters(user_id: str) -> list[tuple[str, str, Any]]:
        return [
            ("type", "==", CALENDAR_EVENT_ACTIVITY),
            ("createdBy", "==", user_id),
        ]

    async def list_calendar_events(self, tenant_id: str, user_id: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, self.calendar_event_filters(user_id))

    def subscribe_calendar_events(
        self, tenant_id: str, user_id: str, callback: SnapshotCallback
    ) -> Subscription:
        return self.subscribe(
            tenant_id,
            self.calendar_event_filters(user_id),
            callback,
            name=f"{tenant_id}/synced_events/{user_id}",
        )
