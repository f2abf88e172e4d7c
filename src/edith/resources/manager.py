"""Resource manager.

Created: 2026-02-14

High-level operations for the Mission Control resource manager.

Wraps the storage-level components with the side effects every caller wants:
- Activity logging for all changes
- Change events for the dashboard (quota warnings, new bookings, ...)
- Aggregate metrics across resources, bookings, costs and quotas

Components (each usable on its own):
- ResourceCatalog  - resource declarations
- CredentialStore  - secret references
- BookingLedger    - time bookings with conflict detection
- CostLedger       - spend events
- QuotaTracker     - usage caps
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from edith import lifecycle
from edith.config import Settings, get_settings
from edith.events import EventBroadcaster, get_event_broadcaster
from edith.resources.activity import ActivityEntry, ActivityLog
from edith.resources.bookings import BookingLedger
from edith.resources.catalog import ResourceCatalog
from edith.resources.costs import CostLedger
from edith.resources.credentials import CredentialStore
from edith.resources.models import (
    Booking,
    BookingStatus,
    Cost,
    CostSummary,
    Quota,
    QuotaCheck,
    QuotaReservation,
    QuotaUsage,
    Resource,
    parse_iso,
)
from edith.resources.protocol import (
    BOOKINGS,
    COSTS,
    QUOTAS,
    RESOURCES,
    ResourceStoreProtocol,
)
from edith.resources.quotas import QuotaTracker
from edith.resources.store import FileResourceStore, get_resource_store

logger = logging.getLogger(__name__)


def _default_activity_log(store: ResourceStoreProtocol) -> ActivityLog:
    if isinstance(store, FileResourceStore):
        return ActivityLog(store.base_path / "logs" / "activity.log")
    return ActivityLog()


class ResourceManager:
    """High-level manager for resource operations.

    Each method runs one component operation, and only after it succeeds
    writes the activity line and publishes the change event. A failed
    operation leaves no log line and sends no event.
    """

    def __init__(
        self,
        store: ResourceStoreProtocol | None = None,
        broadcaster: EventBroadcaster | None = None,
        activity_log: ActivityLog | None = None,
        settings: Settings | None = None,
    ):
        """Initialize the manager.

        Args:
            store: Optional store instance. Uses singleton if not provided.
            broadcaster: Event registry. Uses singleton if not provided.
            activity_log: Activity log. Defaults to <data_dir>/logs/activity.log
                for file stores, memory-only otherwise.
            settings: Defaults for currency and warning threshold.
        """
        settings = settings or get_settings()
        self._store = store or get_resource_store()
        self._events = broadcaster or get_event_broadcaster()
        self._activity = activity_log or _default_activity_log(self._store)

        self.catalog = ResourceCatalog(self._store)
        self.credentials = CredentialStore(self._store)
        self.bookings = BookingLedger(self._store, self.catalog)
        self.costs = CostLedger(self._store, default_currency=settings.default_currency)
        self.quotas = QuotaTracker(
            self._store, default_warning_threshold=settings.default_warning_threshold
        )

    @property
    def events(self) -> EventBroadcaster:
        return self._events

    # =========================================================================
    # Credentials
    # =========================================================================

    async def list_credentials(self) -> list[dict[str, Any]]:
        return await self.credentials.list()

    async def get_credential(
        self, credential_id: str, include_value: bool = False
    ) -> dict[str, Any] | None:
        return await self.credentials.get(credential_id, include_value=include_value)

    async def store_credential(self, data: dict[str, Any]) -> dict[str, Any]:
        credential = await self.credentials.create(data)
        self._log(
            credential["owner"], "CREATED", f"Credential: {credential['name']} ({credential['id']})"
        )
        await self._events.publish("credential.created", credential)
        return credential

    async def delete_credential(self, credential_id: str) -> dict[str, Any]:
        result = await self.credentials.delete(credential_id)
        self._log("system", "DELETED", f"Credential: {credential_id}")
        await self._events.publish("credential.deleted", {"id": credential_id})
        return result

    # =========================================================================
    # Resources
    # =========================================================================

    async def list_resources(
        self,
        type: str | None = None,
        status: str | None = None,
        owner: str | None = None,
    ) -> list[Resource]:
        return await self.catalog.list(type=type, status=status, owner=owner)

    async def get_resource(self, resource_id: str) -> Resource | None:
        return await self.catalog.get(resource_id)

    async def create_resource(self, data: dict[str, Any]) -> Resource:
        resource = await self.catalog.create(data)
        self._log(
            resource.owner or resource.created_by,
            "CREATED",
            f"Resource: {resource.name} ({resource.id})",
        )
        await self._events.publish("resource.created", resource.to_dict())
        return resource

    async def update_resource(self, resource_id: str, patch: dict[str, Any]) -> Resource:
        resource = await self.catalog.update(resource_id, patch)
        self._log("system", "UPDATED", f"Resource: {resource.name} ({resource.id})")
        await self._events.publish("resource.updated", resource.to_dict())
        return resource

    async def delete_resource(self, resource_id: str) -> dict[str, Any]:
        result = await self.catalog.delete(resource_id)
        self._log("system", "DELETED", f"Resource: {resource_id}")
        await self._events.publish("resource.deleted", {"id": resource_id})
        return result

    # =========================================================================
    # Bookings
    # =========================================================================

    async def list_bookings(self, **filters: str | None) -> list[Booking]:
        return await self.bookings.list(**filters)

    async def book_resource(self, data: dict[str, Any]) -> Booking:
        booking = await self.bookings.book(data)
        self._log(
            booking.booked_by,
            "BOOKED",
            f"Resource: {booking.resource_name} from {booking.start_time} to {booking.end_time}",
        )
        await self._events.publish("booking.created", booking.to_dict())
        return booking

    async def cancel_booking(self, booking_id: str) -> Booking:
        booking = await self.bookings.cancel(booking_id)
        self._log("system", "CANCELLED", f"Booking: {booking.id}")
        await self._events.publish("booking.cancelled", booking.to_dict())
        return booking

    # =========================================================================
    # Costs
    # =========================================================================

    async def record_cost(self, data: dict[str, Any]) -> Cost:
        cost = await self.costs.record(data)
        description = f"{cost.type}: {cost.amount} {cost.currency}"
        if cost.description:
            description += f" - {cost.description}"
        self._log(cost.agent_id or "system", "COST_RECORDED", description)
        await self._events.publish("cost.recorded", cost.to_dict())
        return cost

    async def get_cost_summary(self, **filters: str | None) -> CostSummary:
        return await self.costs.summarize(**filters)

    # =========================================================================
    # Quotas
    # =========================================================================

    async def get_quotas(self, agent_id: str | None = None) -> list[Quota]:
        return await self.quotas.get(agent_id)

    async def set_quota(self, data: dict[str, Any]) -> Quota:
        quota = await self.quotas.set(data)
        self._log("system", "QUOTA_SET", f"{quota.type} quota for {quota.agent_id}: {quota.limit}")
        await self._events.publish("quota.updated", quota.to_dict())
        return quota

    async def update_quota_usage(self, quota_id: str, usage: float) -> QuotaUsage:
        result = await self.quotas.record_usage(quota_id, usage)
        await self._publish_quota_status(result)
        return result

    async def reset_quota(self, quota_id: str) -> Quota:
        quota = await self.quotas.reset(quota_id)
        self._log("system", "QUOTA_RESET", f"Reset quota: {quota.id}")
        await self._events.publish("quota.reset", quota.to_dict())
        return quota

    async def check_quota(self, agent_id: str, type: str, amount: float = 1) -> QuotaCheck:
        return await self.quotas.check(agent_id, type, amount)

    async def reserve_quota(
        self, agent_id: str, type: str, amount: float = 1
    ) -> QuotaReservation:
        reservation = await self.quotas.reserve(agent_id, type, amount)
        if reservation.usage is not None:
            await self._publish_quota_status(reservation.usage)
        return reservation

    async def _publish_quota_status(self, result: QuotaUsage) -> None:
        if result.quota.warning:
            await self._events.publish("quota.warning", result.to_dict())
        if result.quota.exceeded:
            await self._events.publish("quota.exceeded", result.to_dict())

    # =========================================================================
    # Metrics & Activity
    # =========================================================================

    async def get_metrics(self) -> dict[str, Any]:
        """Aggregate view for the dashboard's resources panel."""
        resources = [Resource.from_dict(d) for d in await self._store.read_all(RESOURCES)]
        bookings = [Booking.from_dict(d) for d in await self._store.read_all(BOOKINGS)]
        costs = [Cost.from_dict(d) for d in await self._store.read_all(COSTS)]
        quotas = [Quota.from_dict(d) for d in await self._store.read_all(QUOTAS)]

        now = datetime.now(UTC)
        start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        monthly_spend = sum(
            c.amount for c in costs if _after(c.timestamp, start_of_month, inclusive=True)
        )
        active_bookings = sum(
            1 for b in bookings if b.status == BookingStatus.ACTIVE and _after(b.end_time, now)
        )

        by_status: dict[str, int] = {}
        by_type: dict[str, int] = {}
        for r in resources:
            by_status[r.status.value] = by_status.get(r.status.value, 0) + 1
            by_type[r.type.value] = by_type.get(r.type.value, 0) + 1

        near_limit = [q for q in quotas if q.warning]

        return {
            "resources": {
                "total": len(resources),
                "by_status": by_status,
                "by_type": by_type,
            },
            "bookings": {
                "total": len(bookings),
                "active": active_bookings,
            },
            "costs": {
                "total_records": len(costs),
                "monthly_spend": round(monthly_spend, 2),
            },
            "quotas": {
                "total": len(quotas),
                "near_limit": len(near_limit),
                "warning_items": [
                    {
                        "id": q.id,
                        "type": q.type,
                        "agent_id": q.agent_id,
                        "percentage": q.percentage,
                    }
                    for q in near_limit
                ],
            },
        }

    def get_activity(self, limit: int = 50) -> list[ActivityEntry]:
        """Recent activity lines, newest last."""
        return self._activity.tail(limit)

    def _log(self, actor: str | None, action: str, description: str) -> None:
        self._activity.log(actor or "system", action, description)


def _after(timestamp: str, bound: datetime, inclusive: bool = False) -> bool:
    """Is timestamp later than bound? Unreadable timestamps are not."""
    try:
        value = parse_iso(timestamp)
    except ValueError:
        return False
    return value >= bound if inclusive else value > bound


# =========================================================================
# Factory Function
# =========================================================================

_manager_instance: ResourceManager | None = None


def get_resource_manager(base_path: Path | None = None) -> ResourceManager:
    """Get or create the resource manager singleton."""
    global _manager_instance
    if _manager_instance is None:
        store = get_resource_store(base_path) if base_path else None
        _manager_instance = ResourceManager(store)
        lifecycle.register("resource_manager", reset=reset_resource_manager)
    return _manager_instance


def reset_resource_manager() -> None:
    """Reset the manager singleton (for testing)."""
    global _manager_instance
    _manager_instance = None
