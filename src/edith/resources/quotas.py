"""Quota tracker: usage caps with warning thresholds.

Quotas are opt-in. An (agent, type) pair with no matching quota is
unlimited. ``check`` never changes usage; callers record consumption
afterwards with ``record_usage``, or use ``reserve`` to do both under
the quota's lock.
"""

import logging
from typing import Any

from edith.resources.errors import NotFoundError, ValidationError
from edith.resources.locks import KeyedLocks
from edith.resources.models import (
    GLOBAL_AGENT,
    Quota,
    QuotaCheck,
    QuotaPeriod,
    QuotaReservation,
    QuotaUsage,
    now_iso,
    to_float,
)
from edith.resources.protocol import QUOTAS, ResourceStoreProtocol

logger = logging.getLogger(__name__)


class QuotaTracker:
    """Set, update, reset and check usage quotas."""

    def __init__(self, store: ResourceStoreProtocol, default_warning_threshold: float = 0.8):
        self._store = store
        self._default_warning_threshold = default_warning_threshold
        self._locks = KeyedLocks()

    async def get(self, agent_id: str | None = None) -> list[Quota]:
        """All quotas, or those that apply to an agent (its own plus global)."""
        quotas = [Quota.from_dict(d) for d in await self._store.read_all(QUOTAS)]
        if agent_id:
            quotas = [q for q in quotas if q.agent_id in (agent_id, GLOBAL_AGENT)]
        quotas.sort(key=lambda q: q.created_at)
        return quotas

    async def get_quota(self, quota_id: str) -> Quota | None:
        """Get a quota by ID."""
        data = await self._store.read(QUOTAS, quota_id)
        return Quota.from_dict(data) if data is not None else None

    async def set(self, data: dict[str, Any]) -> Quota:
        """Create a quota, or replace one when data carries an existing id."""
        if not data.get("type"):
            raise ValidationError("Quota type is required", field="type")

        limit = to_float(data.get("limit"))
        if limit <= 0:
            raise ValidationError(
                f"Quota limit must be a positive number, got {data.get('limit')!r}",
                field="limit",
            )

        try:
            period = QuotaPeriod(data.get("period") or "monthly")
        except ValueError:
            raise ValidationError(
                f"Invalid period: {data.get('period')!r} (expected daily, weekly or monthly)",
                field="period",
            ) from None

        threshold = to_float(data.get("warning_threshold"), self._default_warning_threshold)
        if not 0 < threshold <= 1:
            raise ValidationError(
                f"warning_threshold must be in (0, 1], got {threshold}",
                field="warning_threshold",
            )

        now = now_iso()
        quota = Quota(
            agent_id=data.get("agent_id") or GLOBAL_AGENT,
            type=data["type"],
            limit=limit,
            period=period,
            current_usage=to_float(data.get("current_usage")),
            warning_threshold=threshold,
            last_reset=now,
            created_at=now,
            updated_at=now,
        )
        if data.get("id"):
            quota.id = data["id"]

        await self._store.write(QUOTAS, quota.id, quota.to_dict())
        logger.info(f"Set {quota.type} quota for {quota.agent_id}: {quota.limit}")
        return quota

    async def record_usage(self, quota_id: str, delta: float) -> QuotaUsage:
        """Add delta to a quota's usage and report its status."""
        async with self._locks.hold(quota_id):
            quota = await self.get_quota(quota_id)
            if quota is None:
                raise NotFoundError("quota", quota_id)
            return await self._add_usage(quota, delta)

    async def reset(self, quota_id: str) -> Quota:
        """Zero a quota's usage."""
        async with self._locks.hold(quota_id):
            quota = await self.get_quota(quota_id)
            if quota is None:
                raise NotFoundError("quota", quota_id)

            quota.current_usage = 0.0
            quota.last_reset = quota.updated_at = now_iso()
            await self._store.write(QUOTAS, quota.id, quota.to_dict())

        logger.info(f"Reset quota {quota_id}")
        return quota

    async def check(self, agent_id: str, type: str, amount: float = 1) -> QuotaCheck:
        """Would consuming amount stay within the applicable quota?"""
        quota = await self._find(agent_id, type)
        if quota is None:
            return QuotaCheck.unlimited()
        return QuotaCheck.for_quota(quota, amount)

    async def reserve(self, agent_id: str, type: str, amount: float = 1) -> QuotaReservation:
        """Check and, if allowed, record usage in one step.

        Denied reservations leave usage untouched. With no applicable
        quota the reservation is allowed and nothing is recorded.
        """
        quota = await self._find(agent_id, type)
        if quota is None:
            return QuotaReservation(check=QuotaCheck.unlimited())

        async with self._locks.hold(quota.id):
            quota = await self.get_quota(quota.id)
            if quota is None:
                raise NotFoundError("quota", f"{agent_id}/{type}")

            check = QuotaCheck.for_quota(quota, amount)
            if not check.allowed:
                logger.info(f"Denied {amount} {type} for {agent_id}: {check.reason}")
                return QuotaReservation(check=check)

            usage = await self._add_usage(quota, amount)
        return QuotaReservation(check=check, usage=usage)

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    async def _find(self, agent_id: str, type: str) -> Quota | None:
        """Agent-specific quota first, then the global one."""
        quotas = await self.get(agent_id)
        for quota in quotas:
            if quota.agent_id == agent_id and quota.type == type:
                return quota
        for quota in quotas:
            if quota.agent_id == GLOBAL_AGENT and quota.type == type:
                return quota
        return None

    async def _add_usage(self, quota: Quota, delta: float) -> QuotaUsage:
        quota.current_usage += float(delta)
        quota.updated_at = now_iso()
        await self._store.write(QUOTAS, quota.id, quota.to_dict())

        if quota.exceeded:
            logger.warning(f"Quota {quota.id} exceeded: {quota.current_usage}/{quota.limit}")
        elif quota.warning:
            logger.warning(f"Quota {quota.id} at {quota.percentage}% of {quota.limit}")
        return QuotaUsage(quota=quota)
