"""Cost ledger: append-only spend events, aggregated on query."""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any

from edith.resources.errors import ValidationError
from edith.resources.models import Cost, CostSummary, now_iso, parse_iso
from edith.resources.protocol import COSTS, ResourceStoreProtocol

logger = logging.getLogger(__name__)


def _parse_bound(value: str, field: str) -> datetime:
    try:
        return parse_iso(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}", field=field) from None


class CostLedger:
    """Record spend and summarise it by agent, type and resource.

    There is no update or delete: a cost, once recorded, is immutable.
    """

    def __init__(self, store: ResourceStoreProtocol, default_currency: str = "USD"):
        self._store = store
        self._default_currency = default_currency

    async def record(self, data: dict[str, Any]) -> Cost:
        """Record a spend event.

        The amount is coerced to float. Negative amounts (refunds,
        corrections) are accepted; an unparseable amount is stored as 0.
        """
        if not data.get("type"):
            raise ValidationError("Cost type is required", field="type")

        raw_amount = data.get("amount")
        try:
            amount = float(raw_amount)
        except (TypeError, ValueError):
            if raw_amount is not None:
                logger.warning(f"Unparseable cost amount {raw_amount!r}, recording 0")
            amount = 0.0

        cost = Cost(
            agent_id=data.get("agent_id") or None,
            type=data["type"],
            resource_id=data.get("resource_id") or None,
            amount=amount,
            currency=data.get("currency") or self._default_currency,
            description=data.get("description") or "",
            metadata=data.get("metadata") or {},
            timestamp=now_iso(),
            recorded_by=data.get("recorded_by") or "system",
        )
        if data.get("id"):
            cost.id = data["id"]

        await self._store.write(COSTS, cost.id, cost.to_dict())
        logger.info(f"Recorded cost {cost.type}: {cost.amount} {cost.currency}")
        return cost

    async def list(self) -> list[Cost]:
        """All cost records, oldest first."""
        costs = [Cost.from_dict(d) for d in await self._store.read_all(COSTS)]
        costs.sort(key=lambda c: c.timestamp)
        return costs

    async def summarize(
        self,
        agent_id: str | None = None,
        type: str | None = None,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> CostSummary:
        """Sum the costs that pass every given filter."""
        costs = await self.list()

        if agent_id:
            costs = [c for c in costs if c.agent_id == agent_id]
        if type:
            costs = [c for c in costs if c.type == type]
        if from_date:
            lower = _parse_bound(from_date, "from_date")
            costs = [c for c in costs if parse_iso(c.timestamp) >= lower]
        if to_date:
            upper = _parse_bound(to_date, "to_date")
            costs = [c for c in costs if parse_iso(c.timestamp) <= upper]

        total = 0.0
        by_agent: dict[str, float] = defaultdict(float)
        by_type: dict[str, float] = defaultdict(float)
        by_resource: dict[str, float] = defaultdict(float)

        for cost in costs:
            total += cost.amount
            if cost.agent_id:
                by_agent[cost.agent_id] += cost.amount
            by_type[cost.type] += cost.amount
            if cost.resource_id:
                by_resource[cost.resource_id] += cost.amount

        return CostSummary(
            total=total,
            by_agent=dict(by_agent),
            by_type=dict(by_type),
            by_resource=dict(by_resource),
            items=costs,
        )
