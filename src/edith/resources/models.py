"""Resource manager data models.

Created: 2026-02-14
Part of the Mission Control resource manager.

These models define the persisted records for:
- Resources (bookable/usable APIs, compute, services, tools)
- Bookings (time intervals allocated against a resource)
- Costs (append-only spend events)
- Quotas (usage caps per agent/type, or global)
- Credentials (secret references, value never listed)

Design notes:
- Dataclasses with explicit to_dict/from_dict, defaults filled on load
- IDs are "<prefix>-<epoch millis>-<8 hex>" so files sort by creation
- Timestamps are ISO 8601 strings (UTC) for JSON serialization
- Result types (QuotaUsage, QuotaCheck, CostSummary) are never persisted
"""

import math
import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

GLOBAL_AGENT = "global"

# ============================================================================
# Enums
# ============================================================================


class ResourceType(str, Enum):
    """Kind of shared resource."""

    API = "api"
    COMPUTE = "compute"
    SERVICE = "service"
    TOOL = "tool"
    OTHER = "other"


class ResourceStatus(str, Enum):
    """Resource availability."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    DEPRECATED = "deprecated"


class BookingStatus(str, Enum):
    """Booking lifecycle status."""

    ACTIVE = "active"
    COMPLETED = "completed"  # Set by an external sweep, never by the ledger
    CANCELLED = "cancelled"


class CredentialType(str, Enum):
    """Kind of stored secret."""

    API_KEY = "api_key"
    OAUTH_TOKEN = "oauth_token"
    PASSWORD = "password"
    CERTIFICATE = "certificate"


class QuotaPeriod(str, Enum):
    """Quota period. Informational only, nothing resets on a schedule."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# ============================================================================
# Helper Functions
# ============================================================================


def generate_id(prefix: str = "id") -> str:
    """Generate a unique, roughly time-ordered ID."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def now_iso() -> str:
    """Get current UTC time as ISO 8601 string."""
    return datetime.now(UTC).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 timestamp. Naive values are taken as UTC.

    Raises:
        ValueError: If the string is not a valid timestamp.
    """
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce a JSON number or numeric string to float."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def usage_percentage(current_usage: float, limit: float) -> int:
    """Usage as a whole percentage of limit, rounding halves up.

    Negative usage left by corrections rounds the same way: -1.5 gives -1
    and -1.7 gives -2.
    """
    if limit <= 0:
        return 100 if current_usage > 0 else 0
    return math.floor(current_usage / limit * 100 + 0.5)


# ============================================================================
# Data Models
# ============================================================================


@dataclass
class Resource:
    """
    A shared resource agents can use or book.

    Attributes:
        id: Unique identifier
        name: Display name (e.g., "GPU-A")
        type: Kind of resource
        status: Availability
        description: Free text
        config: Opaque configuration bag
        endpoint: Optional URL/address
        documentation_url: Optional docs link
        owner: Owning agent/user (annotation only, not an ACL)
        shared_with: Agents this resource is shared with
        capacity: Optional structured limit, e.g. {"max_concurrent": 10}
        bookable: Whether time bookings may be made against it
        cost_per_unit: Optional pricing
        cost_unit: Unit for cost_per_unit (token, request, hour, ...)
        monthly_budget: Optional spend ceiling
        tags: Categorization tags
        created_at: When created
        updated_at: Last modification time
        created_by: Who created it
    """

    id: str = field(default_factory=lambda: generate_id("res"))
    name: str = ""
    type: ResourceType = ResourceType.OTHER
    status: ResourceStatus = ResourceStatus.ACTIVE
    description: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    endpoint: str | None = None
    documentation_url: str | None = None
    owner: str | None = None
    shared_with: list[str] = field(default_factory=list)
    capacity: dict[str, Any] | None = None
    bookable: bool = False
    cost_per_unit: float | None = None
    cost_unit: str | None = None
    monthly_budget: float | None = None
    tags: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    created_by: str = "system"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "status": self.status.value,
            "description": self.description,
            "config": self.config,
            "endpoint": self.endpoint,
            "documentation_url": self.documentation_url,
            "owner": self.owner,
            "shared_with": self.shared_with,
            "capacity": self.capacity,
            "bookable": self.bookable,
            "cost_per_unit": self.cost_per_unit,
            "cost_unit": self.cost_unit,
            "monthly_budget": self.monthly_budget,
            "tags": self.tags,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Resource":
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id("res"),
            name=str(data.get("name") or ""),
            type=ResourceType(data.get("type") or "other"),
            status=ResourceStatus(data.get("status") or "active"),
            description=data.get("description") or "",
            config=data.get("config") or {},
            endpoint=data.get("endpoint"),
            documentation_url=data.get("documentation_url"),
            owner=data.get("owner"),
            shared_with=data.get("shared_with") or [],
            capacity=data.get("capacity"),
            bookable=bool(data.get("bookable", False)),
            cost_per_unit=data.get("cost_per_unit"),
            cost_unit=data.get("cost_unit"),
            monthly_budget=data.get("monthly_budget"),
            tags=data.get("tags") or [],
            created_at=data.get("created_at") or now_iso(),
            updated_at=data.get("updated_at") or now_iso(),
            created_by=data.get("created_by") or "system",
        )


@dataclass
class Booking:
    """
    A time interval allocated against a bookable resource.

    The interval is half-open: [start_time, end_time). resource_name is a
    snapshot taken when the booking is made and is not kept in sync.
    """

    id: str = field(default_factory=lambda: generate_id("book"))
    resource_id: str = ""
    resource_name: str = ""
    agent_id: str = ""
    start_time: str = ""
    end_time: str = ""
    purpose: str = ""
    status: BookingStatus = BookingStatus.ACTIVE
    created_at: str = field(default_factory=now_iso)
    booked_by: str = "system"
    cancelled_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "agent_id": self.agent_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "purpose": self.purpose,
            "status": self.status.value,
            "created_at": self.created_at,
            "booked_by": self.booked_by,
            "cancelled_at": self.cancelled_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Booking":
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id("book"),
            resource_id=data.get("resource_id") or "",
            resource_name=data.get("resource_name") or "",
            agent_id=data.get("agent_id") or "",
            start_time=data.get("start_time") or "",
            end_time=data.get("end_time") or "",
            purpose=data.get("purpose") or "",
            status=BookingStatus(data.get("status") or "active"),
            created_at=data.get("created_at") or now_iso(),
            booked_by=data.get("booked_by") or "system",
            cancelled_at=data.get("cancelled_at"),
        )

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """True if [start, end) intersects this booking's interval."""
        return start < parse_iso(self.end_time) and end > parse_iso(self.start_time)


@dataclass
class Cost:
    """A single spend event. Immutable once recorded."""

    id: str = field(default_factory=lambda: generate_id("cost"))
    agent_id: str | None = None
    type: str = ""
    resource_id: str | None = None
    amount: float = 0.0
    currency: str = "USD"
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=now_iso)
    recorded_by: str = "system"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "type": self.type,
            "resource_id": self.resource_id,
            "amount": self.amount,
            "currency": self.currency,
            "description": self.description,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
            "recorded_by": self.recorded_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cost":
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id("cost"),
            agent_id=data.get("agent_id"),
            type=data.get("type") or "",
            resource_id=data.get("resource_id"),
            amount=to_float(data.get("amount")),
            currency=data.get("currency") or "USD",
            description=data.get("description") or "",
            metadata=data.get("metadata") or {},
            timestamp=data.get("timestamp") or now_iso(),
            recorded_by=data.get("recorded_by") or "system",
        )


@dataclass
class Quota:
    """
    A usage cap for one agent (or "global") and one usage type.

    Attributes:
        id: Unique identifier
        agent_id: Agent the quota applies to, or GLOBAL_AGENT
        type: Usage category (tokens, api_calls, compute_hours, ...)
        limit: Maximum usage
        period: Informational reset period
        current_usage: Usage accumulated since last reset
        warning_threshold: Fraction of limit that triggers a warning
        last_reset: When usage was last zeroed
        created_at: When created
        updated_at: Last modification time
    """

    id: str = field(default_factory=lambda: generate_id("quota"))
    agent_id: str = GLOBAL_AGENT
    type: str = ""
    limit: float = 0.0
    period: QuotaPeriod = QuotaPeriod.MONTHLY
    current_usage: float = 0.0
    warning_threshold: float = 0.8
    last_reset: str = field(default_factory=now_iso)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @property
    def percentage(self) -> int:
        return usage_percentage(self.current_usage, self.limit)

    @property
    def warning(self) -> bool:
        if self.limit <= 0:
            return self.current_usage > 0
        return self.current_usage / self.limit >= self.warning_threshold

    @property
    def exceeded(self) -> bool:
        return self.current_usage >= self.limit

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "type": self.type,
            "limit": self.limit,
            "period": self.period.value,
            "current_usage": self.current_usage,
            "warning_threshold": self.warning_threshold,
            "last_reset": self.last_reset,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Quota":
        """Create from dictionary."""
        return cls(
            id=data.get("id") or generate_id("quota"),
            agent_id=data.get("agent_id") or GLOBAL_AGENT,
            type=data.get("type") or "",
            limit=to_float(data.get("limit")),
            period=QuotaPeriod(data.get("period") or "monthly"),
            current_usage=to_float(data.get("current_usage")),
            warning_threshold=to_float(data.get("warning_threshold"), 0.8) or 0.8,
            last_reset=data.get("last_reset") or now_iso(),
            created_at=data.get("created_at") or now_iso(),
            updated_at=data.get("updated_at") or now_iso(),
        )


@dataclass
class Credential:
    """
    A stored secret reference.

    The value is held as given. There is no encryption step yet, so
    callers must treat the data directory as sensitive.
    """

    id: str = field(default_factory=lambda: generate_id("cred"))
    name: str = ""
    type: CredentialType = CredentialType.API_KEY
    service: str | None = None
    description: str = ""
    value: str | None = field(default=None, repr=False)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    expires_at: str | None = None
    last_used: str | None = None
    owner: str = "system"
    shared_with: list[str] = field(default_factory=list)

    @property
    def has_value(self) -> bool:
        return bool(self.value)

    def to_dict(self, include_value: bool = False) -> dict[str, Any]:
        """Convert to a response dictionary.

        The secret is only present when include_value is True.
        """
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "service": self.service,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "expires_at": self.expires_at,
            "last_used": self.last_used,
            "owner": self.owner,
            "shared_with": self.shared_with,
            "has_value": self.has_value,
        }
        if include_value:
            data["value"] = self.value
        return data

    def to_record(self) -> dict[str, Any]:
        """Convert to the persisted form, which keeps the secret."""
        data = self.to_dict()
        del data["has_value"]
        data["encrypted_value"] = self.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        """Create from a persisted record or a create request."""
        value = data.get("encrypted_value")
        if value is None:
            value = data.get("value")
        return cls(
            id=data.get("id") or generate_id("cred"),
            name=str(data.get("name") or ""),
            type=CredentialType(data.get("type") or "api_key"),
            service=data.get("service"),
            description=data.get("description") or "",
            value=value,
            created_at=data.get("created_at") or now_iso(),
            updated_at=data.get("updated_at") or now_iso(),
            expires_at=data.get("expires_at"),
            last_used=data.get("last_used"),
            owner=data.get("owner") or "system",
            shared_with=data.get("shared_with") or [],
        )


# ============================================================================
# Result Types
# ============================================================================


@dataclass
class QuotaUsage:
    """A quota after a usage update, with derived status fields."""

    quota: Quota

    def to_dict(self) -> dict[str, Any]:
        data = self.quota.to_dict()
        data["percentage"] = self.quota.percentage
        data["warning"] = self.quota.warning
        data["exceeded"] = self.quota.exceeded
        return data


@dataclass
class QuotaCheck:
    """Answer to an admission-control query."""

    allowed: bool
    reason: str
    quota_id: str | None = None
    limit: float | None = None
    current_usage: float | None = None
    remaining: float | None = None
    percentage: int | None = None

    @classmethod
    def unlimited(cls) -> "QuotaCheck":
        return cls(allowed=True, reason="No quota defined")

    @classmethod
    def for_quota(cls, quota: Quota, amount: float) -> "QuotaCheck":
        allowed = quota.current_usage + amount <= quota.limit
        return cls(
            allowed=allowed,
            reason="Within quota" if allowed else "Quota exceeded",
            quota_id=quota.id,
            limit=quota.limit,
            current_usage=quota.current_usage,
            remaining=max(0.0, quota.limit - quota.current_usage),
            percentage=quota.percentage,
        )

    def to_dict(self) -> dict[str, Any]:
        if self.quota_id is None:
            return {"allowed": self.allowed, "reason": self.reason}
        return {
            "allowed": self.allowed,
            "quota_id": self.quota_id,
            "limit": self.limit,
            "current_usage": self.current_usage,
            "remaining": self.remaining,
            "percentage": self.percentage,
            "reason": self.reason,
        }


@dataclass
class QuotaReservation:
    """Result of a combined check-and-record.

    usage is None when the reservation was denied or no quota applies.
    """

    check: QuotaCheck
    usage: QuotaUsage | None = None

    @property
    def reserved(self) -> bool:
        return self.usage is not None

    def to_dict(self) -> dict[str, Any]:
        data = self.check.to_dict()
        data["reserved"] = self.reserved
        data["quota"] = self.usage.to_dict() if self.usage else None
        return data


@dataclass
class CostSummary:
    """Aggregated spend over a filtered set of cost records."""

    total: float = 0.0
    by_agent: dict[str, float] = field(default_factory=dict)
    by_type: dict[str, float] = field(default_factory=dict)
    by_resource: dict[str, float] = field(default_factory=dict)
    items: list[Cost] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_agent": self.by_agent,
            "by_type": self.by_type,
            "by_resource": self.by_resource,
            "items": [c.to_dict() for c in self.items],
        }
