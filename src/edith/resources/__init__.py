"""Resource manager for Edith Mission Control.

Created: 2026-02-14

Tracks the shared things agents use and what they cost:

- Resources: declarations of APIs, compute, services and tools
- Bookings: time intervals on bookable resources, overlap-checked
- Costs: append-only spend events with per-agent/type/resource totals
- Quotas: opt-in usage caps per agent (or global) with warning thresholds
- Credentials: secret references, never listed with their value

Usage:
    from edith.resources import get_resource_manager

    manager = get_resource_manager()

    gpu = await manager.create_resource({"name": "GPU-A", "bookable": True})
    await manager.book_resource({
        "resource_id": gpu.id,
        "agent_id": "neo",
        "start_time": "2026-01-01T00:00:00Z",
        "end_time": "2026-01-01T02:00:00Z",
    })

    quota = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 1000})
    if (await manager.check_quota("neo", "tokens", 500)).allowed:
        await manager.update_quota_usage(quota.id, 500)
"""

# Models
from edith.resources.errors import (
    BookingConflictError,
    ConflictError,
    NotBookableError,
    NotFoundError,
    ResourceError,
    StorageError,
    ValidationError,
)

# Manager
from edith.resources.manager import (
    ResourceManager,
    get_resource_manager,
    reset_resource_manager,
)
from edith.resources.models import (
    GLOBAL_AGENT,
    Booking,
    BookingStatus,
    Cost,
    CostSummary,
    Credential,
    CredentialType,
    Quota,
    QuotaCheck,
    QuotaPeriod,
    QuotaReservation,
    QuotaUsage,
    Resource,
    ResourceStatus,
    ResourceType,
)

# Store
from edith.resources.store import (
    FileResourceStore,
    InMemoryResourceStore,
    get_resource_store,
    reset_resource_store,
)

__all__ = [
    # Models
    "GLOBAL_AGENT",
    "Resource",
    "ResourceType",
    "ResourceStatus",
    "Booking",
    "BookingStatus",
    "Cost",
    "CostSummary",
    "Quota",
    "QuotaPeriod",
    "QuotaUsage",
    "QuotaCheck",
    "QuotaReservation",
    "Credential",
    "CredentialType",
    # Errors
    "ResourceError",
    "NotFoundError",
    "ValidationError",
    "NotBookableError",
    "ConflictError",
    "BookingConflictError",
    "StorageError",
    # Store
    "FileResourceStore",
    "InMemoryResourceStore",
    "get_resource_store",
    "reset_resource_store",
    # Manager
    "ResourceManager",
    "get_resource_manager",
    "reset_resource_manager",
]
