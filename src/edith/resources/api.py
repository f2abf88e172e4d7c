"""Resource manager API endpoints.

Created: 2026-02-14

FastAPI router for the resource manager.

Provides REST endpoints for:
- Credentials: list, get (value hidden unless includeValue=true), create, delete
- Resources: CRUD plus aggregate metrics
- Bookings: list with filters, book (conflict-checked), cancel
- Costs: record, summarize
- Quotas: list, set, record usage, reset, check, reserve
- Activity: recent change log

Responses are the bare records (no envelope) to stay compatible with the
dashboard's existing JS client. Errors map as:
    NotFoundError -> 404, ValidationError/ConflictError -> 400, StorageError -> 500

Mount this router to your FastAPI app:
    from edith.resources.api import router as resources_router
    app.include_router(resources_router, prefix="/api")
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from edith.resources.errors import (
    ConflictError,
    NotFoundError,
    ResourceError,
    StorageError,
    ValidationError,
)
from edith.resources.manager import get_resource_manager
from edith.resources.models import (
    GLOBAL_AGENT,
    CredentialType,
    QuotaPeriod,
    ResourceStatus,
    ResourceType,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Resources"])


def _http_error(exc: ResourceError) -> HTTPException:
    """Translate a resource manager error into an HTTP error."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (ValidationError, ConflictError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, StorageError):
        logger.error(f"Storage failure: {exc}")
    return HTTPException(status_code=500, detail=str(exc))


# ============================================================================
# Request Models
# ============================================================================


class CreateCredentialRequest(BaseModel):
    """Request to store a credential."""

    name: str = Field(..., min_length=1, max_length=200)
    value: str | None = None
    type: CredentialType = CredentialType.API_KEY
    service: str | None = None
    description: str = ""
    expires_at: str | None = None
    owner: str = "system"
    shared_with: list[str] = Field(default_factory=list)


class CreateResourceRequest(BaseModel):
    """Request to declare a resource."""

    id: str | None = None
    name: str = Field(..., min_length=1, max_length=200)
    type: ResourceType = ResourceType.OTHER
    status: ResourceStatus = ResourceStatus.ACTIVE
    description: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    endpoint: str | None = None
    documentation_url: str | None = None
    owner: str | None = None
    shared_with: list[str] = Field(default_factory=list)
    capacity: dict[str, Any] | None = None
    bookable: bool = False
    cost_per_unit: float | None = None
    cost_unit: str | None = None
    monthly_budget: float | None = None
    tags: list[str] = Field(default_factory=list)
    created_by: str = "system"


class UpdateResourceRequest(BaseModel):
    """Request to patch a resource. Only fields that are sent are changed."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    type: ResourceType | None = None
    status: ResourceStatus | None = None
    description: str | None = None
    config: dict[str, Any] | None = None
    endpoint: str | None = None
    documentation_url: str | None = None
    owner: str | None = None
    shared_with: list[str] | None = None
    capacity: dict[str, Any] | None = None
    bookable: bool | None = None
    cost_per_unit: float | None = None
    cost_unit: str | None = None
    monthly_budget: float | None = None
    tags: list[str] | None = None


class CreateBookingRequest(BaseModel):
    """Request to book a resource for an interval."""

    resource_id: str = Field(..., min_length=1)
    agent_id: str = Field(..., min_length=1)
    start_time: str = Field(..., description="ISO 8601 start (inclusive)")
    end_time: str = Field(..., description="ISO 8601 end (exclusive)")
    purpose: str = ""
    booked_by: str = "system"


class RecordCostRequest(BaseModel):
    """Request to record a spend event."""

    type: str = Field(..., min_length=1)
    amount: float = 0.0
    agent_id: str | None = None
    resource_id: str | None = None
    currency: str | None = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    recorded_by: str = "system"


class SetQuotaRequest(BaseModel):
    """Request to set a usage quota."""

    id: str | None = None
    type: str = Field(..., min_length=1)
    limit: float = Field(..., gt=0)
    agent_id: str = GLOBAL_AGENT
    period: QuotaPeriod = QuotaPeriod.MONTHLY
    current_usage: float = 0.0
    warning_threshold: float | None = Field(default=None, gt=0, le=1)


class QuotaUsageRequest(BaseModel):
    """Request to add usage to a quota."""

    usage: float


class ReserveQuotaRequest(BaseModel):
    """Request to check and record usage in one step."""

    agent_id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    amount: float = 1.0


# ============================================================================
# Credential Endpoints
# ============================================================================


@router.get("/credentials")
async def list_credentials() -> list[dict[str, Any]]:
    """List credentials. Values are never included."""
    manager = get_resource_manager()
    try:
        return await manager.list_credentials()
    except ResourceError as e:
        raise _http_error(e) from e


@router.get("/credentials/{credential_id}")
async def get_credential(
    credential_id: str,
    include_value: bool = Query(default=False, alias="includeValue"),
) -> dict[str, Any]:
    """Get a credential, with its value only when includeValue=true."""
    manager = get_resource_manager()
    try:
        credential = await manager.get_credential(credential_id, include_value=include_value)
    except ResourceError as e:
        raise _http_error(e) from e

    if not credential:
        raise HTTPException(status_code=404, detail="Credential not found")
    return credential


@router.post("/credentials", status_code=201)
async def create_credential(request: CreateCredentialRequest) -> dict[str, Any]:
    """Store a credential."""
    manager = get_resource_manager()
    try:
        return await manager.store_credential(request.model_dump(mode="json"))
    except ResourceError as e:
        raise _http_error(e) from e


@router.delete("/credentials/{credential_id}")
async def delete_credential(credential_id: str) -> dict[str, Any]:
    """Delete a credential."""
    manager = get_resource_manager()
    try:
        return await manager.delete_credential(credential_id)
    except ResourceError as e:
        raise _http_error(e) from e


# ============================================================================
# Resource Endpoints
# ============================================================================


@router.get("/resources")
async def list_resources(
    type: str | None = None,
    status: str | None = None,
    owner: str | None = None,
) -> list[dict[str, Any]]:
    """List resources sorted by name, optionally filtered."""
    manager = get_resource_manager()
    try:
        resources = await manager.list_resources(type=type, status=status, owner=owner)
    except ResourceError as e:
        raise _http_error(e) from e
    return [r.to_dict() for r in resources]


# Must be declared before /resources/{resource_id}
@router.get("/resources/metrics")
async def get_metrics() -> dict[str, Any]:
    """Aggregate resource, booking, cost and quota metrics."""
    manager = get_resource_manager()
    try:
        return await manager.get_metrics()
    except ResourceError as e:
        raise _http_error(e) from e


@router.get("/resources/{resource_id}")
async def get_resource(resource_id: str) -> dict[str, Any]:
    """Get a resource by ID."""
    manager = get_resource_manager()
    try:
        resource = await manager.get_resource(resource_id)
    except ResourceError as e:
        raise _http_error(e) from e

    if not resource:
        raise HTTPException(status_code=404, detail="Resource not found")
    return resource.to_dict()


@router.post("/resources", status_code=201)
async def create_resource(request: CreateResourceRequest) -> dict[str, Any]:
    """Declare a new resource."""
    manager = get_resource_manager()
    try:
        resource = await manager.create_resource(request.model_dump(mode="json", exclude_none=True))
    except ResourceError as e:
        raise _http_error(e) from e
    return resource.to_dict()


@router.patch("/resources/{resource_id}")
async def update_resource(resource_id: str, request: UpdateResourceRequest) -> dict[str, Any]:
    """Patch a resource's mutable fields."""
    manager = get_resource_manager()
    try:
        resource = await manager.update_resource(
            resource_id, request.model_dump(mode="json", exclude_unset=True)
        )
    except ResourceError as e:
        raise _http_error(e) from e
    return resource.to_dict()


@router.delete("/resources/{resource_id}")
async def delete_resource(resource_id: str) -> dict[str, Any]:
    """Delete a resource. Its bookings and costs are kept."""
    manager = get_resource_manager()
    try:
        return await manager.delete_resource(resource_id)
    except ResourceError as e:
        raise _http_error(e) from e


# ============================================================================
# Booking Endpoints
# ============================================================================


@router.get("/bookings")
async def list_bookings(
    resource_id: str | None = None,
    agent_id: str | None = None,
    status: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
) -> list[dict[str, Any]]:
    """List bookings sorted by start time."""
    manager = get_resource_manager()
    try:
        bookings = await manager.list_bookings(
            resource_id=resource_id,
            agent_id=agent_id,
            status=status,
            from_date=from_date,
            to_date=to_date,
        )
    except ResourceError as e:
        raise _http_error(e) from e
    return [b.to_dict() for b in bookings]


@router.post("/bookings", status_code=201)
async def create_booking(request: CreateBookingRequest) -> dict[str, Any]:
    """Book a resource. Overlapping active bookings are rejected."""
    manager = get_resource_manager()
    try:
        booking = await manager.book_resource(request.model_dump())
    except ResourceError as e:
        raise _http_error(e) from e
    return booking.to_dict()


@router.delete("/bookings/{booking_id}")
async def cancel_booking(booking_id: str) -> dict[str, Any]:
    """Cancel a booking."""
    manager = get_resource_manager()
    try:
        booking = await manager.cancel_booking(booking_id)
    except ResourceError as e:
        raise _http_error(e) from e
    return booking.to_dict()


# ============================================================================
# Cost Endpoints
# ============================================================================


@router.get("/costs")
async def get_cost_summary(
    agent_id: str | None = None,
    type: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
) -> dict[str, Any]:
    """Summarize spend, optionally filtered."""
    manager = get_resource_manager()
    try:
        summary = await manager.get_cost_summary(
            agent_id=agent_id, type=type, from_date=from_date, to_date=to_date
        )
    except ResourceError as e:
        raise _http_error(e) from e
    return summary.to_dict()


@router.post("/costs", status_code=201)
async def record_cost(request: RecordCostRequest) -> dict[str, Any]:
    """Record a spend event."""
    manager = get_resource_manager()
    try:
        cost = await manager.record_cost(request.model_dump(exclude_none=True))
    except ResourceError as e:
        raise _http_error(e) from e
    return cost.to_dict()


# ============================================================================
# Quota Endpoints
# ============================================================================


@router.get("/quotas")
async def list_quotas(agent_id: str | None = None) -> list[dict[str, Any]]:
    """List quotas. With agent_id, its own quotas plus the global ones."""
    manager = get_resource_manager()
    try:
        quotas = await manager.get_quotas(agent_id)
    except ResourceError as e:
        raise _http_error(e) from e
    return [q.to_dict() for q in quotas]


@router.get("/quotas/check")
async def check_quota(agent_id: str, type: str, amount: float = 1) -> dict[str, Any]:
    """Would consuming amount stay within quota? Does not change usage.

    amount=0 is read as the default of 1, as the dashboard client expects.
    """
    manager = get_resource_manager()
    try:
        result = await manager.check_quota(agent_id, type, amount or 1)
    except ResourceError as e:
        raise _http_error(e) from e
    return result.to_dict()


@router.post("/quotas/reserve")
async def reserve_quota(request: ReserveQuotaRequest) -> dict[str, Any]:
    """Check and record usage atomically (per quota, in this process)."""
    manager = get_resource_manager()
    try:
        result = await manager.reserve_quota(request.agent_id, request.type, request.amount)
    except ResourceError as e:
        raise _http_error(e) from e
    return result.to_dict()


@router.post("/quotas", status_code=201)
async def set_quota(request: SetQuotaRequest) -> dict[str, Any]:
    """Set a quota."""
    manager = get_resource_manager()
    try:
        quota = await manager.set_quota(request.model_dump(mode="json", exclude_none=True))
    except ResourceError as e:
        raise _http_error(e) from e
    return quota.to_dict()


@router.put("/quotas/{quota_id}/usage")
async def update_quota_usage(quota_id: str, request: QuotaUsageRequest) -> dict[str, Any]:
    """Add usage to a quota. Returns percentage, warning and exceeded flags."""
    manager = get_resource_manager()
    try:
        result = await manager.update_quota_usage(quota_id, request.usage)
    except ResourceError as e:
        raise _http_error(e) from e
    return result.to_dict()


@router.post("/quotas/{quota_id}/reset")
async def reset_quota(quota_id: str) -> dict[str, Any]:
    """Zero a quota's usage."""
    manager = get_resource_manager()
    try:
        quota = await manager.reset_quota(quota_id)
    except ResourceError as e:
        raise _http_error(e) from e
    return quota.to_dict()


# ============================================================================
# Activity Endpoint
# ============================================================================


@router.get("/activity")
async def get_activity(limit: int = Query(default=50, ge=1, le=500)) -> dict[str, Any]:
    """Recent resource manager activity, newest last."""
    manager = get_resource_manager()
    entries = manager.get_activity(limit)
    return {
        "activity": [e.to_dict() for e in entries],
        "count": len(entries),
    }
