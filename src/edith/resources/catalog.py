"""Resource catalog: CRUD for bookable/usable resource declarations."""

import logging
from typing import Any

from edith.resources.errors import NotFoundError, ValidationError
from edith.resources.models import Resource, ResourceStatus, ResourceType, now_iso
from edith.resources.protocol import RESOURCES, ResourceStoreProtocol

logger = logging.getLogger(__name__)

# Fields a PATCH may change. Anything else in the patch is ignored.
MUTABLE_FIELDS = frozenset(
    {
        "name",
        "type",
        "status",
        "description",
        "config",
        "endpoint",
        "documentation_url",
        "owner",
        "shared_with",
        "capacity",
        "bookable",
        "cost_per_unit",
        "cost_unit",
        "monthly_budget",
        "tags",
    }
)

# Mutable fields that a null in the patch leaves unchanged
_REQUIRED_FIELDS = frozenset(
    {"name", "type", "status", "description", "bookable", "config", "shared_with", "tags"}
)


class ResourceCatalog:
    """Create, read, patch and delete Resource records."""

    def __init__(self, store: ResourceStoreProtocol):
        self._store = store

    async def list(
        self,
        type: str | None = None,
        status: str | None = None,
        owner: str | None = None,
    ) -> list[Resource]:
        """List resources, sorted by name (case-insensitive)."""
        resources = [Resource.from_dict(d) for d in await self._store.read_all(RESOURCES)]

        if type:
            resources = [r for r in resources if r.type.value == type]
        if status:
            resources = [r for r in resources if r.status.value == status]
        if owner:
            resources = [r for r in resources if r.owner == owner]

        resources.sort(key=lambda r: r.name.lower())
        return resources

    async def get(self, resource_id: str) -> Resource | None:
        """Get a resource by ID."""
        data = await self._store.read(RESOURCES, resource_id)
        return Resource.from_dict(data) if data is not None else None

    async def create(self, data: dict[str, Any]) -> Resource:
        """Create a resource, filling defaults for missing fields."""
        name = data.get("name")
        if not name:
            raise ValidationError("Resource name is required", field="name")
        if not isinstance(name, str):
            raise ValidationError(f"Resource name must be a string, got {name!r}", field="name")

        try:
            resource = Resource.from_dict(data)
        except ValueError as e:
            raise ValidationError(f"Invalid resource: {e}") from e

        resource.created_at = resource.updated_at = now_iso()
        await self._store.write(RESOURCES, resource.id, resource.to_dict())

        logger.info(f"Created resource: {resource.name} ({resource.id})")
        return resource

    async def update(self, resource_id: str, patch: dict[str, Any]) -> Resource:
        """Apply the allow-listed fields of a patch.

        Raises:
            NotFoundError: If the resource does not exist.
            ValidationError: If name is not a non-empty string, or type or
                status is not a known value.
        """
        resource = await self.get(resource_id)
        if resource is None:
            raise NotFoundError("resource", resource_id)

        for name, value in patch.items():
            if name not in MUTABLE_FIELDS:
                continue
            if value is None and name in _REQUIRED_FIELDS:
                continue
            if name == "name" and not (isinstance(value, str) and value):
                raise ValidationError(
                    f"Resource name must be a non-empty string, got {value!r}", field="name"
                )
            if name == "type":
                value = _enum_value(ResourceType, value, "type")
            elif name == "status":
                value = _enum_value(ResourceStatus, value, "status")
            elif name == "bookable":
                value = bool(value)
            setattr(resource, name, value)

        resource.updated_at = now_iso()
        await self._store.write(RESOURCES, resource.id, resource.to_dict())
        return resource

    async def delete(self, resource_id: str) -> dict[str, Any]:
        """Delete a resource. Bookings and costs that reference it are left alone."""
        await self._store.delete(RESOURCES, resource_id)
        logger.info(f"Deleted resource: {resource_id}")
        return {"success": True, "id": resource_id}


def _enum_value(enum_cls, value: Any, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(
            f"Invalid {field}: {value!r} (expected one of {allowed})", field=field
        ) from None
