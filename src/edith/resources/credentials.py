"""Credential vault: secret references that are never listed with their value.

Values are stored as given. Encryption at rest is not implemented yet,
so the credentials directory must be protected by filesystem permissions.
"""

import logging
from typing import Any

from edith.resources.errors import ValidationError
from edith.resources.models import Credential, now_iso
from edith.resources.protocol import CREDENTIALS, ResourceStoreProtocol

logger = logging.getLogger(__name__)


class CredentialStore:
    """Create, read and delete Credential records."""

    def __init__(self, store: ResourceStoreProtocol):
        self._store = store

    async def list(self) -> list[dict[str, Any]]:
        """List credentials without their values."""
        credentials = [Credential.from_dict(d) for d in await self._store.read_all(CREDENTIALS)]
        credentials.sort(key=lambda c: c.name.lower())
        return [c.to_dict() for c in credentials]

    async def get(self, credential_id: str, include_value: bool = False) -> dict[str, Any] | None:
        """Get a credential. The value is only included when asked for."""
        data = await self._store.read(CREDENTIALS, credential_id)
        if data is None:
            return None
        return Credential.from_dict(data).to_dict(include_value=include_value)

    async def create(self, data: dict[str, Any]) -> dict[str, Any]:
        """Store a credential and return it without its value."""
        name = data.get("name")
        if not name:
            raise ValidationError("Credential name is required", field="name")
        if not isinstance(name, str):
            raise ValidationError(f"Credential name must be a string, got {name!r}", field="name")

        try:
            credential = Credential.from_dict(data)
        except ValueError as e:
            raise ValidationError(f"Invalid credential: {e}", field="type") from e

        credential.created_at = credential.updated_at = now_iso()
        await self._store.write(CREDENTIALS, credential.id, credential.to_record())

        logger.info(f"Stored credential: {credential.name} ({credential.id})")
        result = credential.to_dict()
        result["has_value"] = True
        return result

    async def delete(self, credential_id: str) -> dict[str, Any]:
        """Delete a credential."""
        await self._store.delete(CREDENTIALS, credential_id)
        logger.info(f"Deleted credential: {credential_id}")
        return {"success": True, "id": credential_id}
