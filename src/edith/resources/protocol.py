"""Resource manager storage protocol.

Created: 2026-02-14
Defines the interface for resource manager storage backends.

Records are plain JSON documents addressed by (kind, id). A backend only
needs four operations, which keeps the medium swappable:
- FileResourceStore: one JSON file per record, one directory per kind
- InMemoryResourceStore: dict-of-dicts, KV-namespace style
- Future: Cloudflare KV, Git-backed JSON tree, SQLite
"""

from typing import Any, Protocol, runtime_checkable

# Record kinds, one namespace each
RESOURCES = "resources"
BOOKINGS = "bookings"
COSTS = "costs"
QUOTAS = "quotas"
CREDENTIALS = "credentials"

KINDS = (RESOURCES, BOOKINGS, COSTS, QUOTAS, CREDENTIALS)


@runtime_checkable
class ResourceStoreProtocol(Protocol):
    """Protocol defining the interface for resource manager storage.

    Backends raise StorageError for I/O failures and NotFoundError when
    deleting an id that does not exist.
    """

    async def read_all(self, kind: str) -> list[dict[str, Any]]:
        """Return every record of a kind, in no particular order."""
        ...

    async def read(self, kind: str, record_id: str) -> dict[str, Any] | None:
        """Return one record, or None if absent."""
        ...

    async def write(self, kind: str, record_id: str, data: dict[str, Any]) -> None:
        """Create or replace a record."""
        ...

    async def delete(self, kind: str, record_id: str) -> None:
        """Remove a record."""
        ...
