"""Resource manager storage backends.

Created: 2026-02-14
Implements ResourceStoreProtocol.

Storage layout (FileResourceStore):
~/.edith/mission_control/
    resources/<id>.json
    bookings/<id>.json
    costs/<id>.json
    quotas/<id>.json
    credentials/<id>.json

Design notes:
- One JSON document per record so concurrent writers touch different files
- Atomic writes using temp file + rename
- A corrupt document is logged and skipped by read_all, never fatal for a listing
- I/O failures surface as StorageError; nothing is retried here
"""

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any

from edith import lifecycle
from edith.config import get_settings
from edith.resources.errors import NotFoundError, StorageError, ValidationError
from edith.resources.protocol import KINDS

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$")


def _check_kind(kind: str) -> None:
    if kind not in KINDS:
        raise ValueError(f"Unknown record kind: {kind}")


def _singular(kind: str) -> str:
    return kind[:-1] if kind.endswith("s") else kind


class FileResourceStore:
    """File-based implementation of resource manager storage.

    Each record lives in its own JSON file under a directory per kind.
    Suitable for a single dashboard process (< 10k records per kind).
    """

    def __init__(self, base_path: Path | None = None):
        """Initialize the store.

        Args:
            base_path: Directory for storage files. Defaults to ~/.edith/mission_control/
        """
        if base_path is None:
            base_path = Path.home() / ".edith" / "mission_control"

        self.base_path = Path(base_path)
        for kind in KINDS:
            (self.base_path / kind).mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # File I/O Helpers
    # =========================================================================

    def _path(self, kind: str, record_id: str) -> Path:
        _check_kind(kind)
        if not _ID_PATTERN.match(record_id):
            raise ValidationError(f"Invalid {_singular(kind)} id: {record_id!r}", field="id")
        return self.base_path / kind / f"{record_id}.json"

    def _load_json(self, path: Path) -> dict[str, Any]:
        """Load one JSON document."""
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def _save_json(self, path: Path, data: dict[str, Any]) -> None:
        """Save one JSON document atomically."""
        temp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_path.replace(path)
        except OSError as e:
            logger.error(f"Error saving {path}: {e}")
            if temp_path.exists():
                temp_path.unlink()
            raise StorageError(f"Could not write {path.name}: {e}") from e

    # =========================================================================
    # Protocol Operations
    # =========================================================================

    async def read_all(self, kind: str) -> list[dict[str, Any]]:
        """Read every record of a kind."""
        _check_kind(kind)
        directory = self.base_path / kind
        if not directory.exists():
            return []

        try:
            paths = sorted(directory.glob("*.json"))
        except OSError as e:
            logger.error(f"Error listing {directory}: {e}")
            raise StorageError(f"Could not list {kind}: {e}") from e

        records = []
        for path in paths:
            try:
                records.append(self._load_json(path))
            except (json.JSONDecodeError, OSError) as e:
                logger.error(f"Error reading {path.name}: {e}")
        return records

    async def read(self, kind: str, record_id: str) -> dict[str, Any] | None:
        """Read one record, None if it does not exist."""
        try:
            path = self._path(kind, record_id)
        except ValidationError:
            return None
        if not path.exists():
            return None
        try:
            return self._load_json(path)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error reading {path}: {e}")
            raise StorageError(f"Could not read {_singular(kind)} {record_id}: {e}") from e

    async def write(self, kind: str, record_id: str, data: dict[str, Any]) -> None:
        """Create or replace a record."""
        self._save_json(self._path(kind, record_id), data)

    async def delete(self, kind: str, record_id: str) -> None:
        """Delete a record."""
        try:
            path = self._path(kind, record_id)
        except ValidationError:
            raise NotFoundError(_singular(kind), record_id) from None
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFoundError(_singular(kind), record_id) from None
        except OSError as e:
            logger.error(f"Error deleting {path}: {e}")
            raise StorageError(f"Could not delete {_singular(kind)} {record_id}: {e}") from e

    def close(self) -> None:
        """Remove temp files left behind by writes that were interrupted."""
        for stale in self.base_path.glob("*/*.tmp"):
            try:
                stale.unlink()
                logger.info(f"Removed stale temp file {stale}")
            except OSError as e:
                logger.warning(f"Could not remove {stale}: {e}")


class InMemoryResourceStore:
    """Dict-backed store, one namespace per kind.

    Mirrors a KV namespace: values are copied in and out so callers
    never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {kind: {} for kind in KINDS}

    async def read_all(self, kind: str) -> list[dict[str, Any]]:
        _check_kind(kind)
        return [copy.deepcopy(v) for v in self._data[kind].values()]

    async def read(self, kind: str, record_id: str) -> dict[str, Any] | None:
        _check_kind(kind)
        record = self._data[kind].get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def write(self, kind: str, record_id: str, data: dict[str, Any]) -> None:
        _check_kind(kind)
        self._data[kind][record_id] = copy.deepcopy(data)

    async def delete(self, kind: str, record_id: str) -> None:
        _check_kind(kind)
        if record_id not in self._data[kind]:
            raise NotFoundError(_singular(kind), record_id)
        del self._data[kind][record_id]

    def close(self) -> None:
        """Nothing outlives the process, so closing drops every record."""
        self.clear()

    def clear(self) -> None:
        """Drop every record."""
        for records in self._data.values():
            records.clear()


# =========================================================================
# Factory Function
# =========================================================================

_store_instance: FileResourceStore | InMemoryResourceStore | None = None


def get_resource_store(
    base_path: Path | None = None,
) -> FileResourceStore | InMemoryResourceStore:
    """Get or create the resource store singleton.

    The backend comes from settings.storage_backend on first call.

    Args:
        base_path: Optional custom storage path. Only used on first call.
    """
    global _store_instance
    if _store_instance is None:
        settings = get_settings()
        if settings.storage_backend == "memory":
            _store_instance = InMemoryResourceStore()
        else:
            _store_instance = FileResourceStore(base_path or settings.data_dir)
        lifecycle.register(
            "resource_store", shutdown=_store_instance.close, reset=reset_resource_store
        )
        logger.info(f"Resource store ready: {type(_store_instance).__name__}")
    return _store_instance


def reset_resource_store() -> None:
    """Reset the store singleton (for testing)."""
    global _store_instance
    _store_instance = None
