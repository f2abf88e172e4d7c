# Tests for the Mission Control resource manager
# Created: 2026-02-14
# Tests data models, stores, each component and the manager's side effects

import asyncio
import json
import tempfile
from datetime import UTC
from pathlib import Path
from unittest.mock import patch

import pytest

from edith import lifecycle
from edith.events import EventBroadcaster
from edith.resources import (
    Booking,
    BookingConflictError,
    BookingStatus,
    Credential,
    FileResourceStore,
    InMemoryResourceStore,
    NotBookableError,
    NotFoundError,
    Quota,
    QuotaCheck,
    Resource,
    ResourceManager,
    ResourceStatus,
    ResourceType,
    StorageError,
    ValidationError,
    get_resource_manager,
    reset_resource_manager,
    reset_resource_store,
)
from edith.resources.activity import ActivityEntry, ActivityLog
from edith.resources.locks import KeyedLocks
from edith.resources.models import parse_iso, usage_percentage
from edith.resources.protocol import CREDENTIALS, RESOURCES

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def temp_store_path():
    """Create a temporary directory for test storage."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_store_path):
    """Create a fresh file store for each test."""
    reset_resource_store()
    return FileResourceStore(temp_store_path)


@pytest.fixture
def events():
    """Collect every published event type and payload."""
    broadcaster = EventBroadcaster()
    received = []
    broadcaster.subscribe(received.append)
    return broadcaster, received


@pytest.fixture
def manager(store, temp_store_path, events):
    """Create a manager with the test store, its own broadcaster and activity log."""
    reset_resource_manager()
    broadcaster, _ = events
    return ResourceManager(
        store,
        broadcaster=broadcaster,
        activity_log=ActivityLog(temp_store_path / "logs" / "activity.log"),
    )


async def make_gpu(manager, name="GPU-A", bookable=True):
    return await manager.create_resource(
        {"name": name, "type": "compute", "bookable": bookable}
    )


async def book(manager, resource_id, start, end, agent_id="neo"):
    return await manager.book_resource(
        {
            "resource_id": resource_id,
            "agent_id": agent_id,
            "start_time": start,
            "end_time": end,
        }
    )


# ============================================================================
# Model Tests
# ============================================================================


class TestModels:
    """Tests for data models."""

    def test_resource_defaults(self):
        """Test Resource default values."""
        resource = Resource()
        assert resource.id.startswith("res-")
        assert resource.type == ResourceType.OTHER
        assert resource.status == ResourceStatus.ACTIVE
        assert resource.bookable is False
        assert resource.shared_with == []
        assert resource.created_by == "system"

    def test_resource_from_dict_fills_defaults(self):
        """Test Resource deserialization with a sparse record."""
        resource = Resource.from_dict({"id": "res-1", "name": "OpenAI", "type": "api"})
        assert resource.id == "res-1"
        assert resource.type == ResourceType.API
        assert resource.config == {}
        assert resource.tags == []

    def test_ids_are_prefixed_and_unique(self):
        """Test generated IDs carry their record prefix."""
        ids = {Booking().id for _ in range(50)}
        assert len(ids) == 50
        assert all(i.startswith("book-") for i in ids)
        assert Quota().id.startswith("quota-")
        assert Credential().id.startswith("cred-")

    def test_booking_overlap_is_half_open(self):
        """Test back-to-back intervals do not overlap."""
        booking = Booking(start_time="2026-01-01T00:00:00Z", end_time="2026-01-01T02:00:00Z")
        assert booking.overlaps(
            parse_iso("2026-01-01T01:00:00Z"), parse_iso("2026-01-01T03:00:00Z")
        )
        assert not booking.overlaps(
            parse_iso("2026-01-01T02:00:00Z"), parse_iso("2026-01-01T04:00:00Z")
        )

    def test_parse_iso_naive_is_utc(self):
        """Test naive timestamps are read as UTC."""
        assert parse_iso("2026-01-01T00:00:00").tzinfo == UTC
        assert parse_iso("2026-01-01T00:00:00") == parse_iso("2026-01-01T00:00:00Z")

    def test_parse_iso_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_iso("next tuesday")

    def test_quota_derived_fields(self):
        """Test percentage, warning and exceeded."""
        quota = Quota(type="tokens", limit=1000, current_usage=850)
        assert quota.percentage == 85
        assert quota.warning is True
        assert quota.exceeded is False

        quota.current_usage = 1000
        assert quota.exceeded is True

    def test_usage_percentage_rounds_half_up(self):
        assert usage_percentage(1, 8) == 13
        assert usage_percentage(0, 100) == 0
        assert usage_percentage(5, 0) == 100
        assert usage_percentage(-0.17, 10) == -2
        assert usage_percentage(-3, 200) == -1

    def test_credential_value_hidden(self):
        """Test the secret is absent from dicts and repr unless asked for."""
        credential = Credential(name="OpenAI", value="sk-secret")
        data = credential.to_dict()
        assert "value" not in data
        assert data["has_value"] is True
        assert "sk-secret" not in repr(credential)
        assert credential.to_dict(include_value=True)["value"] == "sk-secret"

    def test_credential_record_round_trip(self):
        """Test the persisted form keeps the secret under encrypted_value."""
        record = Credential(name="OpenAI", value="sk-secret").to_record()
        assert record["encrypted_value"] == "sk-secret"
        assert "has_value" not in record
        assert Credential.from_dict(record).value == "sk-secret"

    def test_unlimited_check_shape(self):
        assert QuotaCheck.unlimited().to_dict() == {
            "allowed": True,
            "reason": "No quota defined",
        }


# ============================================================================
# Store Tests
# ============================================================================


class TestFileResourceStore:
    """Tests for file-based storage."""

    @pytest.mark.asyncio
    async def test_write_and_read(self, store, temp_store_path):
        """Test saving and retrieving a record."""
        await store.write(RESOURCES, "res-1", {"id": "res-1", "name": "GPU-A"})

        assert await store.read(RESOURCES, "res-1") == {"id": "res-1", "name": "GPU-A"}
        assert (temp_store_path / "resources" / "res-1.json").exists()

    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self, store):
        assert await store.read(RESOURCES, "res-missing") is None

    @pytest.mark.asyncio
    async def test_delete_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            await store.delete(RESOURCES, "res-missing")

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, store):
        """Test ids cannot escape the kind directory."""
        with pytest.raises(ValidationError):
            await store.write(RESOURCES, "../evil", {"id": "../evil"})
        assert await store.read(RESOURCES, "../evil") is None

    @pytest.mark.asyncio
    async def test_corrupt_file_skipped_in_listing(self, store, temp_store_path):
        """Test a corrupt document does not break read_all."""
        await store.write(RESOURCES, "res-1", {"id": "res-1", "name": "GPU-A"})
        (temp_store_path / "resources" / "res-bad.json").write_text("{not json")

        records = await store.read_all(RESOURCES)
        assert [r["id"] for r in records] == ["res-1"]

        with pytest.raises(StorageError):
            await store.read(RESOURCES, "res-bad")

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, store):
        with pytest.raises(ValueError):
            await store.read_all("widgets")

    @pytest.mark.asyncio
    async def test_close_removes_stale_temp_files(self, store, temp_store_path):
        """Test temp files from an interrupted write are swept on close."""
        await store.write(RESOURCES, "res-1", {"id": "res-1"})
        stale = temp_store_path / "resources" / "res-2.tmp"
        stale.write_text("{")

        store.close()

        assert not stale.exists()
        assert await store.read(RESOURCES, "res-1") == {"id": "res-1"}

    @pytest.mark.asyncio
    async def test_write_failure_raises_storage_error(self, store, temp_store_path):
        """Test an I/O failure surfaces as StorageError and leaves no temp file."""
        with patch.object(Path, "replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError):
                await store.write(RESOURCES, "res-1", {"id": "res-1"})

        assert list((temp_store_path / "resources").iterdir()) == []

    @pytest.mark.asyncio
    async def test_failed_write_not_logged(self, manager):
        """Test a storage failure leaves no activity line."""
        with patch.object(Path, "replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError):
                await manager.create_resource({"name": "GPU-A"})

        assert manager.get_activity() == []
        assert await manager.list_resources() == []


class TestInMemoryResourceStore:
    """Tests for the dict-backed store."""

    @pytest.mark.asyncio
    async def test_values_are_copied(self):
        """Test callers never share mutable state with the store."""
        store = InMemoryResourceStore()
        data = {"id": "res-1", "tags": ["gpu"]}
        await store.write(RESOURCES, "res-1", data)
        data["tags"].append("mutated")

        stored = await store.read(RESOURCES, "res-1")
        assert stored["tags"] == ["gpu"]
        stored["tags"].append("again")
        assert (await store.read(RESOURCES, "res-1"))["tags"] == ["gpu"]

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        store = InMemoryResourceStore()
        await store.write(RESOURCES, "res-1", {"id": "res-1"})
        await store.write(RESOURCES, "res-2", {"id": "res-2"})

        await store.delete(RESOURCES, "res-1")
        with pytest.raises(NotFoundError):
            await store.delete(RESOURCES, "res-1")

        store.clear()
        assert await store.read_all(RESOURCES) == []

    @pytest.mark.asyncio
    async def test_close_drops_records(self):
        store = InMemoryResourceStore()
        await store.write(RESOURCES, "res-1", {"id": "res-1"})

        store.close()
        assert await store.read_all(RESOURCES) == []


# ============================================================================
# Resource Catalog Tests
# ============================================================================


class TestResourceCatalog:
    """Tests for resource CRUD."""

    @pytest.mark.asyncio
    async def test_create_requires_name(self, manager):
        with pytest.raises(ValidationError):
            await manager.create_resource({"type": "api"})

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_type(self, manager):
        with pytest.raises(ValidationError):
            await manager.create_resource({"name": "X", "type": "spaceship"})

    @pytest.mark.asyncio
    async def test_list_sorted_and_filtered(self, manager):
        """Test name ordering is case-insensitive and filters combine."""
        await manager.create_resource({"name": "beta", "type": "api"})
        await manager.create_resource({"name": "Alpha", "type": "compute", "owner": "neo"})
        await manager.create_resource(
            {"name": "gamma", "type": "compute", "status": "maintenance"}
        )

        names = [r.name for r in await manager.list_resources()]
        assert names == ["Alpha", "beta", "gamma"]

        compute = await manager.list_resources(type="compute")
        assert {r.name for r in compute} == {"Alpha", "gamma"}

        owned = await manager.list_resources(type="compute", owner="neo")
        assert [r.name for r in owned] == ["Alpha"]

        assert await manager.list_resources(status="deprecated") == []

    @pytest.mark.asyncio
    async def test_update_applies_allow_list_only(self, manager):
        """Test a patch cannot change id or creation metadata."""
        resource = await make_gpu(manager)

        updated = await manager.update_resource(
            resource.id,
            {
                "status": "maintenance",
                "monthly_budget": 500,
                "id": "res-hijack",
                "created_at": "1999-01-01T00:00:00Z",
                "created_by": "mallory",
            },
        )
        assert updated.id == resource.id
        assert updated.status == ResourceStatus.MAINTENANCE
        assert updated.monthly_budget == 500
        assert updated.created_at == resource.created_at
        assert updated.created_by == "system"

        reloaded = await manager.get_resource(resource.id)
        assert reloaded.status == ResourceStatus.MAINTENANCE

    @pytest.mark.asyncio
    async def test_update_null_keeps_required_fields(self, manager):
        resource = await make_gpu(manager)
        updated = await manager.update_resource(resource.id, {"name": None, "owner": None})
        assert updated.name == "GPU-A"
        assert updated.owner is None

    @pytest.mark.asyncio
    async def test_update_invalid_status(self, manager):
        resource = await make_gpu(manager)
        with pytest.raises(ValidationError):
            await manager.update_resource(resource.id, {"status": "on-fire"})

    @pytest.mark.asyncio
    async def test_update_missing(self, manager):
        with pytest.raises(NotFoundError):
            await manager.update_resource("res-missing", {"name": "X"})

    @pytest.mark.asyncio
    async def test_non_string_name_rejected(self, manager):
        """Test a non-text name never reaches the store and listing keeps working."""
        with pytest.raises(ValidationError) as exc_info:
            await manager.create_resource({"name": 5})
        assert exc_info.value.field == "name"

        resource = await make_gpu(manager)
        with pytest.raises(ValidationError):
            await manager.update_resource(resource.id, {"name": 123})
        with pytest.raises(ValidationError):
            await manager.update_resource(resource.id, {"name": ""})

        assert [r.name for r in await manager.list_resources()] == ["GPU-A"]

    @pytest.mark.asyncio
    async def test_list_tolerates_stored_non_string_name(self, manager, store):
        await store.write(RESOURCES, "res-legacy", {"id": "res-legacy", "name": 5})
        await make_gpu(manager)

        assert [r.name for r in await manager.list_resources()] == ["5", "GPU-A"]

    @pytest.mark.asyncio
    async def test_delete_keeps_bookings(self, manager):
        """Test deleting a resource leaves its bookings in place."""
        resource = await make_gpu(manager)
        booking = await book(
            manager, resource.id, "2026-01-01T00:00:00Z", "2026-01-01T01:00:00Z"
        )

        result = await manager.delete_resource(resource.id)
        assert result == {"success": True, "id": resource.id}
        assert await manager.get_resource(resource.id) is None
        assert [b.id for b in await manager.list_bookings()] == [booking.id]

        with pytest.raises(NotFoundError):
            await manager.delete_resource(resource.id)


# ============================================================================
# Booking Tests
# ============================================================================


class TestBookings:
    """Tests for booking allocation and conflict detection."""

    @pytest.mark.asyncio
    async def test_overlap_rejected_adjacent_allowed(self, manager):
        """Test the conflict rule on a single resource."""
        gpu = await make_gpu(manager)

        first = await book(manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T02:00:00Z")
        assert first.status == BookingStatus.ACTIVE
        assert first.resource_name == "GPU-A"

        with pytest.raises(BookingConflictError) as exc_info:
            await book(manager, gpu.id, "2026-01-01T01:00:00Z", "2026-01-01T03:00:00Z")
        assert exc_info.value.booking_id == first.id
        assert first.id in str(exc_info.value)

        adjacent = await book(
            manager, gpu.id, "2026-01-01T02:00:00Z", "2026-01-01T04:00:00Z", agent_id="trinity"
        )
        assert adjacent.agent_id == "trinity"
        assert len(await manager.list_bookings(resource_id=gpu.id)) == 2

    @pytest.mark.asyncio
    async def test_other_resources_do_not_conflict(self, manager):
        gpu_a = await make_gpu(manager, "GPU-A")
        gpu_b = await make_gpu(manager, "GPU-B")

        await book(manager, gpu_a.id, "2026-01-01T00:00:00Z", "2026-01-01T02:00:00Z")
        await book(manager, gpu_b.id, "2026-01-01T00:00:00Z", "2026-01-01T02:00:00Z")

        assert len(await manager.list_bookings()) == 2

    @pytest.mark.asyncio
    async def test_not_bookable(self, manager):
        """Test bookings against a non-bookable resource are rejected and not stored."""
        api = await manager.create_resource({"name": "OpenAI", "type": "api"})

        with pytest.raises(NotBookableError) as exc_info:
            await book(manager, api.id, "2026-01-01T00:00:00Z", "2026-01-01T01:00:00Z")
        assert isinstance(exc_info.value, ValidationError)
        assert "not bookable" in str(exc_info.value)
        assert await manager.list_bookings() == []

    @pytest.mark.asyncio
    async def test_unknown_resource(self, manager):
        with pytest.raises(NotFoundError):
            await book(manager, "res-missing", "2026-01-01T00:00:00Z", "2026-01-01T01:00:00Z")

    @pytest.mark.asyncio
    async def test_empty_or_invalid_interval(self, manager):
        gpu = await make_gpu(manager)

        with pytest.raises(ValidationError):
            await book(manager, gpu.id, "2026-01-01T02:00:00Z", "2026-01-01T02:00:00Z")
        with pytest.raises(ValidationError):
            await book(manager, gpu.id, "2026-01-01T03:00:00Z", "2026-01-01T02:00:00Z")
        with pytest.raises(ValidationError):
            await book(manager, gpu.id, "soon", "2026-01-01T02:00:00Z")

        assert await manager.list_bookings() == []

    @pytest.mark.asyncio
    async def test_cancel_frees_interval(self, manager):
        gpu = await make_gpu(manager)
        first = await book(manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T02:00:00Z")

        cancelled = await manager.cancel_booking(first.id)
        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancelled_at is not None

        again = await book(manager, gpu.id, "2026-01-01T01:00:00Z", "2026-01-01T03:00:00Z")
        assert again.status == BookingStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_cancel_twice_keeps_first_timestamp(self, manager):
        gpu = await make_gpu(manager)
        booking = await book(manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T02:00:00Z")

        first = await manager.cancel_booking(booking.id)
        second = await manager.cancel_booking(booking.id)
        assert second.cancelled_at == first.cancelled_at

    @pytest.mark.asyncio
    async def test_cancel_missing(self, manager):
        with pytest.raises(NotFoundError):
            await manager.cancel_booking("book-missing")

    @pytest.mark.asyncio
    async def test_list_sorted_and_filtered(self, manager):
        """Test start-time ordering and the date range filter."""
        gpu = await make_gpu(manager)
        late = await book(manager, gpu.id, "2026-01-03T00:00:00Z", "2026-01-03T01:00:00Z")
        early = await book(
            manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T01:00:00Z", agent_id="trinity"
        )
        middle = await book(manager, gpu.id, "2026-01-02T00:00:00Z", "2026-01-02T01:00:00Z")

        assert [b.id for b in await manager.list_bookings()] == [early.id, middle.id, late.id]
        assert [b.id for b in await manager.list_bookings(agent_id="trinity")] == [early.id]

        in_range = await manager.list_bookings(
            from_date="2026-01-01T01:00:00Z", to_date="2026-01-02T00:00:00Z"
        )
        assert [b.id for b in in_range] == [early.id, middle.id]

        await manager.cancel_booking(middle.id)
        active = await manager.list_bookings(status="active")
        assert [b.id for b in active] == [early.id, late.id]

    @pytest.mark.asyncio
    async def test_resource_name_is_snapshot(self, manager):
        gpu = await make_gpu(manager)
        booking = await book(manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T01:00:00Z")

        await manager.update_resource(gpu.id, {"name": "GPU-Renamed"})
        stored = await manager.bookings.get(booking.id)
        assert stored.resource_name == "GPU-A"

    @pytest.mark.asyncio
    async def test_concurrent_overlapping_bookings(self, manager):
        """Test only one of two simultaneous overlapping requests wins."""
        gpu = await make_gpu(manager)

        results = await asyncio.gather(
            book(manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T02:00:00Z"),
            book(manager, gpu.id, "2026-01-01T01:00:00Z", "2026-01-01T03:00:00Z"),
            return_exceptions=True,
        )

        booked = [r for r in results if isinstance(r, Booking)]
        conflicts = [r for r in results if isinstance(r, BookingConflictError)]
        assert len(booked) == 1
        assert len(conflicts) == 1
        assert len(await manager.list_bookings()) == 1


# ============================================================================
# Cost Tests
# ============================================================================


class TestCosts:
    """Tests for cost recording and summaries."""

    @pytest.mark.asyncio
    async def test_summary_totals_are_additive(self, manager):
        await manager.record_cost(
            {"agent_id": "neo", "type": "api_call", "amount": 0.1, "resource_id": "res-1"}
        )
        await manager.record_cost({"agent_id": "neo", "type": "compute", "amount": 0.2})
        await manager.record_cost({"agent_id": "trinity", "type": "api_call", "amount": 0.3})

        summary = await manager.get_cost_summary()
        assert summary.total == pytest.approx(0.6)
        assert summary.by_agent["neo"] == pytest.approx(0.3)
        assert summary.by_agent["trinity"] == pytest.approx(0.3)
        assert summary.by_type["api_call"] == pytest.approx(0.4)
        assert summary.by_type["compute"] == pytest.approx(0.2)
        assert summary.by_resource == {"res-1": pytest.approx(0.1)}
        assert len(summary.items) == 3
        assert sum(summary.by_type.values()) == pytest.approx(summary.total)

    @pytest.mark.asyncio
    async def test_summary_filters(self, manager):
        await manager.record_cost({"agent_id": "neo", "type": "api_call", "amount": 1})
        await manager.record_cost({"agent_id": "trinity", "type": "api_call", "amount": 2})

        neo = await manager.get_cost_summary(agent_id="neo")
        assert neo.total == 1
        assert list(neo.by_agent) == ["neo"]

        assert (await manager.get_cost_summary(type="storage")).total == 0
        assert (await manager.get_cost_summary(from_date="2000-01-01T00:00:00Z")).total == 3
        assert (await manager.get_cost_summary(to_date="2000-01-01T00:00:00Z")).items == []

    @pytest.mark.asyncio
    async def test_invalid_date_filter(self, manager):
        with pytest.raises(ValidationError):
            await manager.get_cost_summary(from_date="yesterday")

    @pytest.mark.asyncio
    async def test_amount_coercion_and_defaults(self, manager):
        """Test numeric strings, bad amounts and negative corrections."""
        cost = await manager.record_cost({"type": "api_call", "amount": "0.25"})
        assert cost.amount == 0.25
        assert cost.currency == "USD"
        assert cost.id.startswith("cost-")

        bad = await manager.record_cost({"type": "api_call", "amount": "lots"})
        assert bad.amount == 0.0

        refund = await manager.record_cost({"type": "api_call", "amount": -0.25})
        assert refund.amount == -0.25
        assert (await manager.get_cost_summary()).total == 0

    @pytest.mark.asyncio
    async def test_type_required(self, manager):
        with pytest.raises(ValidationError):
            await manager.record_cost({"amount": 1})
        assert (await manager.get_cost_summary()).items == []


# ============================================================================
# Quota Tests
# ============================================================================


class TestQuotas:
    """Tests for quota tracking and admission checks."""

    @pytest.mark.asyncio
    async def test_usage_check_and_reset(self, manager):
        """Test the warn, deny, reset cycle on one quota."""
        quota = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 1000})
        assert quota.current_usage == 0
        assert quota.period.value == "monthly"
        assert quota.warning_threshold == 0.8

        result = await manager.update_quota_usage(quota.id, 850)
        assert result.quota.current_usage == 850
        data = result.to_dict()
        assert data["percentage"] == 85
        assert data["warning"] is True
        assert data["exceeded"] is False

        denied = await manager.check_quota("neo", "tokens", 200)
        assert denied.allowed is False
        assert denied.remaining == 150
        assert denied.reason == "Quota exceeded"

        allowed = await manager.check_quota("neo", "tokens", 100)
        assert allowed.allowed is True
        assert allowed.reason == "Within quota"

        reset = await manager.reset_quota(quota.id)
        assert reset.current_usage == 0
        assert (await manager.check_quota("neo", "tokens", 200)).allowed is True

    @pytest.mark.asyncio
    async def test_check_does_not_change_usage(self, manager):
        quota = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 100})
        await manager.update_quota_usage(quota.id, 40)

        first = await manager.check_quota("neo", "tokens", 10)
        second = await manager.check_quota("neo", "tokens", 10)
        assert first.to_dict() == second.to_dict()
        assert (await manager.quotas.get_quota(quota.id)).current_usage == 40

    @pytest.mark.asyncio
    async def test_no_quota_is_unlimited(self, manager):
        check = await manager.check_quota("neo", "tokens", 10**9)
        assert check.allowed is True
        assert check.reason == "No quota defined"

    @pytest.mark.asyncio
    async def test_agent_quota_takes_precedence_over_global(self, manager):
        global_quota = await manager.set_quota({"type": "tokens", "limit": 100})
        neo_quota = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 1000})
        assert global_quota.agent_id == "global"

        neo = await manager.check_quota("neo", "tokens", 500)
        assert neo.allowed is True
        assert neo.quota_id == neo_quota.id

        trinity = await manager.check_quota("trinity", "tokens", 500)
        assert trinity.allowed is False
        assert trinity.quota_id == global_quota.id

    @pytest.mark.asyncio
    async def test_get_includes_global(self, manager):
        await manager.set_quota({"type": "tokens", "limit": 100})
        await manager.set_quota({"agent_id": "neo", "type": "api_calls", "limit": 10})
        await manager.set_quota({"agent_id": "trinity", "type": "api_calls", "limit": 10})

        assert len(await manager.get_quotas()) == 3
        neo = await manager.get_quotas("neo")
        assert {q.agent_id for q in neo} == {"neo", "global"}

    @pytest.mark.asyncio
    async def test_set_validation(self, manager):
        with pytest.raises(ValidationError):
            await manager.set_quota({"type": "tokens", "limit": 0})
        with pytest.raises(ValidationError):
            await manager.set_quota({"type": "tokens", "limit": "many"})
        with pytest.raises(ValidationError):
            await manager.set_quota({"limit": 10})
        with pytest.raises(ValidationError):
            await manager.set_quota({"type": "tokens", "limit": 10, "period": "hourly"})
        with pytest.raises(ValidationError):
            await manager.set_quota({"type": "tokens", "limit": 10, "warning_threshold": 1.5})
        assert await manager.get_quotas() == []

    @pytest.mark.asyncio
    async def test_usage_on_missing_quota(self, manager):
        with pytest.raises(NotFoundError):
            await manager.update_quota_usage("quota-missing", 1)
        with pytest.raises(NotFoundError):
            await manager.reset_quota("quota-missing")

    @pytest.mark.asyncio
    async def test_exceeded_at_limit(self, manager):
        quota = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 100})
        result = await manager.update_quota_usage(quota.id, 100)
        assert result.quota.exceeded is True
        assert result.quota.percentage == 100

    @pytest.mark.asyncio
    async def test_negative_usage_correction(self, manager):
        """Test negative deltas lower usage and round halves up below zero too."""
        quota = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 100})
        await manager.update_quota_usage(quota.id, 50)

        corrected = await manager.update_quota_usage(quota.id, -20)
        assert corrected.quota.current_usage == 30
        assert corrected.to_dict()["percentage"] == 30

        small = await manager.set_quota({"agent_id": "neo", "type": "credits", "limit": 10})
        below_zero = await manager.update_quota_usage(small.id, -0.17)
        assert below_zero.quota.current_usage == pytest.approx(-0.17)
        assert below_zero.to_dict()["percentage"] == -2
        assert below_zero.quota.warning is False
        assert below_zero.quota.exceeded is False

    @pytest.mark.asyncio
    async def test_fractional_usage(self, manager):
        quota = await manager.set_quota({"agent_id": "neo", "type": "gpu_hours", "limit": 8})

        result = await manager.update_quota_usage(quota.id, 0.5)
        result = await manager.update_quota_usage(quota.id, 0.5)
        assert result.quota.current_usage == 1.0
        assert result.to_dict()["percentage"] == 13

        check = await manager.check_quota("neo", "gpu_hours", 7.5)
        assert check.allowed is False
        assert check.remaining == 7.0

    @pytest.mark.asyncio
    async def test_reserve(self, manager):
        """Test combined check-and-record."""
        quota = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 100})

        granted = await manager.reserve_quota("neo", "tokens", 60)
        assert granted.reserved is True
        assert granted.usage.quota.current_usage == 60

        denied = await manager.reserve_quota("neo", "tokens", 60)
        assert denied.reserved is False
        assert denied.check.allowed is False
        assert (await manager.quotas.get_quota(quota.id)).current_usage == 60

        unlimited = await manager.reserve_quota("neo", "gpu_hours", 5)
        assert unlimited.check.allowed is True
        assert unlimited.reserved is False

    @pytest.mark.asyncio
    async def test_concurrent_reservations_do_not_overshoot(self, manager):
        quota = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 100})

        results = await asyncio.gather(
            *(manager.reserve_quota("neo", "tokens", 30) for _ in range(5))
        )

        assert sum(1 for r in results if r.reserved) == 3
        assert (await manager.quotas.get_quota(quota.id)).current_usage == 90


# ============================================================================
# Credential Tests
# ============================================================================


class TestCredentials:
    """Tests for the credential vault."""

    @pytest.mark.asyncio
    async def test_value_never_listed(self, manager, temp_store_path):
        created = await manager.store_credential(
            {"name": "OpenAI", "type": "api_key", "service": "openai", "value": "sk-secret"}
        )
        assert "value" not in created
        assert created["has_value"] is True

        listed = await manager.list_credentials()
        assert len(listed) == 1
        assert "value" not in listed[0]
        assert "encrypted_value" not in listed[0]

        plain = await manager.get_credential(created["id"])
        assert "value" not in plain

        revealed = await manager.get_credential(created["id"], include_value=True)
        assert revealed["value"] == "sk-secret"

        on_disk = json.loads(
            (temp_store_path / CREDENTIALS / f"{created['id']}.json").read_text()
        )
        assert on_disk["encrypted_value"] == "sk-secret"

    @pytest.mark.asyncio
    async def test_missing_and_invalid(self, manager):
        assert await manager.get_credential("cred-missing") is None
        with pytest.raises(ValidationError):
            await manager.store_credential({"name": "X", "type": "carrier_pigeon"})
        with pytest.raises(ValidationError):
            await manager.store_credential({"value": "sk-secret"})
        with pytest.raises(ValidationError) as exc_info:
            await manager.store_credential({"name": ["OpenAI"], "value": "sk-secret"})
        assert exc_info.value.field == "name"
        assert await manager.list_credentials() == []

    @pytest.mark.asyncio
    async def test_delete(self, manager):
        created = await manager.store_credential({"name": "GitHub", "value": "ghp"})
        assert await manager.delete_credential(created["id"]) == {
            "success": True,
            "id": created["id"],
        }
        assert await manager.list_credentials() == []
        with pytest.raises(NotFoundError):
            await manager.delete_credential(created["id"])


# ============================================================================
# Manager Side-Effect Tests
# ============================================================================


class TestManagerSideEffects:
    """Tests for activity logging, events and metrics."""

    @pytest.mark.asyncio
    async def test_activity_logged(self, manager, temp_store_path):
        gpu = await make_gpu(manager)
        await book(manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T01:00:00Z")

        entries = manager.get_activity()
        assert [e.action for e in entries] == ["CREATED", "BOOKED"]
        assert "GPU-A" in entries[0].description
        assert entries[1].actor == "system"

        log_text = (temp_store_path / "logs" / "activity.log").read_text()
        assert "] BOOKED: Resource: GPU-A" in log_text

    @pytest.mark.asyncio
    async def test_failed_operation_has_no_side_effects(self, manager, events):
        _, received = events
        gpu = await make_gpu(manager)
        await book(manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T02:00:00Z")
        activity_before = len(manager.get_activity())
        events_before = len(received)

        with pytest.raises(BookingConflictError):
            await book(manager, gpu.id, "2026-01-01T01:00:00Z", "2026-01-01T03:00:00Z")

        assert len(manager.get_activity()) == activity_before
        assert len(received) == events_before

    @pytest.mark.asyncio
    async def test_events_published(self, manager, events):
        _, received = events
        gpu = await make_gpu(manager)
        booking = await book(manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T01:00:00Z")
        quota = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 100})
        await manager.update_quota_usage(quota.id, 85)
        await manager.update_quota_usage(quota.id, 15)

        types = [e.type for e in received]
        assert types == [
            "resource.created",
            "booking.created",
            "quota.updated",
            "quota.warning",
            "quota.warning",
            "quota.exceeded",
        ]
        assert received[1].data["id"] == booking.id
        assert received[-1].data["exceeded"] is True

    @pytest.mark.asyncio
    async def test_metrics(self, manager):
        gpu = await make_gpu(manager)
        await manager.create_resource({"name": "OpenAI", "type": "api", "status": "inactive"})
        await book(manager, gpu.id, "2020-01-01T00:00:00Z", "2020-01-01T01:00:00Z")
        await book(manager, gpu.id, "2099-01-01T00:00:00Z", "2099-01-01T01:00:00Z")
        await manager.record_cost({"type": "api_call", "amount": 1.234})
        await manager.record_cost({"type": "api_call", "amount": 2})
        near = await manager.set_quota({"agent_id": "neo", "type": "tokens", "limit": 100})
        await manager.set_quota({"agent_id": "neo", "type": "api_calls", "limit": 100})
        await manager.update_quota_usage(near.id, 90)

        metrics = await manager.get_metrics()
        assert metrics["resources"] == {
            "total": 2,
            "by_status": {"active": 1, "inactive": 1},
            "by_type": {"compute": 1, "api": 1},
        }
        assert metrics["bookings"] == {"total": 2, "active": 1}
        assert metrics["costs"] == {"total_records": 2, "monthly_spend": 3.23}
        assert metrics["quotas"]["total"] == 2
        assert metrics["quotas"]["near_limit"] == 1
        assert metrics["quotas"]["warning_items"] == [
            {"id": near.id, "type": "tokens", "agent_id": "neo", "percentage": 90}
        ]

    @pytest.mark.asyncio
    async def test_reads_are_idempotent(self, manager):
        gpu = await make_gpu(manager)
        await book(manager, gpu.id, "2026-01-01T00:00:00Z", "2026-01-01T01:00:00Z")
        await manager.record_cost({"type": "api_call", "amount": 1})

        assert await manager.list_resources() == await manager.list_resources()
        assert await manager.list_bookings() == await manager.list_bookings()
        first = await manager.get_cost_summary()
        second = await manager.get_cost_summary()
        assert first.to_dict() == second.to_dict()


# ============================================================================
# Event Broadcaster Tests
# ============================================================================


class TestEventBroadcaster:
    """Tests for subscriber fan-out."""

    @pytest.mark.asyncio
    async def test_sync_and_async_subscribers(self):
        broadcaster = EventBroadcaster()
        seen = []

        async def async_subscriber(event):
            seen.append(("async", event.type))

        broadcaster.subscribe(lambda event: seen.append(("sync", event.type)))
        broadcaster.subscribe(async_subscriber)

        event = await broadcaster.publish("resource.created", {"id": "res-1"})
        assert event.to_dict()["data"] == {"id": "res-1"}
        assert seen == [("sync", "resource.created"), ("async", "resource.created")]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self):
        broadcaster = EventBroadcaster()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        broadcaster.subscribe(broken)
        broadcaster.subscribe(seen.append)

        await broadcaster.publish("booking.created", {})
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        broadcaster = EventBroadcaster()
        seen = []
        unsubscribe = broadcaster.subscribe(seen.append)
        assert broadcaster.subscriber_count == 1

        unsubscribe()
        await broadcaster.publish("booking.created", {})
        assert seen == []
        assert broadcaster.subscriber_count == 0


# ============================================================================
# Activity Log Tests
# ============================================================================


class TestActivityLog:
    """Tests for the append-only activity log."""

    def test_line_format(self):
        entry = ActivityEntry(
            timestamp="2026-02-14T10:00:00+00:00",
            actor="neo",
            action="BOOKED",
            description="Resource: GPU-A",
        )
        line = entry.to_line()
        assert line == "2026-02-14T10:00:00+00:00 [neo] BOOKED: Resource: GPU-A"
        assert ActivityEntry.from_line(line) == entry
        assert ActivityEntry.from_line("garbage") is None

    def test_tail_limit_and_callbacks(self, temp_store_path):
        log = ActivityLog(temp_store_path / "activity.log")
        seen = []
        log.on_log(seen.append)

        for i in range(5):
            log.log("neo", "CREATED", f"Resource: r{i}")

        tail = log.tail(2)
        assert [e.description for e in tail] == ["Resource: r3", "Resource: r4"]
        assert len(seen) == 5

    def test_write_failure_is_not_fatal(self, temp_store_path):
        log = ActivityLog(temp_store_path / "activity.log")
        with patch("builtins.open", side_effect=OSError("read-only")):
            entry = log.log("neo", "CREATED", "Resource: GPU-A")
        assert entry.action == "CREATED"

    def test_memory_only(self):
        log = ActivityLog(keep=3)
        for i in range(5):
            log.log("", "UPDATED", f"line\n{i}")

        tail = log.tail()
        assert len(tail) == 3
        assert tail[-1].actor == "system"
        assert tail[-1].description == "line 4"


# ============================================================================
# Keyed Lock Tests
# ============================================================================


class TestKeyedLocks:
    """Tests for per-key locks."""

    @pytest.mark.asyncio
    async def test_same_key_serialised(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("res-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        locks = KeyedLocks()

        for i in range(20):
            async with locks.hold(f"quota-{i}"):
                assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_kept_while_waiters_remain(self):
        locks = KeyedLocks()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with locks.hold("res-1"):
                inside.set()
                await release.wait()

        async def second():
            async with locks.hold("res-1"):
                pass

        task_a = asyncio.create_task(first())
        await inside.wait()
        task_b = asyncio.create_task(second())
        await asyncio.sleep(0)
        assert len(locks) == 1

        release.set()
        await asyncio.gather(task_a, task_b)
        assert len(locks) == 0


# ============================================================================
# Lifecycle Tests
# ============================================================================


class TestLifecycle:
    """Tests for singleton registration and reset."""

    @pytest.mark.asyncio
    async def test_singletons_register_and_reset(self, temp_store_path):
        import edith.resources.manager as manager_module
        import edith.resources.store as store_module

        lifecycle.reset_all()
        reset_resource_manager()
        reset_resource_store()

        manager = get_resource_manager(temp_store_path)
        assert get_resource_manager() is manager
        assert {"resource_manager", "resource_store", "event_broadcaster"} <= set(
            lifecycle.registered()
        )

        await lifecycle.shutdown_all()
        assert manager_module._manager_instance is None
        assert store_module._store_instance is None
        assert lifecycle.registered() == []
