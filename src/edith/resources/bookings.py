"""Booking ledger: time-bounded allocations with overlap detection.

A new interval [start, end) conflicts with an active booking [s, e) on the
same resource iff ``start < e and end > s``. Back-to-back bookings (new
start == existing end) do not conflict.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from edith.resources.catalog import ResourceCatalog
from edith.resources.errors import (
    BookingConflictError,
    NotBookableError,
    NotFoundError,
    ValidationError,
)
from edith.resources.locks import KeyedLocks
from edith.resources.models import Booking, BookingStatus, now_iso, parse_iso
from edith.resources.protocol import BOOKINGS, ResourceStoreProtocol

logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=UTC)


def _parse_field(data: dict[str, Any], field: str) -> datetime:
    value = data.get(field)
    if not value:
        raise ValidationError(f"Booking {field} is required", field=field)
    try:
        return parse_iso(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}", field=field) from None


def _start_key(booking: Booking) -> datetime:
    try:
        return parse_iso(booking.start_time)
    except ValueError:
        return _FAR_FUTURE


def _end_key(booking: Booking) -> datetime:
    try:
        return parse_iso(booking.end_time)
    except ValueError:
        return _FAR_FUTURE


class BookingLedger:
    """Allocate and cancel bookings against bookable resources."""

    def __init__(self, store: ResourceStoreProtocol, catalog: ResourceCatalog):
        self._store = store
        self._catalog = catalog
        self._locks = KeyedLocks()

    async def list(
        self,
        resource_id: str | None = None,
        agent_id: str | None = None,
        status: str | None = None,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> list[Booking]:
        """List bookings sorted by start_time (earliest first).

        from_date/to_date keep bookings that touch the range, boundaries
        included: a booking ending exactly at from_date is kept.
        """
        bookings = [Booking.from_dict(d) for d in await self._store.read_all(BOOKINGS)]

        if resource_id:
            bookings = [b for b in bookings if b.resource_id == resource_id]
        if agent_id:
            bookings = [b for b in bookings if b.agent_id == agent_id]
        if status:
            bookings = [b for b in bookings if b.status.value == status]
        if from_date:
            lower = _parse_field({"from_date": from_date}, "from_date")
            bookings = [b for b in bookings if _end_key(b) >= lower]
        if to_date:
            upper = _parse_field({"to_date": to_date}, "to_date")
            bookings = [b for b in bookings if _start_key(b) <= upper]

        bookings.sort(key=_start_key)
        return bookings

    async def get(self, booking_id: str) -> Booking | None:
        """Get a booking by ID."""
        data = await self._store.read(BOOKINGS, booking_id)
        return Booking.from_dict(data) if data is not None else None

    async def book(self, data: dict[str, Any]) -> Booking:
        """Book a resource for an interval.

        Raises:
            ValidationError: Missing/invalid times, or end not after start.
            NotFoundError: The resource does not exist.
            NotBookableError: The resource has bookable=False.
            BookingConflictError: The interval overlaps an active booking.
        """
        resource_id = data.get("resource_id")
        if not resource_id:
            raise ValidationError("Booking resource_id is required", field="resource_id")

        resource = await self._catalog.get(resource_id)
        if resource is None:
            raise NotFoundError("resource", resource_id)
        if not resource.bookable:
            raise NotBookableError(resource.id, resource.name)

        if not data.get("agent_id"):
            raise ValidationError("Booking agent_id is required", field="agent_id")
        start = _parse_field(data, "start_time")
        end = _parse_field(data, "end_time")
        if end <= start:
            raise ValidationError(
                f"Booking end_time must be after start_time "
                f"({data['start_time']} - {data['end_time']})",
                field="end_time",
            )

        async with self._locks.hold(resource_id):
            existing = await self.list(resource_id=resource_id, status=BookingStatus.ACTIVE.value)
            for other in existing:
                try:
                    collides = other.overlaps(start, end)
                except ValueError:
                    logger.warning(f"Skipping booking {other.id} with unreadable interval")
                    continue
                if collides:
                    raise BookingConflictError(other.id, other.start_time, other.end_time)

            booking = Booking(
                resource_id=resource.id,
                resource_name=resource.name,
                agent_id=data["agent_id"],
                start_time=data["start_time"],
                end_time=data["end_time"],
                purpose=data.get("purpose") or "",
                booked_by=data.get("booked_by") or "system",
            )
            if data.get("id"):
                booking.id = data["id"]
            await self._store.write(BOOKINGS, booking.id, booking.to_dict())

        logger.info(
            f"Booked {resource.name} for {booking.agent_id}: "
            f"{booking.start_time} - {booking.end_time}"
        )
        return booking

    async def cancel(self, booking_id: str) -> Booking:
        """Cancel a booking. Cancelling twice keeps the first cancelled_at."""
        booking = await self.get(booking_id)
        if booking is None:
            raise NotFoundError("booking", booking_id)

        if booking.status == BookingStatus.CANCELLED:
            logger.debug(f"Booking {booking_id} already cancelled")
            return booking

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = now_iso()
        await self._store.write(BOOKINGS, booking.id, booking.to_dict())

        logger.info(f"Cancelled booking {booking_id}")
        return booking
