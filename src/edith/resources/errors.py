"""Resource manager exceptions.

Created: 2026-02-14

Every error carries a message that names the offending field, id or
interval, so API callers can act on ``str(exc)`` without a traceback.
The API layer maps them to status codes (see ``api.py``).
"""


class ResourceError(Exception):
    """Base class for resource manager errors."""


class NotFoundError(ResourceError):
    """A referenced record does not exist."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind.capitalize()} not found: {record_id}")


class ValidationError(ResourceError):
    """Input is missing a required field or breaks a business rule."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotBookableError(ValidationError):
    """Booking attempted against a resource with bookable=False."""

    def __init__(self, resource_id: str, resource_name: str):
        self.resource_id = resource_id
        super().__init__(f"Resource is not bookable: {resource_name or resource_id}")


class ConflictError(ResourceError):
    """The request collides with an existing record."""


class BookingConflictError(ConflictError):
    """A new booking overlaps an active booking on the same resource."""

    def __init__(self, booking_id: str, start_time: str, end_time: str):
        self.booking_id = booking_id
        self.start_time = start_time
        self.end_time = end_time
        super().__init__(f"Booking conflict with {booking_id} ({start_time} - {end_time})")


class StorageError(ResourceError):
    """The storage backend failed to read or write."""
