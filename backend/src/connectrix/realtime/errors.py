"""Error taxonomy for the realtime relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for failures raised while handling a realtime event."""

    client_message = "Request failed"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.client_message)
        self.detail = detail or self.client_message


class AuthenticationError(RelayError):
    """Token missing, invalid, expired or not matching the claimed user."""

    client_message = "Authentication failed"


class AuthorizationError(RelayError):
    """Caller acted on a resource it does not own."""

    client_message = "Not allowed"


class ValidationError(RelayError):
    """Malformed payload or empty message body; nothing was persisted."""

    client_message = "Invalid payload"


class PersistenceError(RelayError):
    """Store write failed; the relay does not retry."""

    client_message = "Failed to send message"


class NotFoundError(RelayError):
    """Referenced record is missing. Callers log and skip instead of creating it."""

    client_message = "Not found"
