"""Realtime relay building blocks.

Wiring and lifecycle live in :mod:`connectrix.realtime.managers`; import it
directly since it depends on the application's database and settings.
"""

from .errors import (  # noqa: F401
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    PersistenceError,
    RelayError,
    ValidationError,
)

__all__ = [
    "RelayError",
    "AuthenticationError",
    "AuthorizationError",
    "PersistenceError",
    "NotFoundError",
    "ValidationError",
]
