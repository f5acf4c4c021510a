"""Schemas related to user provisioning."""

from datetime import datetime

from pydantic import Field

from app.models.enums import UserRole
from app.schemas.common import CamelModel


class GoogleUserUpsert(CamelModel):
    """Profile pushed by the client after a Google sign-in.

    ``uid``, ``email`` and ``role`` are required; the endpoint reports missing
    values with a 400 to match what the web client expects.
    """

    uid: str | None = Field(default=None, max_length=128)
    email: str | None = Field(default=None, max_length=255)
    role: UserRole | None = None
    first_name: str | None = Field(default=None, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)
    profile_picture: str | None = Field(default=None, max_length=1024)
    display_name: str | None = Field(
        default=None,
        description="Used to derive first/last name when those are not provided.",
    )


class UserRead(CamelModel):
    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    profile_picture: str | None = None
    role: UserRole
    provider: str
    online: bool
    last_seen: datetime | None = None
    created_at: datetime
    updated_at: datetime
