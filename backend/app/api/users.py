"""User provisioning endpoint used after identity-provider sign-in."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_token_subject
from app.database import get_db
from app.models import User
from app.schemas import GoogleUserUpsert, UserRead

router = APIRouter(prefix="/users", tags=["users"])

logger = logging.getLogger(__name__)


def _split_display_name(display_name: str | None) -> tuple[str | None, str | None]:
    if not display_name:
        return None, None
    first, _, last = display_name.strip().partition(" ")
    return first or None, last.strip() or None


@router.post("/google", response_model=UserRead)
def upsert_google_user(
    payload: GoogleUserUpsert,
    subject: str = Depends(get_token_subject),
    db: Session = Depends(get_db),
) -> UserRead:
    """Create or update the caller's user record."""

    if not payload.uid or not payload.email or payload.role is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="uid, email and role are required",
        )
    if payload.uid != subject:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    fallback_first, fallback_last = _split_display_name(payload.display_name)
    user = db.get(User, payload.uid)
    if user is None:
        user = User(id=payload.uid, email=payload.email, role=payload.role, provider="google")
        db.add(user)
        logger.info("Provisioned user %s", payload.uid)
    user.email = payload.email
    user.role = payload.role
    user.first_name = payload.first_name or fallback_first or user.first_name
    user.last_name = payload.last_name or fallback_last or user.last_name
    if payload.profile_picture is not None:
        user.profile_picture = payload.profile_picture
    db.commit()
    db.refresh(user)
    return UserRead.model_validate(user)
