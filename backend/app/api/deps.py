"""FastAPI dependencies for the API layer."""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.security import decode_access_token
from app.database import get_db
from app.models import Conversation, User, UserRole
from connectrix.realtime.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    RelayError,
    ValidationError,
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def get_token_subject(token: str = Depends(oauth2_scheme)) -> str:
    """Return the user id carried by the bearer token."""

    payload = decode_access_token(token)
    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return sub


def get_current_user(
    subject: str = Depends(get_token_subject),
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the provisioned user behind the bearer token."""

    user = db.get(User, subject)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user


def is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN


def ensure_self_or_admin(user_id: str, current_user: User) -> None:
    if current_user.id != user_id and not is_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def ensure_participant_or_admin(conversation: Conversation, current_user: User) -> None:
    if not conversation.has_user(current_user.id) and not is_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def http_error(exc: RelayError) -> HTTPException:
    """Translate a relay error into the matching HTTP error."""

    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, AuthorizationError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, AuthenticationError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HTTPException(status_code=code, detail=exc.detail)
