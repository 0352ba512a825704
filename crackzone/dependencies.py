from typing import Optional
from fastapi import Request, Depends, HTTPException, status
from sqlmodel import Session

from .auth import get_user_by_session_token
from .config import SESSION_COOKIE_NAME
from .database import get_session
from .models.user import User
from .services.events import EventSink, NotificationSink


def get_session_token(request: Request) -> Optional[str]:
    """Read the session token from the Authorization header or the cookie."""
    authorization = request.headers.get("Authorization")
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            return token.strip()
    return request.cookies.get(SESSION_COOKIE_NAME)


async def get_current_user_optional(
    token: Optional[str] = Depends(get_session_token),
    db: Session = Depends(get_session)
) -> Optional[User]:
    """Get the current user from the session token, if any."""
    if not token:
        return None
    user = get_user_by_session_token(db, token)
    # Close the lookup's read transaction before the handler runs
    db.commit()
    return user


async def get_current_user(
    current_user: Optional[User] = Depends(get_current_user_optional)
) -> User:
    """Require an authenticated user."""
    if not current_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return current_user


def get_event_sink(db: Session = Depends(get_session)) -> EventSink:
    """Sink receiving committed domain events."""
    return NotificationSink(db)
