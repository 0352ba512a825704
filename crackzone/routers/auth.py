import logging
import re
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, or_

from ..auth import authenticate_user, create_session, create_user, delete_session
from ..config import SESSION_COOKIE_NAME, SESSION_EXPIRE_DAYS
from ..database import get_session
from ..dependencies import get_current_user, get_session_token
from ..models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: str
    password: str = Field(min_length=6, max_length=72)


class LoginRequest(BaseModel):
    username: str
    password: str


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    created_at: datetime


class SessionResponse(BaseModel):
    token: str
    user: UserResponse


def _open_session(response: Response, db: Session, user: User) -> dict:
    # Read before create_session commits and expires the instance
    user_data = UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        created_at=user.created_at
    )
    session = create_session(db, user.id)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session.session_token,
        httponly=True,
        max_age=SESSION_EXPIRE_DAYS * 24 * 60 * 60,
        samesite="lax"
    )
    return {"token": session.session_token, "user": user_data}


def _existing_field(db: Session, username: str, email: str) -> Optional[str]:
    """Which of username/email is already taken, if any."""
    existing = db.exec(
        select(User).where(or_(User.username == username, User.email == email))
    ).first()
    if existing is None:
        return None
    return "Username" if existing.username == username else "Email"


def _already_exists(field: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=f"{field} already exists"
    )


@router.post("/register", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    response: Response,
    db: Session = Depends(get_session)
):
    """Register a player and open a session."""
    if not re.match(EMAIL_PATTERN, data.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid email format"
        )

    field = _existing_field(db, data.username, data.email)
    if field:
        raise _already_exists(field)

    try:
        user = create_user(db, data.username, data.email, data.password)
    except IntegrityError:
        # A concurrent registration took the name between check and insert
        db.rollback()
        raise _already_exists(_existing_field(db, data.username, data.email) or "Username")

    logger.info("Registered user %s (%s)", user.id, user.username)
    return _open_session(response, db, user)


@router.post("/login", response_model=SessionResponse)
async def login(
    data: LoginRequest,
    response: Response,
    db: Session = Depends(get_session)
):
    user = authenticate_user(db, data.username, data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password"
        )
    return _open_session(response, db, user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    db: Session = Depends(get_session)
):
    """Invalidate the caller's session."""
    token = get_session_token(request)
    if token:
        delete_session(db, token)

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    """Verify the session and return its user."""
    return UserResponse(
        id=current_user.id,
        username=current_user.username,
        email=current_user.email,
        created_at=current_user.created_at
    )
