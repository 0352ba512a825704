import logging
import secrets
import bcrypt
from datetime import datetime, timedelta
from typing import Optional
from sqlmodel import Session, select, or_

from .config import SESSION_EXPIRE_DAYS
from .models import User, Session as SessionModel

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt. Truncates to 72 bytes for bcrypt compatibility."""
    # Bcrypt has a 72-byte limit on the password bytes
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > 72:
        password_bytes = password_bytes[:72]

    hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt())
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    password_bytes = plain_password.encode('utf-8')
    if len(password_bytes) > 72:
        password_bytes = password_bytes[:72]

    hashed_bytes = hashed_password.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def generate_session_token() -> str:
    """Generate a secure random session token."""
    return secrets.token_urlsafe(32)


def create_session(db: Session, user_id: int) -> SessionModel:
    """Open a session for a user."""
    session = SessionModel(
        user_id=user_id,
        session_token=generate_session_token(),
        expires_at=datetime.utcnow() + timedelta(days=SESSION_EXPIRE_DAYS)
    )

    db.add(session)
    db.commit()
    db.refresh(session)

    logger.info("Opened session for user %s", user_id)
    return session


def get_user_by_session_token(db: Session, session_token: str) -> Optional[User]:
    """Hydrate the user behind a session token.

    Expired sessions are cleared on sight and yield None.
    """
    statement = select(SessionModel).where(SessionModel.session_token == session_token)
    session = db.exec(statement).first()

    if not session:
        return None

    if session.expires_at < datetime.utcnow():
        db.delete(session)
        db.commit()
        logger.info("Cleared expired session for user %s", session.user_id)
        return None

    return db.get(User, session.user_id)


def delete_session(db: Session, session_token: str) -> bool:
    """Invalidate a session (logout)."""
    statement = select(SessionModel).where(SessionModel.session_token == session_token)
    session = db.exec(statement).first()

    if session:
        db.delete(session)
        db.commit()
        return True

    return False


def get_user_by_login(db: Session, login: str) -> Optional[User]:
    """Look a user up by username or email."""
    statement = select(User).where(or_(User.username == login, User.email == login))
    return db.exec(statement).first()


def authenticate_user(db: Session, login: str, password: str) -> Optional[User]:
    """Authenticate a user by username (or email) and password."""
    user = get_user_by_login(db, login)

    if not user:
        return None

    if not verify_password(password, user.password_hash):
        return None

    return user


def create_user(db: Session, username: str, email: str, password: str) -> User:
    """Create a new user."""
    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password)
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
