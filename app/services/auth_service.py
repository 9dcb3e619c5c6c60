"""Authentication service: password hashing, sessions, user management"""
import secrets
from datetime import datetime, timedelta

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.models.user import ROLE_ORDER, User, UserSession
from app.config import get_settings
from app.utils.logger import log

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ROLES = ROLE_ORDER
MIN_PASSWORD_LENGTH = 8


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def authenticate(db: Session, email: str, password: str) -> User | None:
    """Verify credentials and return user, or None."""
    user = db.query(User).filter(User.email == email.lower().strip(), User.is_active == True).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    user.last_login = datetime.utcnow()
    db.commit()
    return user


def create_session(db: Session, user_id: int) -> str:
    """Create a new session token for the user."""
    settings = get_settings()
    token = secrets.token_hex(32)
    session = UserSession(
        user_id=user_id,
        token=token,
        expires_at=datetime.utcnow() + timedelta(hours=settings.session_duration_hours),
    )
    db.add(session)
    db.commit()
    return token


def validate_session(db: Session, token: str) -> User | None:
    """Return the user for a valid, non-expired session token."""
    session = db.query(UserSession).filter(UserSession.token == token).first()
    if not session or session.is_expired():
        return None
    user = session.user
    return user if user and user.is_active else None


def delete_session(db: Session, token: str) -> None:
    """Remove a session (logout)."""
    db.query(UserSession).filter(UserSession.token == token).delete()
    db.commit()


def cleanup_expired(db: Session) -> int:
    """Delete expired sessions. Returns count removed."""
    count = db.query(UserSession).filter(UserSession.expires_at <= datetime.utcnow()).delete()
    db.commit()
    return count


def create_user(
    db: Session,
    email: str,
    password: str,
    display_name: str | None = None,
    role: str = "user",
) -> User:
    """Create a new user account. Raises ValueError on a bad role, email or password."""
    if role not in ROLES:
        raise ValueError(f"Unknown role '{role}'")
    if "@" not in (email or ""):
        raise ValueError("A valid email address is required")
    _check_password(password)
    user = User(
        email=email.lower().strip(),
        password_hash=hash_password(password),
        display_name=display_name,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _check_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def change_password(
    db: Session,
    user: User,
    current_password: str,
    new_password: str,
    keep_token: str | None = None,
) -> int:
    """
    Replace a user's password after checking the current one.

    Every other session of the user is signed out. Returns how many were.
    """
    if not verify_password(current_password, user.password_hash):
        raise ValueError("Current password is incorrect")
    _check_password(new_password)
    user.password_hash = hash_password(new_password)
    others = db.query(UserSession).filter(UserSession.user_id == user.id)
    if keep_token:
        others = others.filter(UserSession.token != keep_token)
    removed = others.delete()
    db.commit()
    log.info(f"Password changed for {user.email}, {removed} other sessions ended")
    return removed


def set_role(db: Session, user: User, role: str) -> User:
    if role not in ROLES:
        raise ValueError(f"Unknown role '{role}'")
    user.role = role
    db.commit()
    log.info(f"Role of {user.email} set to {role}")
    return user


def deactivate_user(db: Session, user: User) -> int:
    """Disable the account and end its sessions. Returns sessions removed."""
    user.is_active = False
    removed = db.query(UserSession).filter(UserSession.user_id == user.id).delete()
    db.commit()
    log.info(f"Deactivated {user.email}, {removed} sessions ended")
    return removed


def seed_initial_user(db: Session) -> None:
    """Create the first admin user from env vars if no users exist."""
    settings = get_settings()
    if not settings.initial_admin_email or not settings.initial_admin_password:
        return
    # Skip if any users already exist
    if db.query(User).first():
        return
    create_user(db, settings.initial_admin_email, settings.initial_admin_password, "Admin", role="admin")
    log.info(f"Seeded initial admin user: {settings.initial_admin_email}")
