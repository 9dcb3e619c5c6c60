"""Shared request dependencies: session auth, roles and webhook secrets."""
import hmac

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.models.base import get_db
from app.models.user import User
from app.services import auth_service


def session_token(request: Request) -> str | None:
    token = request.cookies.get("session_token")
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency: the logged-in user, or 401."""
    token = session_token(request)
    user = auth_service.validate_session(db, token) if token else None
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    request.state.user = user
    return user


def require_staff(user: User = Depends(get_current_user)) -> User:
    """Dependency: staff or admin, else 403."""
    if not user.has_role("staff"):
        raise HTTPException(status_code=403, detail="Staff access required")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency: admin only, else 403."""
    if not user.has_role("admin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def provided_webhook_secret(request: Request) -> str:
    """Secret from x-webhook-secret or an Authorization: Bearer header."""
    explicit = request.headers.get("x-webhook-secret", "").strip()
    if explicit:
        return explicit
    scheme, _, value = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer":
        return value.strip()
    return ""


def check_webhook_secret(request: Request, expected: str | None, name: str) -> None:
    """
    Enforce a shared webhook secret.

    500 when the secret is not configured, 401 when missing or wrong.
    """
    if not expected:
        raise HTTPException(status_code=500, detail=f"{name} is not configured")
    provided = provided_webhook_secret(request)
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized webhook request")
