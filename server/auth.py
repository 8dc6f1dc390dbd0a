"""Shared-password login backed by a signed session cookie.

There is a single login identity. Whoever knows ``SIMPLE_AUTH_PASSWORD``
signs in as it; it is an admin when its open id equals ``OWNER_OPEN_ID``.
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from config.database import get_session
from config.settings import Settings, get_settings
from services.shared import repository
from services.shared.models import User

logger = logging.getLogger(__name__)

SIMPLE_OPEN_ID = "simple-auth-user"
SIMPLE_USER_NAME = "SDG User"
SESSION_KEY = "open_id"
SESSION_COOKIE = "sdg_session"
ONE_YEAR_SECONDS = 365 * 24 * 60 * 60


def check_password(candidate: str, settings: Settings) -> bool:
    """Constant-time password check; no configured password means no login."""
    if not settings.simple_auth_password or not candidate:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), settings.simple_auth_password.encode("utf-8"))


def login_user(request: Request, db: Session, settings: Settings) -> User:
    """Upsert the shared login user and bind it to the session."""
    user = repository.upsert_user(
        db,
        SIMPLE_OPEN_ID,
        owner_open_id=settings.owner_open_id,
        name=SIMPLE_USER_NAME,
        email=None,
        login_method="password",
    )
    request.session[SESSION_KEY] = user.open_id
    logger.info(f"User {user.open_id} signed in (role={user.role})")
    return user


def logout_user(request: Request) -> None:
    request.session.clear()


def get_current_user(request: Request, db: Session = Depends(get_session)) -> Optional[User]:
    """Signed-in user, or None for anonymous requests."""
    open_id = request.session.get(SESSION_KEY)
    if not open_id:
        return None
    return repository.get_user_by_open_id(db, open_id)


def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Please login")
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
