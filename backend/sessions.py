"""
Cookie sessions: issue, resolve, revoke.

Only ``hash_token(token)`` is stored. A session is valid while its row exists and
``expires_at`` is in the future; logout deletes the row, nothing else revokes it.
"""
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import auth
import models
from timeutil import utcnow

logger = logging.getLogger(__name__)

SESSION_COOKIE = "cafe_session"
SESSION_DAYS = int(os.getenv("SESSION_DAYS", "45"))
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def session_expiry(days: int = SESSION_DAYS, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(days=days)


def is_session_expired(expires_at: datetime, now: Optional[datetime] = None) -> bool:
    return expires_at <= (now or utcnow())


def issue_session(db: Session, user_id: int, secret: str = None) -> str:
    """Persist a new session for the user and return the raw token. Caller commits."""
    token = auth.generate_token()
    now = utcnow()
    db.add(models.UserSession(
        user_id=user_id,
        token_hash=auth.hash_token(token, secret or auth.SESSION_SECRET),
        expires_at=session_expiry(now=now),
        created_at=now,
        last_seen_at=now,
    ))
    return token


def resolve_session(db: Session, token: Optional[str], secret: str = None) -> Optional[models.User]:
    """Return the active user owning the token, or None for anonymous."""
    if not token:
        return None
    token_hash = auth.hash_token(token, secret or auth.SESSION_SECRET)
    now = utcnow()
    session = (
        db.query(models.UserSession)
        .filter(models.UserSession.token_hash == token_hash, models.UserSession.expires_at > now)
        .first()
    )
    if not session:
        return None
    user = (
        db.query(models.User)
        .filter(models.User.id == session.user_id, models.User.is_active.is_(True))
        .first()
    )
    if not user:
        return None
    # last-write-wins; a lost touch is harmless
    try:
        session.last_seen_at = now
        db.commit()
    except SQLAlchemyError:
        logger.warning("Could not refresh last_seen_at for session of user %s", user.id, exc_info=True)
        db.rollback()
    return user


def revoke_session(db: Session, token: Optional[str], secret: str = None) -> None:
    if not token:
        return
    token_hash = auth.hash_token(token, secret or auth.SESSION_SECRET)
    db.query(models.UserSession).filter(models.UserSession.token_hash == token_hash).delete(
        synchronize_session=False
    )
    db.commit()


def _is_secure(request: Request) -> bool:
    return request.url.scheme == "https" or ENVIRONMENT == "production"


def set_session_cookie(request: Request, response: Response, token: Optional[str]) -> None:
    """Set the session cookie, or clear it with an epoch expiry when token is None."""
    if token:
        expires = datetime.now(timezone.utc) + timedelta(days=SESSION_DAYS)
    else:
        expires = _EPOCH
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token or "",
        expires=expires,
        path="/",
        httponly=True,
        samesite="lax",
        secure=_is_secure(request),
    )
