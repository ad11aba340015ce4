from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

import models
from database import get_db
from errors import Forbidden, NotAuthenticated
from rate_limiter import LoginRateLimiter
from sessions import SESSION_COOKIE, resolve_session


@dataclass
class RequestContext:
    user: Optional[models.User] = None
    token: Optional[str] = None


def get_request_context(request: Request, db: Session = Depends(get_db)) -> RequestContext:
    token = request.cookies.get(SESSION_COOKIE)
    return RequestContext(user=resolve_session(db, token), token=token)


def require_auth(ctx: RequestContext = Depends(get_request_context)) -> models.User:
    if ctx.user is None:
        raise NotAuthenticated()
    return ctx.user


def require_role(*roles: str):
    """Dependency allowing only the listed roles; there is no role hierarchy."""
    allowed = frozenset(roles)

    def checker(ctx: RequestContext = Depends(get_request_context)) -> models.User:
        if ctx.user is None:
            raise NotAuthenticated()
        if ctx.user.role not in allowed:
            raise Forbidden()
        return ctx.user

    return checker


def get_rate_limiter(request: Request) -> LoginRateLimiter:
    return request.app.state.login_rate_limiter


def get_client_ip(request: Request) -> str:
    return (
        request.headers.get("CF-Connecting-IP")
        or request.headers.get("x-forwarded-for")
        or (request.client.host if request.client else None)
        or "unknown"
    )
