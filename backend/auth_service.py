import logging
import os

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import auth
import models
from database import get_db
from dependencies import (
    RequestContext,
    get_client_ip,
    get_rate_limiter,
    get_request_context,
    require_auth,
)
from errors import Conflict, InternalFailure, NotAuthenticated, NotImplementedYet, RateLimited
from loyalty import build_user_profile
from rate_limiter import LoginRateLimiter
from schemas import CustomerRegister, PasswordChange, UserLogin
from sessions import issue_session, revoke_session, set_session_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register-customer")
def register_customer(data: CustomerRegister, request: Request, response: Response,
                      db: Session = Depends(get_db)):
    existing = db.query(models.User).filter(models.User.phone == data.phone).first()
    if existing:
        raise Conflict("Phone already registered")

    password = auth.generate_temp_password()
    salt = auth.generate_salt()
    try:
        user = models.User(
            role="customer",
            name=data.name,
            email=data.email,
            phone=data.phone,
            username=data.phone,
            password_hash=auth.hash_password(password, salt, auth.PASSWORD_PEPPER),
            password_salt=salt,
            must_change_password=False,
            is_active=True,
        )
        db.add(user)
        db.flush()
        db.add(models.LoyaltyPoints(user_id=user.id, points_total=0))
        token = issue_session(db, user.id)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Phone already registered")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Customer registration failed")
        raise InternalFailure("Registration failed")

    db.refresh(user)
    logger.info("Registered customer %s", user.id)
    set_session_cookie(request, response, token)
    return {"user": build_user_profile(db, user), "tempPassword": password}


@router.post("/login")
def login(data: UserLogin, request: Request, response: Response, db: Session = Depends(get_db),
          limiter: LoginRateLimiter = Depends(get_rate_limiter)):
    identifier = data.login_identifier
    ip = get_client_ip(request)
    if limiter.is_limited(ip):
        logger.warning("Login rate limit hit for %s", ip)
        raise RateLimited()

    user = (
        db.query(models.User)
        .filter(or_(models.User.phone == identifier, models.User.username == identifier),
                models.User.is_active.is_(True))
        .first()
    )
    if not user or not auth.verify_password(data.password, user.password_salt, auth.PASSWORD_PEPPER,
                                            user.password_hash):
        limiter.record_failure(ip)
        logger.warning("Failed login for %r from %s", identifier, ip)
        raise NotAuthenticated("Invalid credentials")

    token = issue_session(db, user.id)
    db.commit()
    set_session_cookie(request, response, token)
    return {"user": build_user_profile(db, user)}


@router.post("/logout")
def logout(request: Request, response: Response, ctx: RequestContext = Depends(get_request_context),
           db: Session = Depends(get_db)):
    revoke_session(db, ctx.token)
    set_session_cookie(request, response, None)
    return {"ok": True}


@router.get("/me")
def me(ctx: RequestContext = Depends(get_request_context), db: Session = Depends(get_db)):
    if ctx.user is None:
        return {"user": None}
    return {"user": build_user_profile(db, ctx.user)}


@router.post("/change-password")
def change_password(data: PasswordChange, current_user: models.User = Depends(require_auth),
                    db: Session = Depends(get_db)):
    if not auth.verify_password(data.current_password, current_user.password_salt, auth.PASSWORD_PEPPER,
                                current_user.password_hash):
        raise NotAuthenticated("Invalid password")

    salt = auth.generate_salt()
    current_user.password_salt = salt
    current_user.password_hash = auth.hash_password(data.new_password, salt, auth.PASSWORD_PEPPER)
    current_user.must_change_password = False
    db.commit()
    return {"ok": True}


@router.get("/google/start")
def google_start():
    if not os.getenv("GOOGLE_CLIENT_ID") or not os.getenv("GOOGLE_REDIRECT_URL"):
        raise NotImplementedYet("Google auth not configured")
    raise NotImplementedYet()


@router.get("/google/callback")
def google_callback():
    raise NotImplementedYet()
