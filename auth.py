"""
Access guard: bearer tokens and the admin capability check.

verify_token and verify_admin are FastAPI dependencies. Every admin route
depends on verify_admin, which itself depends on verify_token, so the two
checks always run in order.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

import config
from database import USERS, get_db
from errors import (
    ApiError,
    AuthenticationInvalid,
    AuthenticationMissing,
    AuthorizationDenied,
    ValidationFailed,
)
from logging_config import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"
ADMIN = "admin"

bearer_scheme = HTTPBearer(auto_error=False)


def _secret() -> str:
    if not config.ACCESS_TOKEN_SECRET:
        logger.error("token_secret_missing")
        raise ApiError("Token service is not configured")
    return config.ACCESS_TOKEN_SECRET


def issue_token(claims: dict, now: Optional[datetime] = None) -> str:
    if not claims.get("email"):
        raise ValidationFailed("An email claim is required")
    now = now or datetime.now(timezone.utc)
    payload = dict(claims)
    payload["iat"] = now
    payload["exp"] = now + timedelta(seconds=config.TOKEN_TTL_SECONDS)
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM], options={"require": ["exp", "email"]})
    except jwt.ExpiredSignatureError:
        logger.info("token_rejected", reason="expired")
        raise AuthenticationInvalid("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.info("token_rejected", reason=str(e))
        raise AuthenticationInvalid() from None
    return payload


def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> dict:
    """Decoded identity of the caller; 401 without a bearer token, 403 for a bad one."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationMissing()
    return decode_token(credentials.credentials)


def is_admin(db: Database, email: str) -> bool:
    user = db[USERS].find_one({"email": email, "status": {"$ne": False}}, {"role": 1})
    return bool(user) and user.get("role") == ADMIN


def verify_admin(identity: dict = Depends(verify_token), db: Database = Depends(get_db)) -> dict:
    if not is_admin(db, identity["email"]):
        logger.info("admin_denied", email=identity["email"])
        raise AuthorizationDenied()
    return identity


def ensure_owner_or_admin(db: Database, identity: dict, owner_email: str):
    if identity["email"] == owner_email or is_admin(db, identity["email"]):
        return
    logger.info("owner_check_denied", email=identity["email"], owner=owner_email)
    raise AuthorizationDenied()
