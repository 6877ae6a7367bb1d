# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication: JWT for the management API and recoverable password storage."""

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server import crypto
from miko_server.config import settings
from miko_server.models import User
from miko_server.models.system_setting import JWT_SECRET_KEY, PASSWORD_SECRET_KEY
from miko_server.services import secrets

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "adminpassword"


def _jwt_secret() -> str:
    secret = secrets.cached(JWT_SECRET_KEY)
    if not secret:
        raise RuntimeError("JWT secret has not been resolved")
    return secret


def create_access_token(username: str, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token for username."""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.server.jwt_expire_minutes)
    )
    to_encode: dict[str, Any] = {"sub": username, "username": username, "exp": expire}
    return jwt.encode(to_encode, _jwt_secret(), algorithm=settings.server.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=[settings.server.jwt_algorithm])
    except JWTError:
        return None


def plain_password(user: User) -> str:
    """Stored password in clear text (decrypting when it was stored encrypted)."""
    return crypto.decrypt_or_plain(user.password, secrets.cached(PASSWORD_SECRET_KEY))


def verify_user_password(user: User, password: str) -> bool:
    return hmac.compare_digest(plain_password(user).encode("utf-8"), password.encode("utf-8"))


def store_password(user: User, password: str) -> None:
    """Set user.password, encrypted whenever a password secret is available."""
    secret = secrets.cached(PASSWORD_SECRET_KEY)
    user.password = crypto.encrypt(password, secret) if secret else password


async def authenticate(db: AsyncSession, username: str, password: str) -> User | None:
    user = await db.get(User, username)
    if user is None or not verify_user_password(user, password):
        return None
    return user


async def ensure_default_admin(db: AsyncSession) -> None:
    """Create admin/adminpassword when there are no users at all."""
    count = (await db.execute(select(func.count()).select_from(User))).scalar_one()
    if count:
        return
    admin = User(
        username=DEFAULT_ADMIN_USERNAME,
        admin_role=True,
        settings_role=True,
        upload_role=True,
        podcast_role=True,
        jukebox_role=True,
    )
    store_password(admin, DEFAULT_ADMIN_PASSWORD)
    db.add(admin)
    await db.flush()
    logger.warning("Created default user %r; change its password", DEFAULT_ADMIN_USERNAME)


async def get_current_username(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Extract and validate the username from a Bearer JWT. Raises 401 if invalid.
    A token query param is accepted for cover art links."""
    token = None
    if credentials:
        token = credentials.credentials
    elif request.query_params.get("token"):
        token = request.query_params.get("token")
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    username = payload.get("sub")
    if not username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return str(username)
