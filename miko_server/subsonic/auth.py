# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Subsonic credentials: u+p (plain or enc:hex) or u+t+s with t = md5(password + s)."""

import hashlib
import hmac

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.auth import plain_password
from miko_server.database import get_db
from miko_server.models import User
from miko_server.subsonic.params import Params, get_params
from miko_server.subsonic.response import MISSING_PARAMETER, WRONG_CREDENTIALS, SubsonicError


def token_for(password: str, salt: str) -> str:
    return hashlib.md5((password + salt).encode("utf-8")).hexdigest()


def _decode_password(password: str) -> str:
    if not password.startswith("enc:"):
        return password
    try:
        return bytes.fromhex(password[4:]).decode("utf-8")
    except ValueError:
        raise SubsonicError(WRONG_CREDENTIALS, "Wrong username or password") from None


def check_credentials(user: User, password: str | None, token: str | None, salt: str | None) -> bool:
    stored = plain_password(user)
    if password:
        return hmac.compare_digest(stored.encode("utf-8"), _decode_password(password).encode("utf-8"))
    if token and salt:
        return hmac.compare_digest(token_for(stored, salt), token.lower())
    raise SubsonicError(MISSING_PARAMETER, "missing required parameter: p or t and s")


async def subsonic_user(
    params: Params = Depends(get_params),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Authenticated caller for every /rest endpoint."""
    username = params.get("u")
    if not username:
        raise SubsonicError(MISSING_PARAMETER, "User not found")
    user = await db.get(User, username)
    if user is None:
        raise SubsonicError(MISSING_PARAMETER, "User not found")
    if not check_credentials(user, params.get("p"), params.get("t"), params.get("s")):
        raise SubsonicError(WRONG_CREDENTIALS, "Wrong username or password")
    return user
