# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""JWT and password secrets: cache, then config, then system_settings, else generated."""

import logging
import secrets as _random

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.config import settings
from miko_server.models import SystemSetting
from miko_server.models.system_setting import JWT_SECRET_KEY, PASSWORD_SECRET_KEY

logger = logging.getLogger(__name__)

_cache: dict[str, str] = {}


def cached(key: str) -> str:
    """Secret already resolved in this process, or the configured value."""
    if key in _cache:
        return _cache[key]
    configured = _configured(key)
    if configured:
        _cache[key] = configured
    return configured


def _configured(key: str) -> str:
    if key == JWT_SECRET_KEY:
        return settings.server.jwt_secret
    if key == PASSWORD_SECRET_KEY:
        return settings.server.password_secret
    return ""


async def _resolve(db: AsyncSession, key: str) -> str:
    value = cached(key)
    if value:
        return value

    row = (await db.execute(select(SystemSetting).where(SystemSetting.key == key))).scalar_one_or_none()
    if row is not None and row.value:
        _cache[key] = row.value
        return row.value

    value = _random.token_hex(32)
    if row is None:
        db.add(SystemSetting(key=key, value=value))
    else:
        row.value = value
    await db.flush()
    logger.info("Generated new %s", key)
    _cache[key] = value
    return value


async def get_jwt_secret(db: AsyncSession) -> str:
    return await _resolve(db, JWT_SECRET_KEY)


async def get_password_secret(db: AsyncSession) -> str:
    return await _resolve(db, PASSWORD_SECRET_KEY)


def reset_cache() -> None:
    _cache.clear()
