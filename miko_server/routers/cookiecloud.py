# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""CookieCloud identity and cookie sync routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server import crypto
from miko_server.api.schemas import (
    CookieCloudIdentityRequest,
    CookieCloudIdentityResponse,
    CookieCloudServerResponse,
    MessageResponse,
)
from miko_server.auth import get_current_username
from miko_server.database import get_db
from miko_server.deps import Services, get_services
from miko_server.models import Identity
from miko_server.services import secrets
from miko_server.services.cookiecloud import CookieCloudError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cookiecloud", tags=["cookiecloud"])


@router.get("/server", response_model=CookieCloudServerResponse)
async def server(
    username: str = Depends(get_current_username),
    services: Services = Depends(get_services),
) -> CookieCloudServerResponse:
    return CookieCloudServerResponse(url=services.settings.cookiecloud.url)


@router.post("/identity", response_model=CookieCloudIdentityResponse)
async def save_identity(
    data: CookieCloudIdentityRequest,
    username: str = Depends(get_current_username),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
) -> CookieCloudIdentityResponse:
    """Store the CookieCloud uuid/password for the current user and pull once."""
    url = services.settings.cookiecloud.url
    identity = (await db.execute(select(Identity).where(Identity.username == username))).scalar_one_or_none()
    if identity is None:
        identity = Identity(username=username)
        db.add(identity)
    identity.uuid = data.key
    identity.password = crypto.encrypt(data.password, await secrets.get_password_secret(db))
    identity.url = url
    # The pull below reads the identity through its own session
    await db.commit()

    try:
        await services.cookiecloud.forget(username)
        await services.cookiecloud.get(username)
    except CookieCloudError as e:
        logger.warning("Initial cookie pull for %s failed: %s", username, e)
    return CookieCloudIdentityResponse(url=url, key=data.key)


@router.post("/pull", response_model=MessageResponse)
async def pull(
    username: str = Depends(get_current_username),
    services: Services = Depends(get_services),
) -> MessageResponse:
    try:
        await services.cookiecloud.forget(username)
        jar = await services.cookiecloud.get(username)
    except CookieCloudError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    logger.info("Pulled %d cookies for %s", len(jar.cookies.jar), username)
    return MessageResponse(message="Cookies pulled successfully")
