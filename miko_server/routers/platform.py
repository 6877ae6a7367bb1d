# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""External platform account routes."""

import httpx
from fastapi import APIRouter, Depends, HTTPException, status

from miko_server.api.schemas import PlatformUserResponse
from miko_server.auth import get_current_username
from miko_server.deps import Services, get_services
from miko_server.services.cookiecloud import CookieCloudError
from miko_server.services.download.provider import ProviderError
from miko_server.services.download.registry import UnsupportedPlatformError

router = APIRouter(prefix="/api/platform", tags=["platform"])


@router.get("/{platform}/user", response_model=PlatformUserResponse)
async def platform_user(
    platform: str,
    username: str = Depends(get_current_username),
    services: Services = Depends(get_services),
) -> PlatformUserResponse:
    """Profile of the platform account the user's cookies are logged in as."""
    try:
        jar = await services.cookiecloud.get(username)
    except CookieCloudError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    try:
        provider = services.providers.create_provider(platform, jar=jar)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    try:
        user = await provider.user()
    except (ProviderError, httpx.HTTPError) as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        await provider.close()
    return PlatformUserResponse(username=user.username, user_id=user.user_id)
