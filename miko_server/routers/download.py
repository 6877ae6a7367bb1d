# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Download tracks from an external platform into a local directory."""

import asyncio
import logging
import os

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, status

from miko_server.auth import get_current_username
from miko_server.deps import Services, get_services
from miko_server.services.cookiecloud import CookieCloudError
from miko_server.services.download.provider import ProviderError, download_batch
from miko_server.services.download.registry import UnsupportedPlatformError
from miko_server.services.download.types import (
    ConflictPolicy,
    DownloadConfig,
    InvalidConflictPolicyError,
    InvalidQualityLevelError,
    MusicDownloadResults,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["download"])

DEFAULT_TIMEOUT_MS = 60000


def summary(results: MusicDownloadResults) -> str:
    if results.total == 1:
        return "Download URL generated successfully" if results.success == 1 else "Download failed"
    return "Batch download completed: %d total, %d success, %d failed" % (
        results.total,
        results.success,
        results.failed,
    )


def _timeout_seconds(raw: str | None) -> float | None:
    """Milliseconds from the query; 0 disables the deadline, junk keeps the default."""
    ms = DEFAULT_TIMEOUT_MS
    if raw:
        try:
            parsed = int(raw)
        except ValueError:
            parsed = -1
        if parsed >= 0:
            ms = parsed
    return ms / 1000 if ms else None


@router.get("/download")
async def download(
    uri: list[str] = Query(default=[]),
    level: str = "lossless",
    output: str = "",
    timeout: str | None = None,
    conflict_policy: str = "skip",
    platform: str = "",
    username: str = Depends(get_current_username),
    services: Services = Depends(get_services),
):
    """
    Resolve song/album/playlist URIs and download every track.

    Without an output directory only the download URLs are resolved.
    """
    if not uri:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="uri query parameter is required")
    try:
        policy = ConflictPolicy.parse(conflict_policy)
    except InvalidConflictPolicyError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    config = DownloadConfig(
        level=level or "lossless",
        output=os.path.abspath(output) if output else "",
        conflict_policy=policy,
    )

    try:
        jar = await services.cookiecloud.get(username)
        provider = services.providers.create_provider(platform or None, jar=jar)
    except (CookieCloudError, UnsupportedPlatformError) as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    async def run() -> MusicDownloadResults:
        musics = await provider.get_music(uri)
        return await download_batch(provider, musics, config)

    try:
        results = await asyncio.wait_for(run(), _timeout_seconds(timeout))
    except InvalidQualityLevelError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except asyncio.TimeoutError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="download timed out")
    except (ProviderError, httpx.HTTPError) as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"resolve tracks: {e}")
    finally:
        await provider.close()

    logger.info("Download by %s: %s", username, summary(results))
    return {"summary": summary(results), "details": [r.to_dict() for r in results.results]}
