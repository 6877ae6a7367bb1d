# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""System endpoints, users, scanning and the endpoints this server does not provide."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.database import get_db
from miko_server.deps import Services, get_services
from miko_server.models import Child, MusicFolder, User
from miko_server.subsonic import views
from miko_server.subsonic.auth import subsonic_user
from miko_server.subsonic.params import Params, get_params
from miko_server.subsonic.response import GENERIC, NOT_AUTHORIZED, NOT_FOUND, SubsonicError, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rest", tags=["subsonic"], dependencies=[Depends(subsonic_user)])

GET_POST = ["GET", "POST"]

UNSUPPORTED = ("getVideos", "getVideoInfo", "hls.m3u8", "getCaptions")

NOT_IMPLEMENTED = (
    "getShares",
    "createShare",
    "updateShare",
    "deleteShare",
    "getPodcasts",
    "getNewestPodcasts",
    "refreshPodcasts",
    "createPodcastChannel",
    "deletePodcastChannel",
    "deletePodcastEpisode",
    "downloadPodcastEpisode",
    "jukeboxControl",
    "getInternetRadioStations",
    "createInternetRadioStation",
    "updateInternetRadioStation",
    "deleteInternetRadioStation",
    "getChatMessages",
    "addChatMessage",
    "createUser",
    "updateUser",
    "deleteUser",
    "changePassword",
)


@router.api_route("/ping", methods=GET_POST)
async def ping(request: Request):
    return ok(request)


@router.api_route("/getLicense", methods=GET_POST)
async def get_license(request: Request):
    expires = datetime.now(timezone.utc) + timedelta(days=3650)
    return ok(request, license={"valid": True, "email": "miko@example.com", "licenseExpires": expires})


@router.api_route("/getOpenSubsonicExtensions", methods=GET_POST)
async def get_open_subsonic_extensions(request: Request):
    return ok(request, openSubsonicExtensions=[{"name": "songLyrics", "versions": [1]}])


async def _folder_ids(db: AsyncSession) -> list[int]:
    return list((await db.execute(select(MusicFolder.id).order_by(MusicFolder.id))).scalars().all())


@router.api_route("/getUser", methods=GET_POST)
async def get_user(
    request: Request,
    params: Params = Depends(get_params),
    caller: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    username = params.require("username")
    if username != caller.username and not caller.admin_role:
        raise SubsonicError(NOT_AUTHORIZED, "User is not authorized for the given operation")
    target = await db.get(User, username)
    if target is None:
        raise SubsonicError(NOT_FOUND, "User not found")
    return ok(request, user=views.user(target, await _folder_ids(db)))


@router.api_route("/getUsers", methods=GET_POST)
async def get_users(
    request: Request,
    caller: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    if not caller.admin_role:
        raise SubsonicError(NOT_AUTHORIZED, "User is not authorized for the given operation")
    folder_ids = await _folder_ids(db)
    users = (await db.execute(select(User).order_by(User.username))).scalars().all()
    return ok(request, users={"user": [views.user(u, folder_ids) for u in users]})


async def _song_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(Child).where(Child.is_dir.is_(False)))).scalar_one()


@router.api_route("/getScanStatus", methods=GET_POST)
async def get_scan_status(
    request: Request,
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    return ok(
        request,
        scanStatus={"scanning": services.scanner.is_scanning(), "count": await _song_count(db)},
    )


def _run_scan(services: Services, incremental: bool) -> None:
    try:
        services.scanner.scan_all(incremental)
    except Exception:
        logger.exception("Library scan failed")


@router.api_route("/startScan", methods=GET_POST)
async def start_scan(
    request: Request,
    params: Params = Depends(get_params),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    incremental = params.get_bool("inc")
    if incremental is None:
        incremental = services.settings.subsonic.scan_mode != "full"
    count = await _song_count(db)
    if not services.scanner.is_scanning():
        loop = asyncio.get_running_loop()
        request.app.state.scan_task = loop.run_in_executor(None, _run_scan, services, incremental)
    return ok(request, scanStatus={"scanning": True, "count": count})


def _register(names: tuple[str, ...], message: str) -> None:
    async def handler(request: Request):
        raise SubsonicError(GENERIC, message)

    for name in names:
        router.add_api_route(f"/{name}", handler, methods=GET_POST, name=name)


_register(UNSUPPORTED, "Not supported")
_register(NOT_IMPLEMENTED, "Not implemented")
