# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""star, unstar, setRating and scrobble."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.database import get_db
from miko_server.deps import Services, get_services
from miko_server.models import User
from miko_server.services import annotation
from miko_server.services.browser import NotFoundError
from miko_server.subsonic.auth import subsonic_user
from miko_server.subsonic.params import Params, get_params
from miko_server.subsonic.response import MISSING_PARAMETER, NOT_FOUND, SubsonicError, ok

router = APIRouter(prefix="/rest", tags=["subsonic"], dependencies=[Depends(subsonic_user)])

GET_POST = ["GET", "POST"]


def _targets(params: Params) -> dict:
    return {
        "ids": params.get_all("id"),
        "album_ids": params.get_all("albumId"),
        "artist_ids": params.get_all("artistId"),
    }


@router.api_route("/star", methods=GET_POST)
async def star(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    await annotation.star(db, **_targets(params))
    return ok(request)


@router.api_route("/unstar", methods=GET_POST)
async def unstar(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    await annotation.unstar(db, **_targets(params))
    return ok(request)


@router.api_route("/setRating", methods=GET_POST)
async def set_rating(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    item_id = params.require("id")
    rating = params.require_int("rating")
    try:
        await annotation.set_rating(db, item_id, rating)
    except NotFoundError as e:
        raise SubsonicError(NOT_FOUND, str(e)) from None
    except ValueError as e:
        raise SubsonicError(MISSING_PARAMETER, str(e)) from None
    return ok(request)


@router.api_route("/scrobble", methods=GET_POST)
async def scrobble(
    request: Request,
    params: Params = Depends(get_params),
    user: User = Depends(subsonic_user),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """submission=false marks the songs as now playing; otherwise records the plays."""
    ids = params.get_all("id")
    if not ids:
        params.require("id")
    times = params.get_ints("time")
    client = params.get("c", "")
    submission = params.get_bool("submission", True)

    for i, song_id in enumerate(ids):
        if not submission:
            services.now_playing.update(user.username, song_id, client)
            continue
        played_at = None
        if i < len(times):
            played_at = datetime.fromtimestamp(times[i] / 1000, tz=timezone.utc).replace(tzinfo=None)
        try:
            await annotation.scrobble(db, song_id, played_at)
        except NotFoundError as e:
            raise SubsonicError(NOT_FOUND, str(e)) from None
        services.now_playing.remove(user.username, client)
    return ok(request)
