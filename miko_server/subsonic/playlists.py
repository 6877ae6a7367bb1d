# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Playlist endpoints."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.database import get_db
from miko_server.models import User
from miko_server.services import playlists
from miko_server.services.browser import NotFoundError
from miko_server.subsonic import views
from miko_server.subsonic.auth import subsonic_user
from miko_server.subsonic.params import Params, get_params
from miko_server.subsonic.response import GENERIC, MISSING_PARAMETER, NOT_FOUND, SubsonicError, ok

router = APIRouter(prefix="/rest", tags=["subsonic"], dependencies=[Depends(subsonic_user)])

GET_POST = ["GET", "POST"]


def _playlist_payload(playlist, songs) -> dict:
    payload = views.playlist(playlist, len(songs), sum(s.duration or 0 for s in songs))
    payload["entry"] = [views.child(s) for s in songs]
    return payload


@router.api_route("/getPlaylists", methods=GET_POST)
async def get_playlists(
    request: Request,
    params: Params = Depends(get_params),
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await playlists.list_playlists(db, user.username, params.get("username"))
    return ok(
        request,
        playlists={"playlist": [views.playlist(r.Playlist, r.song_count, r.duration) for r in rows]},
    )


@router.api_route("/getPlaylist", methods=GET_POST)
async def get_playlist(
    request: Request,
    params: Params = Depends(get_params),
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    playlist_id = params.require_int("id")
    try:
        playlist, songs = await playlists.get_playlist(db, playlist_id, user.username)
    except NotFoundError as e:
        raise SubsonicError(NOT_FOUND, str(e)) from None
    return ok(request, playlist=_playlist_payload(playlist, songs))


@router.api_route("/createPlaylist", methods=GET_POST)
async def create_playlist(
    request: Request,
    params: Params = Depends(get_params),
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a playlist, or replace the songs of an existing one when playlistId is given."""
    playlist_id = params.get_int("playlistId")
    name = params.get("name")
    if playlist_id is None and not name:
        raise SubsonicError(MISSING_PARAMETER, "Playlist name not specified")
    try:
        playlist = await playlists.create_playlist(
            db, user.username, name, params.get_all("songId"), playlist_id=playlist_id
        )
        playlist, songs = await playlists.get_playlist(db, playlist.id, user.username)
    except NotFoundError as e:
        raise SubsonicError(NOT_FOUND, str(e)) from None
    except playlists.PermissionDeniedError as e:
        raise SubsonicError(GENERIC, str(e)) from None
    return ok(request, playlist=_playlist_payload(playlist, songs))


@router.api_route("/updatePlaylist", methods=GET_POST)
async def update_playlist(
    request: Request,
    params: Params = Depends(get_params),
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    playlist_id = params.require_int("playlistId")
    try:
        await playlists.update_playlist(
            db,
            user.username,
            playlist_id,
            name=params.get("name"),
            comment=params.get("comment"),
            public=params.get_bool("public"),
            add=params.get_all("songIdToAdd"),
            remove_indexes=params.get_ints("songIndexToRemove"),
        )
    except NotFoundError as e:
        raise SubsonicError(NOT_FOUND, str(e)) from None
    except playlists.PermissionDeniedError as e:
        raise SubsonicError(GENERIC, str(e)) from None
    return ok(request)


@router.api_route("/deletePlaylist", methods=GET_POST)
async def delete_playlist(
    request: Request,
    params: Params = Depends(get_params),
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        await playlists.delete_playlist(db, user.username, params.require_int("id"))
    except NotFoundError as e:
        raise SubsonicError(NOT_FOUND, str(e)) from None
    except playlists.PermissionDeniedError as e:
        raise SubsonicError(GENERIC, str(e)) from None
    return ok(request)
