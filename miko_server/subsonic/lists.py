# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Album lists, random songs, genres, now playing and starred items."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.database import get_db
from miko_server.deps import Services, get_services
from miko_server.services import browser
from miko_server.subsonic import views
from miko_server.subsonic.auth import subsonic_user
from miko_server.subsonic.params import Params, get_params
from miko_server.subsonic.response import MISSING_PARAMETER, SubsonicError, ok

router = APIRouter(prefix="/rest", tags=["subsonic"], dependencies=[Depends(subsonic_user)])

GET_POST = ["GET", "POST"]

MAX_SIZE = 500


async def _album_list(params: Params, db: AsyncSession) -> list:
    list_type = params.require("type")
    from_year = to_year = 0
    genre = ""
    if list_type == "byYear":
        if params.get("fromYear") is None or params.get("toYear") is None:
            raise SubsonicError(MISSING_PARAMETER, "missing required parameter: fromYear or toYear")
        from_year = params.get_int("fromYear", 0)
        to_year = params.get_int("toYear", 0)
    elif list_type == "byGenre":
        genre = params.require("genre")
    try:
        return await browser.get_album_list(
            db,
            list_type,
            size=min(params.get_int("size", 10), MAX_SIZE),
            offset=params.get_int("offset", 0),
            from_year=from_year,
            to_year=to_year,
            genre=genre,
            folder_id=params.get_int("musicFolderId"),
        )
    except ValueError as e:
        raise SubsonicError(MISSING_PARAMETER, str(e)) from None


@router.api_route("/getAlbumList", methods=GET_POST)
async def get_album_list(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    rows = await _album_list(params, db)
    return ok(request, albumList={"album": [views.album_as_child(r, r.AlbumID3.artist_id) for r in rows]})


@router.api_route("/getAlbumList2", methods=GET_POST)
async def get_album_list2(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    rows = await _album_list(params, db)
    return ok(request, albumList2={"album": [views.album(r) for r in rows]})


@router.api_route("/getRandomSongs", methods=GET_POST)
async def get_random_songs(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    songs = await browser.get_random_songs(
        db,
        size=min(params.get_int("size", 10), MAX_SIZE),
        genre=params.get("genre", ""),
        from_year=params.get_int("fromYear", 0),
        to_year=params.get_int("toYear", 0),
        folder_id=params.get_int("musicFolderId"),
    )
    return ok(request, randomSongs={"song": [views.child(s) for s in songs]})


@router.api_route("/getSongsByGenre", methods=GET_POST)
async def get_songs_by_genre(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    songs = await browser.get_songs_by_genre(
        db,
        params.require("genre"),
        count=min(params.get_int("count", 10), MAX_SIZE),
        offset=params.get_int("offset", 0),
        folder_id=params.get_int("musicFolderId"),
    )
    return ok(request, songsByGenre={"song": [views.child(s) for s in songs]})


@router.api_route("/getNowPlaying", methods=GET_POST)
async def get_now_playing(
    request: Request,
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    records = services.now_playing.entries()
    songs = {s.id: s for s in await browser.get_songs(db, [r.song_id for r in records])}
    entries = [views.now_playing_entry(r, songs[r.song_id]) for r in records if r.song_id in songs]
    return ok(request, nowPlaying={"entry": entries})


@router.api_route("/getStarred", methods=GET_POST)
async def get_starred(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    artists, albums, songs = await browser.get_starred(db, params.get_int("musicFolderId"))
    return ok(
        request,
        starred={
            "artist": [views.artist_short(a) for a in artists],
            "album": [views.album_as_child(a, a.AlbumID3.artist_id) for a in albums],
            "song": [views.child(s) for s in songs],
        },
    )


@router.api_route("/getStarred2", methods=GET_POST)
async def get_starred2(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    artists, albums, songs = await browser.get_starred(db, params.get_int("musicFolderId"))
    return ok(
        request,
        starred2={
            "artist": [views.artist(a) for a in artists],
            "album": [views.album(a) for a in albums],
            "song": [views.child(s) for s in songs],
        },
    )
