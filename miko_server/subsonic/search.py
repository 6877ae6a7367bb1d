# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""search, search2 and search3."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.database import get_db
from miko_server.services import browser
from miko_server.subsonic import views
from miko_server.subsonic.auth import subsonic_user
from miko_server.subsonic.params import Params, get_params
from miko_server.subsonic.response import ok

router = APIRouter(prefix="/rest", tags=["subsonic"], dependencies=[Depends(subsonic_user)])

GET_POST = ["GET", "POST"]


@router.api_route("/search", methods=GET_POST)
async def search(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    """Legacy search over title, album and artist; `any` wins over the field params."""
    query = params.get("any") or params.get("title") or params.get("album") or params.get("artist") or ""
    songs, total = await browser.search_songs(
        db, query, count=params.get_int("count", 20), offset=params.get_int("offset", 0)
    )
    return ok(
        request,
        searchResult={
            "offset": params.get_int("offset", 0),
            "totalHits": total,
            "match": [views.child(s) for s in songs],
        },
    )


async def _search(params: Params, db: AsyncSession):
    return await browser.search(
        db,
        params.get("query", ""),
        artist_count=params.get_int("artistCount", 20),
        artist_offset=params.get_int("artistOffset", 0),
        album_count=params.get_int("albumCount", 20),
        album_offset=params.get_int("albumOffset", 0),
        song_count=params.get_int("songCount", 20),
        song_offset=params.get_int("songOffset", 0),
        folder_id=params.get_int("musicFolderId"),
    )


@router.api_route("/search2", methods=GET_POST)
async def search2(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    artists, albums, songs = await _search(params, db)
    return ok(
        request,
        searchResult2={
            "artist": [views.artist_short(a) for a in artists],
            "album": [views.album_as_child(a, a.AlbumID3.artist_id) for a in albums],
            "song": [views.child(s) for s in songs],
        },
    )


@router.api_route("/search3", methods=GET_POST)
async def search3(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    artists, albums, songs = await _search(params, db)
    return ok(
        request,
        searchResult3={
            "artist": [views.artist(a) for a in artists],
            "album": [views.album(a) for a in albums],
            "song": [views.child(s) for s in songs],
        },
    )
