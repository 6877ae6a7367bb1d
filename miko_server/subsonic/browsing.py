# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Subsonic browsing endpoints."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.database import get_db
from miko_server.deps import Services, get_services
from miko_server.services import browser
from miko_server.subsonic import views
from miko_server.subsonic.auth import subsonic_user
from miko_server.subsonic.params import Params, get_params
from miko_server.subsonic.response import NOT_FOUND, SubsonicError, ok

router = APIRouter(prefix="/rest", tags=["subsonic"], dependencies=[Depends(subsonic_user)])

GET_POST = ["GET", "POST"]


@router.api_route("/getMusicFolders", methods=GET_POST)
async def get_music_folders(
    request: Request,
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    folders = await browser.ensure_music_folders(db, services.settings.subsonic.folders)
    return ok(request, musicFolders={"musicFolder": [views.music_folder(f) for f in folders]})


@router.api_route("/getIndexes", methods=GET_POST)
async def get_indexes(
    request: Request,
    params: Params = Depends(get_params),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    last_scan = services.scanner.last_scan_time()
    result = await browser.get_indexes(
        db,
        services.settings.subsonic.browse_mode,
        folder_id=params.get_int("musicFolderId"),
        if_modified_since=params.get_int("ifModifiedSince", 0),
        last_modified=int(last_scan.timestamp() * 1000) if last_scan else 0,
        ignored_articles=services.settings.subsonic.ignored_articles,
    )
    return ok(request, indexes=views.indexes(result))


@router.api_route("/getMusicDirectory", methods=GET_POST)
async def get_music_directory(
    request: Request,
    params: Params = Depends(get_params),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    item_id = params.require("id")
    try:
        d = await browser.get_directory(db, services.settings.subsonic.browse_mode, item_id)
    except browser.NotFoundError:
        raise SubsonicError(NOT_FOUND, "Directory not found") from None
    return ok(request, directory=views.directory(d))


@router.api_route("/getGenres", methods=GET_POST)
async def get_genres(request: Request, db: AsyncSession = Depends(get_db)):
    genres = await browser.get_genres(db)
    return ok(
        request,
        genres={
            "genre": [
                {"value": g.name, "songCount": g.song_count, "albumCount": g.album_count} for g in genres
            ]
        },
    )


@router.api_route("/getArtists", methods=GET_POST)
async def get_artists(
    request: Request,
    params: Params = Depends(get_params),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    articles = services.settings.subsonic.ignored_articles
    index = await browser.get_artists(db, params.get_int("musicFolderId"), articles)
    return ok(request, artists={"ignoredArticles": articles, "index": views.index_list(index, id3=True)})


@router.api_route("/getArtist", methods=GET_POST)
async def get_artist(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    try:
        row, albums = await browser.get_artist(db, params.require("id"))
    except browser.NotFoundError:
        raise SubsonicError(NOT_FOUND, "Artist not found") from None
    payload = views.artist(row)
    payload["album"] = [views.album(a) for a in albums]
    return ok(request, artist=payload)


@router.api_route("/getAlbum", methods=GET_POST)
async def get_album(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    try:
        row, songs = await browser.get_album(db, params.require("id"))
    except browser.NotFoundError:
        raise SubsonicError(NOT_FOUND, "Album not found") from None
    payload = views.album(row)
    payload["song"] = [views.child(s) for s in songs]
    return ok(request, album=payload)


@router.api_route("/getSong", methods=GET_POST)
async def get_song(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    try:
        song = await browser.get_song(db, params.require("id"))
    except browser.NotFoundError:
        raise SubsonicError(NOT_FOUND, "Song not found") from None
    return ok(request, song=views.child(song))


# No external metadata source: info endpoints answer with empty documents.


@router.api_route("/getArtistInfo", methods=GET_POST)
async def get_artist_info(request: Request, params: Params = Depends(get_params)):
    params.require("id")
    return ok(request, artistInfo={})


@router.api_route("/getArtistInfo2", methods=GET_POST)
async def get_artist_info2(request: Request, params: Params = Depends(get_params)):
    params.require("id")
    return ok(request, artistInfo2={})


@router.api_route("/getAlbumInfo", methods=GET_POST)
async def get_album_info(request: Request, params: Params = Depends(get_params)):
    params.require("id")
    return ok(request, albumInfo={})


@router.api_route("/getAlbumInfo2", methods=GET_POST)
async def get_album_info2(request: Request, params: Params = Depends(get_params)):
    params.require("id")
    return ok(request, albumInfo={})


@router.api_route("/getSimilarSongs", methods=GET_POST)
async def get_similar_songs(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    songs = await browser.get_similar_songs(db, params.require("id"), params.get_int("count", 50))
    return ok(request, similarSongs={"song": [views.child(s) for s in songs]})


@router.api_route("/getSimilarSongs2", methods=GET_POST)
async def get_similar_songs2(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    songs = await browser.get_similar_songs(db, params.require("id"), params.get_int("count", 50))
    return ok(request, similarSongs2={"song": [views.child(s) for s in songs]})


@router.api_route("/getTopSongs", methods=GET_POST)
async def get_top_songs(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    songs = await browser.get_top_songs(db, params.require("artist"), params.get_int("count", 50))
    return ok(request, topSongs={"song": [views.child(s) for s in songs]})
