# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Media retrieval: stream, download, cover art, lyrics, avatars."""

import hashlib
import logging
import re
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.database import get_db
from miko_server.deps import Services, get_services
from miko_server.models import Child
from miko_server.services import browser, tags
from miko_server.subsonic.auth import subsonic_user
from miko_server.subsonic.params import Params, get_params
from miko_server.subsonic.response import NOT_FOUND, SubsonicError, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rest", tags=["subsonic"], dependencies=[Depends(subsonic_user)])

GET_POST = ["GET", "POST"]

LRC_LINE = re.compile(r"^\[(\d+):(\d+)\.(\d+)\](.*)$")

CHUNK_SIZE = 256 * 1024


async def _song_file(db: AsyncSession, song_id: str) -> tuple[Child, Path]:
    song = await db.get(Child, song_id)
    if song is None:
        raise SubsonicError(NOT_FOUND, "Song not found")
    if song.is_dir:
        raise SubsonicError(NOT_FOUND, "ID is a directory")
    path = Path(song.path)
    if not path.is_file():
        raise SubsonicError(NOT_FOUND, "File not found on disk")
    return song, path


def serve_file(request: Request, path: Path, media_type: str, disposition: str = "inline") -> Response:
    """Serve a file whole, or the single byte range the client asked for."""
    file_size = path.stat().st_size
    disposition_header = {"Content-Disposition": f'{disposition}; filename="{path.name}"'}

    range_header = request.headers.get("range")
    if not range_header:
        return FileResponse(
            path,
            media_type=media_type,
            headers={"Accept-Ranges": "bytes", **disposition_header},
        )

    # Range: bytes=start-end
    try:
        range_str = range_header.replace("bytes=", "").strip()
        start_str, end_str = range_str.split("-", 1)
        if start_str:
            start = int(start_str)
            end = int(end_str) if end_str else file_size - 1
        else:
            # suffix range: the last N bytes
            start = max(file_size - int(end_str), 0)
            end = file_size - 1
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid Range header") from None

    if start >= file_size or start > end:
        raise HTTPException(
            status_code=416,
            detail="Range not satisfiable",
            headers={"Content-Range": f"bytes */{file_size}"},
        )

    end = min(end, file_size - 1)
    content_length = end - start + 1

    def iter_file():
        with open(path, "rb") as f:
            f.seek(start)
            remaining = content_length
            while remaining > 0:
                data = f.read(min(CHUNK_SIZE, remaining))
                if not data:
                    break
                remaining -= len(data)
                yield data

    return StreamingResponse(
        iter_file(),
        status_code=206,
        media_type=media_type,
        headers={
            "Accept-Ranges": "bytes",
            "Content-Range": f"bytes {start}-{end}/{file_size}",
            "Content-Length": str(content_length),
            **disposition_header,
        },
    )


@router.api_route("/stream", methods=GET_POST)
async def stream(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    song, path = await _song_file(db, params.require("id"))
    logger.debug("Streaming file: %s (size: %d)", path, song.size or 0)
    return serve_file(request, path, song.content_type or tags.content_type(path))


@router.api_route("/download", methods=GET_POST)
async def download(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    song, path = await _song_file(db, params.require("id"))
    return serve_file(request, path, song.content_type or tags.content_type(path), disposition="attachment")


@router.api_route("/getCoverArt", methods=GET_POST)
async def get_cover_art(
    params: Params = Depends(get_params),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """Raw image bytes; a plain 404 when no image exists."""
    try:
        data = await browser.resolve_cover_art(db, services.scanner.cover_cache_dir(), params.require("id"))
    except browser.NotFoundError:
        return Response(status_code=404)
    return Response(content=data, media_type=tags.image_mime(data))


@router.api_route("/getLyrics", methods=GET_POST)
async def get_lyrics(request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)):
    artist = params.require("artist")
    title = params.require("title")
    song = (
        await db.execute(
            select(Child).where(Child.artist == artist, Child.title == title, Child.is_dir.is_(False)).limit(1)
        )
    ).scalar_one_or_none()
    if song is None:
        raise SubsonicError(NOT_FOUND, "Lyrics not found")
    return ok(request, lyrics={"artist": song.artist, "title": song.title, "value": song.lyrics or ""})


def parse_lrc(text: str) -> tuple[list[dict], bool]:
    """Split LRC text into lines with millisecond offsets.

    The result counts as synced only when every non-blank line carries a
    [mm:ss.xx] timestamp.
    """
    lines = []
    synced = True
    for row in text.split("\n"):
        row = row.strip()
        if not row:
            continue
        m = LRC_LINE.match(row)
        if m is None:
            synced = False
            lines.append({"start": 0, "value": row})
            continue
        minutes, seconds, frac, words = m.groups()
        ms = int(frac)
        if len(frac) == 2:
            ms *= 10
        lines.append({"start": (int(minutes) * 60 + int(seconds)) * 1000 + ms, "value": words.strip()})
    return lines, synced


@router.api_route("/getLyricsBySongId", methods=GET_POST)
async def get_lyrics_by_song_id(
    request: Request, params: Params = Depends(get_params), db: AsyncSession = Depends(get_db)
):
    song = await db.get(Child, params.require("id"))
    if song is None or not song.lyrics:
        raise SubsonicError(NOT_FOUND, "Lyrics not found")
    lines, synced = parse_lrc(song.lyrics)
    return ok(
        request,
        lyricsList={
            "structuredLyrics": [
                {
                    "lang": "xxx",
                    "synced": synced,
                    "displayArtist": song.artist or None,
                    "displayTitle": song.title or None,
                    "line": lines,
                }
            ]
        },
    )


@router.api_route("/getAvatar", methods=GET_POST)
async def get_avatar(
    request: Request,
    params: Params = Depends(get_params),
    services: Services = Depends(get_services),
):
    username = params.require("username")
    avatar_dir = Path(services.settings.subsonic.data_dir) / "avatars"
    name = hashlib.md5(username.encode("utf-8")).hexdigest()
    for ext, media_type in ((".jpg", "image/jpeg"), (".png", "image/png")):
        path = avatar_dir / f"{name}{ext}"
        if path.is_file():
            return FileResponse(path, media_type=media_type)
    return Response(status_code=404)
