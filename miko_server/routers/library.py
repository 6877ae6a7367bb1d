# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Library API routes - folders, directories, scans and tag editing."""

import asyncio
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.api.schemas import (
    ChildResponse,
    DeleteRequest,
    DirectoryResponse,
    FolderResponse,
    ScanRequest,
    ScanStatusResponse,
    SongUpdateRequest,
    StatusResponse,
)
from miko_server.auth import get_current_username
from miko_server.database import get_db
from miko_server.deps import Services, get_services
from miko_server.models import Child
from miko_server.services import browser, ids, tags
from miko_server.services.scanner import ScanInProgressError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/library", tags=["library"], dependencies=[Depends(get_current_username)])


def _require_id(item_id: str) -> str:
    if not item_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="ID is required")
    return item_id


async def _fresh_child(db: AsyncSession, item_id: str) -> Child | None:
    # The scanner writes through its own engine; reload instead of trusting the identity map
    q = select(Child).where(Child.id == item_id).execution_options(populate_existing=True)
    return (await db.execute(q)).scalar_one_or_none()


async def _song(db: AsyncSession, song_id: str) -> Child:
    song = await _fresh_child(db, _require_id(song_id))
    if song is None or song.is_dir:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Song not found")
    return song


async def _in_executor(func, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


@router.get("/folders", response_model=list[FolderResponse])
async def folders(
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
) -> list[FolderResponse]:
    """Configured music folders with the id of their root directory."""
    rows = await browser.ensure_music_folders(db, services.settings.subsonic.folders)
    return [
        FolderResponse(id=f.id, name=f.name, path=f.path, directory_id=ids.child_id(f.id, ""))
        for f in rows
    ]


@router.get("/directory", response_model=DirectoryResponse)
async def directory(id: str = "", db: AsyncSession = Depends(get_db)) -> DirectoryResponse:
    try:
        d = await browser.get_directory(db, "file", _require_id(id))
    except browser.NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Directory not found")
    return DirectoryResponse(
        id=d.id,
        name=d.name,
        parent=d.parent,
        starred=d.starred,
        user_rating=d.user_rating,
        play_count=d.play_count,
        children=[ChildResponse.model_validate(c) for c in d.children],
    )


@router.get("/coverArt")
async def cover_art(
    id: str = "",
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
) -> Response:
    item_id = _require_id(id)
    child = await db.get(Child, item_id)
    cover_id = item_id
    if child is not None and child.cover_art:
        cover_id = child.cover_art
    try:
        data = await browser.resolve_cover_art(db, services.scanner.cover_cache_dir(), cover_id)
    except browser.NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cover art not found")
    return Response(content=data, media_type=tags.image_mime(data))


@router.post("/scan")
async def scan(
    data: ScanRequest,
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """Rescan one file or directory and return its refreshed row."""
    item = await db.get(Child, data.id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    try:
        await _in_executor(services.scanner.scan_path, item.path)
    except ScanInProgressError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    refreshed = await _fresh_child(db, data.id)
    if refreshed is None:
        return StatusResponse(status="ok")
    return ChildResponse.model_validate(refreshed)


def _scan_all(services: Services) -> None:
    try:
        services.scanner.scan_all(incremental=False)
    except Exception:
        logger.exception("Library scan failed")


@router.post("/scan/all", response_model=StatusResponse)
async def scan_all(request: Request, services: Services = Depends(get_services)) -> StatusResponse:
    if not services.scanner.is_scanning():
        request.app.state.scan_task = asyncio.get_running_loop().run_in_executor(None, _scan_all, services)
    return StatusResponse(status="scanning")


@router.get("/scan/status", response_model=ScanStatusResponse)
async def scan_status(
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
) -> ScanStatusResponse:
    count = (await db.execute(select(func.count()).select_from(Child).where(Child.is_dir.is_(False)))).scalar_one()
    return ScanStatusResponse(scanning=services.scanner.is_scanning(), count=count)


@router.get("/song/tags")
async def song_tags(id: str = "", db: AsyncSession = Depends(get_db)) -> dict[str, list[str]]:
    """Every tag property of the file, keyed by upper-case property name."""
    song = await _song(db, id)
    try:
        return await _in_executor(tags.read_all, song.path)
    except (tags.TagReadError, OSError) as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to read tags: {e}")


@router.post("/song/update", response_model=ChildResponse)
async def update_song(
    data: SongUpdateRequest,
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
) -> ChildResponse:
    song = await _song(db, data.id)
    try:
        await _in_executor(tags.write, song.path, data.tags)
    except (tags.TagReadError, OSError) as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to write tags to file: {e}",
        )
    try:
        await _in_executor(services.scanner.update_song_metadata, song.id)
    except ScanInProgressError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ChildResponse.model_validate(await _song(db, data.id))


@router.post("/song/cover", response_model=ChildResponse)
async def update_song_cover(
    id: str = Form(""),
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
) -> ChildResponse:
    """Embed an uploaded image into the file and refresh the cached cover."""
    song = await _song(db, id)
    image = await file.read()
    if not image:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is required")
    try:
        await _in_executor(tags.write_image, song.path, image)
    except (tags.TagReadError, OSError) as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to write image to file: {e}",
        )
    if song.cover_art:
        await _in_executor(services.scanner.save_cover_art, song.cover_art, image)
    return ChildResponse.model_validate(song)


@router.post("/delete", response_model=StatusResponse)
async def delete_items(
    data: DeleteRequest,
    services: Services = Depends(get_services),
) -> StatusResponse:
    """Delete files or whole directories from disk and from the catalog."""
    item_ids = list(data.ids)
    if data.id:
        item_ids.append(data.id)
    if not item_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="ID or IDs are required")
    await _in_executor(services.scanner.delete_items, item_ids)
    return StatusResponse(status="ok")
