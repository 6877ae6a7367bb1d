# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Bookmarks and the saved play queue."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.database import get_db
from miko_server.models import User
from miko_server.services import bookmarks
from miko_server.subsonic import views
from miko_server.subsonic.auth import subsonic_user
from miko_server.subsonic.params import Params, get_params
from miko_server.subsonic.response import ok

router = APIRouter(prefix="/rest", tags=["subsonic"], dependencies=[Depends(subsonic_user)])

GET_POST = ["GET", "POST"]


@router.api_route("/getBookmarks", methods=GET_POST)
async def get_bookmarks(
    request: Request,
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await bookmarks.get_bookmarks(db, user.username)
    return ok(
        request,
        bookmarks={
            "bookmark": [
                {
                    "position": b.position,
                    "username": b.username,
                    "comment": b.comment or None,
                    "created": b.created_at,
                    "changed": b.updated_at,
                    "entry": views.child(song),
                }
                for b, song in rows
            ]
        },
    )


@router.api_route("/createBookmark", methods=GET_POST)
async def create_bookmark(
    request: Request,
    params: Params = Depends(get_params),
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    await bookmarks.create_bookmark(
        db,
        user.username,
        params.require("id"),
        params.require_int("position"),
        params.get("comment", ""),
    )
    return ok(request)


@router.api_route("/deleteBookmark", methods=GET_POST)
async def delete_bookmark(
    request: Request,
    params: Params = Depends(get_params),
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    await bookmarks.delete_bookmark(db, user.username, params.require("id"))
    return ok(request)


@router.api_route("/getPlayQueue", methods=GET_POST)
async def get_play_queue(
    request: Request,
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    queue = await bookmarks.get_play_queue(db, user.username)
    return ok(
        request,
        playQueue={
            "current": queue.current or None,
            "position": queue.position or None,
            "username": queue.username,
            "changed": queue.changed,
            "changedBy": queue.changed_by or None,
            "entry": [views.child(s) for s in queue.entries],
        },
    )


@router.api_route("/savePlayQueue", methods=GET_POST)
async def save_play_queue(
    request: Request,
    params: Params = Depends(get_params),
    user: User = Depends(subsonic_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace the user's queue; an empty id list clears it."""
    await bookmarks.save_play_queue(
        db,
        user.username,
        params.get_all("id"),
        current=params.get("current", ""),
        position=params.get_int("position", 0),
        client=params.get("c", ""),
    )
    return ok(request)
