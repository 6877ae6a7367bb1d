# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Playlist storage. Positions are kept 0..N-1 after every change."""

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.models import Child, Playlist, PlaylistSong
from miko_server.services.browser import NotFoundError

logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    pass


async def list_playlists(db: AsyncSession, username: str, target: str | None = None) -> list:
    """(playlist, song_count, duration) rows. Another user's playlists are listed only when public."""
    target = target or username
    song_count = (
        select(func.count(PlaylistSong.id))
        .where(PlaylistSong.playlist_id == Playlist.id)
        .correlate(Playlist)
        .scalar_subquery()
    )
    duration = (
        select(func.coalesce(func.sum(Child.duration), 0))
        .select_from(PlaylistSong)
        .join(Child, Child.id == PlaylistSong.song_id)
        .where(PlaylistSong.playlist_id == Playlist.id)
        .correlate(Playlist)
        .scalar_subquery()
    )
    q = select(Playlist, song_count.label("song_count"), duration.label("duration")).where(Playlist.owner == target)
    if target != username:
        q = q.where(Playlist.public.is_(True))
    result = await db.execute(q.order_by(Playlist.id))
    return list(result.all())


async def get_playlist(db: AsyncSession, playlist_id: int, username: str) -> tuple[Playlist, list[Child]]:
    playlist = await db.get(Playlist, playlist_id)
    if playlist is None or (playlist.owner != username and not playlist.public):
        raise NotFoundError("Playlist not found")
    result = await db.execute(
        select(Child)
        .join(PlaylistSong, PlaylistSong.song_id == Child.id)
        .where(PlaylistSong.playlist_id == playlist_id)
        .order_by(PlaylistSong.position)
    )
    return playlist, list(result.scalars().all())


async def _owned(db: AsyncSession, playlist_id: int, username: str) -> Playlist:
    playlist = await db.get(Playlist, playlist_id)
    if playlist is None:
        raise NotFoundError("Playlist not found")
    if playlist.owner != username:
        raise PermissionDeniedError("Permission denied")
    return playlist


async def _append(db: AsyncSession, playlist_id: int, song_ids: list[str], start: int) -> None:
    for i, song_id in enumerate(song_ids):
        db.add(PlaylistSong(playlist_id=playlist_id, song_id=song_id, position=start + i))


async def reindex(db: AsyncSession, playlist_id: int) -> None:
    rows = (
        await db.execute(
            select(PlaylistSong).where(PlaylistSong.playlist_id == playlist_id).order_by(PlaylistSong.position, PlaylistSong.id)
        )
    ).scalars().all()
    for position, row in enumerate(rows):
        row.position = position
    await db.flush()


async def create_playlist(
    db: AsyncSession,
    username: str,
    name: str | None,
    song_ids: list[str],
    playlist_id: int | None = None,
) -> Playlist:
    """Create a playlist, or replace the songs of playlist_id when given."""
    if playlist_id is not None:
        playlist = await _owned(db, playlist_id, username)
        if name:
            playlist.name = name
        await db.execute(delete(PlaylistSong).where(PlaylistSong.playlist_id == playlist.id))
    else:
        if not name:
            raise ValueError("Playlist name not specified")
        playlist = Playlist(name=name, owner=username)
        db.add(playlist)
    await db.flush()
    await _append(db, playlist.id, song_ids, 0)
    await db.flush()
    return playlist


async def update_playlist(
    db: AsyncSession,
    username: str,
    playlist_id: int,
    name: str | None = None,
    comment: str | None = None,
    public: bool | None = None,
    add: list[str] | None = None,
    remove_indexes: list[int] | None = None,
) -> Playlist:
    playlist = await _owned(db, playlist_id, username)
    if name:
        playlist.name = name
    if comment is not None:
        playlist.comment = comment
    if public is not None:
        playlist.public = public

    if remove_indexes:
        await db.execute(
            delete(PlaylistSong).where(
                PlaylistSong.playlist_id == playlist_id, PlaylistSong.position.in_(remove_indexes)
            )
        )
        await db.flush()
        await reindex(db, playlist_id)

    if add:
        count = (
            await db.execute(select(func.count(PlaylistSong.id)).where(PlaylistSong.playlist_id == playlist_id))
        ).scalar_one()
        await _append(db, playlist_id, add, count)

    await db.flush()
    return playlist


async def delete_playlist(db: AsyncSession, username: str, playlist_id: int) -> None:
    playlist = await _owned(db, playlist_id, username)
    await db.execute(delete(PlaylistSong).where(PlaylistSong.playlist_id == playlist_id))
    await db.delete(playlist)
    await db.flush()
    logger.info("Deleted playlist %d of %s", playlist_id, username)
