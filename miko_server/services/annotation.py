# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Stars, ratings and scrobbles."""

from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.models import AlbumID3, ArtistID3, Child
from miko_server.services.browser import NotFoundError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def _set_starred(
    db: AsyncSession,
    value: datetime | None,
    ids: list[str],
    album_ids: list[str],
    artist_ids: list[str],
) -> None:
    # Runs inside the request session's transaction, so all three commit together
    if ids:
        await db.execute(update(Child).where(Child.id.in_(ids)).values(starred=value))
    if album_ids:
        await db.execute(update(AlbumID3).where(AlbumID3.id.in_(album_ids)).values(starred=value))
    if artist_ids:
        await db.execute(update(ArtistID3).where(ArtistID3.id.in_(artist_ids)).values(starred=value))


async def star(db: AsyncSession, ids=(), album_ids=(), artist_ids=()) -> None:
    await _set_starred(db, _utcnow(), list(ids), list(album_ids), list(artist_ids))


async def unstar(db: AsyncSession, ids=(), album_ids=(), artist_ids=()) -> None:
    await _set_starred(db, None, list(ids), list(album_ids), list(artist_ids))


async def set_rating(db: AsyncSession, item_id: str, rating: int) -> None:
    """Rate the first song/directory, album or artist with this id; 0 clears."""
    if rating < 0 or rating > 5:
        raise ValueError("Invalid rating")
    for model in (Child, AlbumID3, ArtistID3):
        result = await db.execute(update(model).where(model.id == item_id).values(user_rating=rating))
        if result.rowcount:
            return
    raise NotFoundError(f"item {item_id} not found")


async def scrobble(db: AsyncSession, item_id: str, played_at: datetime | None = None) -> None:
    """Count a finished play."""
    when = played_at or _utcnow()
    result = await db.execute(
        update(Child)
        .where(Child.id == item_id, Child.is_dir.is_(False))
        .values(play_count=Child.play_count + 1, last_played=when)
    )
    if not result.rowcount:
        raise NotFoundError(f"song {item_id} not found")
