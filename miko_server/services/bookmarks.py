# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Per-user bookmarks and saved play queue."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.models import BookmarkRecord, Child, PlayQueueRecord, PlayQueueSong


@dataclass
class PlayQueue:
    username: str
    current: str = ""
    position: int = 0
    changed: datetime | None = None
    changed_by: str = ""
    entries: list[Child] = field(default_factory=list)


async def get_bookmarks(db: AsyncSession, username: str) -> list[tuple[BookmarkRecord, Child]]:
    result = await db.execute(
        select(BookmarkRecord, Child)
        .join(Child, Child.id == BookmarkRecord.song_id)
        .where(BookmarkRecord.username == username)
        .order_by(BookmarkRecord.updated_at.desc())
    )
    return [(row.BookmarkRecord, row.Child) for row in result.all()]


async def create_bookmark(db: AsyncSession, username: str, song_id: str, position: int, comment: str = "") -> None:
    """Insert or replace the bookmark for (username, song_id)."""
    now = datetime.now(timezone.utc)
    stmt = sqlite_insert(BookmarkRecord).values(
        username=username, song_id=song_id, position=position, comment=comment, created_at=now, updated_at=now
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["username", "song_id"],
        set_={"position": stmt.excluded.position, "comment": stmt.excluded.comment, "updated_at": now},
    )
    await db.execute(stmt)


async def delete_bookmark(db: AsyncSession, username: str, song_id: str) -> None:
    await db.execute(
        delete(BookmarkRecord).where(BookmarkRecord.username == username, BookmarkRecord.song_id == song_id)
    )


async def get_play_queue(db: AsyncSession, username: str) -> PlayQueue:
    """Saved queue, or an empty one when the user never saved."""
    record = (
        await db.execute(
            select(PlayQueueRecord)
            .where(PlayQueueRecord.username == username)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if record is None:
        return PlayQueue(username=username)
    result = await db.execute(
        select(Child)
        .join(PlayQueueSong, PlayQueueSong.song_id == Child.id)
        .where(PlayQueueSong.username == username)
        .order_by(PlayQueueSong.position)
    )
    return PlayQueue(
        username=username,
        current=record.current,
        position=record.position,
        changed=record.changed,
        changed_by=record.changed_by,
        entries=list(result.scalars().all()),
    )


async def save_play_queue(
    db: AsyncSession,
    username: str,
    song_ids: list[str],
    current: str = "",
    position: int = 0,
    client: str = "",
) -> None:
    """Upsert the queue record and rewrite its songs with positions 0..N-1."""
    stmt = sqlite_insert(PlayQueueRecord).values(
        username=username,
        current=current,
        position=position,
        changed=datetime.now(timezone.utc).replace(tzinfo=None),
        changed_by=client,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["username"],
        set_={
            "current": stmt.excluded.current,
            "position": stmt.excluded.position,
            "changed": stmt.excluded.changed,
            "changed_by": stmt.excluded.changed_by,
        },
    )
    await db.execute(stmt)
    await db.execute(delete(PlayQueueSong).where(PlayQueueSong.username == username))
    if song_ids:
        await db.execute(
            PlayQueueSong.__table__.insert(),
            [{"username": username, "song_id": song_id, "position": i} for i, song_id in enumerate(song_ids)],
        )
