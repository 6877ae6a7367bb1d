# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Remove catalog rows the last full scan did not see, then their orphaned aggregates."""

import logging
from collections.abc import Iterable, Iterator

from sqlalchemy import Engine, text

logger = logging.getLogger(__name__)

INSERT_BATCH = 500

# Executed in order; later steps depend on the rows removed by earlier ones
PRUNE_STEPS = (
    (
        "children",
        "DELETE FROM children WHERE NOT EXISTS (SELECT 1 FROM seen_ids s WHERE s.id = children.id)",
    ),
    (
        "albums",
        "DELETE FROM albums WHERE NOT EXISTS (SELECT 1 FROM children c WHERE c.album_id = albums.id)",
    ),
    (
        "song artist links",
        "DELETE FROM song_artists WHERE NOT EXISTS "
        "(SELECT 1 FROM children c WHERE c.id = song_artists.child_id)",
    ),
    (
        "album artist links",
        "DELETE FROM album_artists WHERE NOT EXISTS "
        "(SELECT 1 FROM albums a WHERE a.id = album_artists.album_id)",
    ),
    (
        "song genre links",
        "DELETE FROM song_genres WHERE NOT EXISTS "
        "(SELECT 1 FROM children c WHERE c.id = song_genres.child_id)",
    ),
    (
        "album genre links",
        "DELETE FROM album_genres WHERE NOT EXISTS "
        "(SELECT 1 FROM albums a WHERE a.id = album_genres.album_id)",
    ),
    (
        "playlist entries",
        "DELETE FROM playlist_songs WHERE NOT EXISTS "
        "(SELECT 1 FROM children c WHERE c.id = playlist_songs.song_id)",
    ),
    (
        "artists",
        "DELETE FROM artists WHERE "
        "NOT EXISTS (SELECT 1 FROM children c WHERE c.artist_id = artists.id) "
        "AND NOT EXISTS (SELECT 1 FROM albums a WHERE a.artist_id = artists.id) "
        "AND NOT EXISTS (SELECT 1 FROM song_artists sa WHERE sa.artist_id = artists.id) "
        "AND NOT EXISTS (SELECT 1 FROM album_artists aa WHERE aa.artist_id = artists.id)",
    ),
    (
        "genres",
        "DELETE FROM genres WHERE "
        "NOT EXISTS (SELECT 1 FROM song_genres sg WHERE sg.genre_name = genres.name) "
        "AND NOT EXISTS (SELECT 1 FROM album_genres ag WHERE ag.genre_name = genres.name)",
    ),
)


def _chunks(values: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _reindex_playlists(conn) -> None:
    rows = conn.execute(
        text("SELECT id, playlist_id FROM playlist_songs ORDER BY playlist_id, position, id")
    ).all()
    positions: dict[int, int] = {}
    updates = []
    for row in rows:
        pos = positions.get(row.playlist_id, 0)
        updates.append({"id": row.id, "position": pos})
        positions[row.playlist_id] = pos + 1
    if updates:
        conn.execute(text("UPDATE playlist_songs SET position = :position WHERE id = :id"), updates)


def _run_steps(conn, steps) -> dict[str, int]:
    removed: dict[str, int] = {}
    for name, sql in steps:
        count = conn.execute(text(sql)).rowcount
        removed[name] = count
        if count > 0:
            logger.info("Pruned %d %s", count, name)
        if name == "playlist entries" and count > 0:
            _reindex_playlists(conn)
    return removed


def prune(engine: Engine, seen_ids: Iterable[str]) -> dict[str, int]:
    """Delete everything not in seen_ids. Returns rows removed per step."""
    logger.info("Pruning deleted files and orphaned records...")
    ids = list(seen_ids)
    # The temp table is per-connection, so everything runs on this one
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE IF EXISTS temp.seen_ids"))
        conn.execute(text("CREATE TEMP TABLE seen_ids (id TEXT PRIMARY KEY)"))
        for chunk in _chunks(ids, INSERT_BATCH):
            conn.execute(text("INSERT OR IGNORE INTO seen_ids (id) VALUES (:id)"), [{"id": i} for i in chunk])
        removed = _run_steps(conn, PRUNE_STEPS)
        conn.execute(text("DROP TABLE seen_ids"))
    return removed


def prune_orphans(engine: Engine) -> dict[str, int]:
    """Drop aggregates and links left behind after children rows were deleted directly."""
    with engine.begin() as conn:
        return _run_steps(conn, PRUNE_STEPS[1:])
