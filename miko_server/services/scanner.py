# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Music library scanner: walker -> tag-reading workers -> single database saver."""

import logging
import os
import queue
import shutil
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Engine, delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from miko_server.config import Settings
from miko_server.models import (
    AlbumID3,
    ArtistID3,
    Child,
    Genre,
    MusicFolder,
    album_artists,
    album_genres,
    song_artists,
    song_genres,
)
from miko_server.services import tags as tag_reader
from miko_server.services.ids import album_id, artist_id, child_id, normalize_rel_path, parent_id
from miko_server.services.prune import prune, prune_orphans
from miko_server.services.walker import PUT_POLL_SECONDS, FolderRef, Walker, WalkTask, normalize_folder_path

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
UNKNOWN_ARTIST = "Unknown Artist"

# Columns the scanner owns; user state (stars, ratings, plays) is never overwritten
SCAN_COLUMNS = (
    "parent",
    "is_dir",
    "title",
    "album",
    "artist",
    "track",
    "year",
    "genre",
    "cover_art",
    "size",
    "content_type",
    "suffix",
    "duration",
    "bit_rate",
    "path",
    "disc_number",
    "created",
    "album_id",
    "artist_id",
    "type",
    "lyrics",
    "music_folder_id",
)


class ScanInProgressError(Exception):
    """Raised when a targeted rescan is requested while a scan is running."""


@dataclass
class ScanResult:
    child: dict
    tags: tag_reader.Tags | None = None


def _mtime(st: os.stat_result) -> datetime:
    # Stored naive UTC, matching how SQLite round-trips DateTime columns
    return datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).replace(tzinfo=None)


def _blank_child(**values) -> dict:
    row = {
        "parent": "",
        "is_dir": False,
        "title": "",
        "album": "",
        "artist": "",
        "track": 0,
        "year": 0,
        "genre": "",
        "cover_art": "",
        "size": 0,
        "content_type": "",
        "suffix": "",
        "duration": 0,
        "bit_rate": 0,
        "path": "",
        "disc_number": 0,
        "created": None,
        "album_id": "",
        "artist_id": "",
        "type": "music",
        "lyrics": "",
        "music_folder_id": 0,
    }
    row.update(values)
    return row


class Scanner:
    """
    Owns scan state for the process. scan_all/scan_by_id/scan_path block the
    calling thread; the web layer runs them in an executor.
    """

    def __init__(self, settings: Settings, engine: Engine):
        self.settings = settings
        self.engine = engine
        self.num_workers = max(os.cpu_count() or 1, 4)
        self.walker = Walker(engine, buffer_size=self.num_workers * 10, consumers=self.num_workers)
        self._gate = threading.Lock()
        self._scanning = False
        self._count = 0
        self._last_scan: datetime | None = None
        self._cancel = threading.Event()

    # -- status --------------------------------------------------------------

    def is_scanning(self) -> bool:
        with self._gate:
            return self._scanning

    def scan_count(self) -> int:
        return self._count

    def last_scan_time(self) -> datetime | None:
        return self._last_scan

    def cover_cache_dir(self) -> Path:
        return self.settings.cover_cache_dir

    def request_cancel(self) -> None:
        self._cancel.set()

    def _begin(self) -> bool:
        with self._gate:
            if self._scanning:
                return False
            self._scanning = True
            self._count = 0
            self._cancel.clear()
            return True

    def _end(self) -> None:
        with self._gate:
            self._scanning = False

    # -- entry points --------------------------------------------------------

    def ensure_music_folders(self) -> None:
        """Insert a MusicFolder row for every configured root that lacks one."""
        with self.engine.begin() as conn:
            known = set(conn.execute(select(MusicFolder.path)).scalars())
            for path in map(normalize_folder_path, self.settings.subsonic.folders):
                if path in known:
                    continue
                name = os.path.basename(path.rstrip("/")) or path
                conn.execute(MusicFolder.__table__.insert().values(name=name, path=path))
                logger.info("Registered music folder %s", path)

    def scan_all(self, incremental: bool = True) -> bool:
        """Scan every configured root, then prune. Returns False if a scan was already running."""
        if not self._begin():
            logger.info("Scan already in progress, ignoring request")
            return False
        try:
            logger.info("Starting %s scan", "incremental" if incremental else "full")
            self.ensure_music_folders()
            tasks = self.walker.walk_all_roots(self._cancel)
            seen = self._run(tasks, incremental)
            if self._cancel.is_set():
                logger.warning("Scan cancelled, skipping prune")
            else:
                prune(self.engine, seen)
            self._last_scan = datetime.now(timezone.utc)
            logger.info("Scan completed. Total files: %d", self._count)
        finally:
            self._end()
        return True

    def scan_by_id(self, item_id: str, incremental: bool = False) -> None:
        if not self._begin():
            raise ScanInProgressError("a scan is already in progress")
        try:
            tasks = self.walker.walk_by_id(item_id, self._cancel)
            self._run(tasks, incremental)
        finally:
            self._end()

    def scan_path(self, path: str, incremental: bool = False) -> None:
        if not self._begin():
            raise ScanInProgressError("a scan is already in progress")
        try:
            with self.engine.connect() as conn:
                folder = Walker.folder_for_path(conn, path)
            tasks = self.walker.walk_path(path, folder, self._cancel)
            self._run(tasks, incremental)
        finally:
            self._end()

    def update_song_metadata(self, song_id: str) -> None:
        """Re-read one file after its tags were written and save the result."""
        with self.engine.connect() as conn:
            path = conn.execute(
                select(Child.path).where(Child.id == song_id, Child.is_dir.is_(False))
            ).scalar_one_or_none()
        if path is None:
            raise LookupError(f"song {song_id!r} not found")
        self.scan_path(path)

    def save_cover_art(self, item_id: str, data: bytes) -> None:
        cache = self.cover_cache_dir()
        cache.mkdir(parents=True, exist_ok=True)
        (cache / item_id).write_bytes(data)

    def delete_items(self, item_ids: list[str]) -> int:
        """Remove files or directories from disk and the catalog; returns rows deleted."""
        with self.engine.begin() as conn:
            rows = conn.execute(select(Child.id, Child.path, Child.is_dir).where(Child.id.in_(item_ids))).all()
            removed = 0
            for row in rows:
                try:
                    if row.is_dir:
                        shutil.rmtree(row.path)
                    else:
                        os.remove(row.path)
                except FileNotFoundError:
                    logger.debug("%s is already gone from disk", row.path)
                except OSError as e:
                    logger.error("Failed to delete %s from disk: %s", row.path, e)
                if row.is_dir:
                    prefix = row.path.rstrip("/") + "/"
                    q = delete(Child).where((Child.path == row.path) | Child.path.startswith(prefix, autoescape=True))
                else:
                    q = delete(Child).where(Child.id == row.id)
                removed += conn.execute(q).rowcount
        prune_orphans(self.engine)
        logger.info("Deleted %d library items", removed)
        return removed

    # -- pipeline ------------------------------------------------------------

    def _snapshot(self) -> dict[str, datetime | None]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(Child.id, Child.created).where(Child.is_dir.is_(False)))
            return {row.id: row.created for row in rows}

    def _run(self, tasks: queue.Queue, incremental: bool) -> set[str]:
        existing = self._snapshot() if incremental else {}
        cache_dir = self.cover_cache_dir()
        # Fatal for the scan: covers could not be stored
        cache_dir.mkdir(parents=True, exist_ok=True)

        seen: set[str] = set()
        seen_lock = threading.Lock()
        results: queue.Queue = queue.Queue(maxsize=self.num_workers * 10)

        def mark(item_id: str) -> None:
            with seen_lock:
                seen.add(item_id)

        def work() -> None:
            while True:
                task = tasks.get()
                if task is None:
                    return
                # Keep draining after cancellation so the walker can finish
                if self._cancel.is_set():
                    continue
                try:
                    result = self._process(task, existing, mark)
                except Exception:
                    logger.exception("Failed to process %s", task.path)
                    continue
                if result is not None:
                    _put_until(results, result, lambda: not self._cancel.is_set())

        workers = [
            threading.Thread(target=work, name=f"miko-scan-{i}", daemon=True)
            for i in range(self.num_workers)
        ]
        saver = threading.Thread(
            target=_Saver(self.engine, cache_dir, self).run, args=(results,), name="miko-saver", daemon=True
        )
        saver.start()
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
        _put_until(results, None, saver.is_alive)
        saver.join()
        return seen

    def _process(self, task: WalkTask, existing: dict, mark) -> ScanResult | None:
        folder: FolderRef = task.folder
        rel = normalize_rel_path(os.path.relpath(task.path, folder.path))
        item_id = child_id(folder.id, rel)
        parent = parent_id(folder.id, rel)

        if task.is_dir:
            mark(item_id)
            return ScanResult(
                _blank_child(
                    id=item_id,
                    parent=parent,
                    is_dir=True,
                    title=task.name,
                    path=task.path,
                    type="",
                    music_folder_id=folder.id,
                )
            )

        if not tag_reader.is_audio_file(task.path):
            return None

        try:
            st = os.stat(task.path)
        except OSError as e:
            logger.warning("Cannot stat %s: %s", task.path, e)
            return None
        mtime = _mtime(st)

        if item_id in existing:
            stored = existing[item_id]
            if stored is not None and not stored < mtime:
                mark(item_id)
                return None

        mark(item_id)
        child = _blank_child(
            id=item_id,
            parent=parent,
            title=Path(task.name).stem,
            path=task.path,
            size=st.st_size,
            suffix=Path(task.name).suffix.lstrip(".").lower(),
            content_type=tag_reader.content_type(task.path),
            music_folder_id=folder.id,
            created=mtime,
        )
        try:
            tags = tag_reader.read(task.path)
        except tag_reader.TagReadError as e:
            logger.warning("Failed to read tags from %s: %s", task.path, e)
            return ScanResult(child)
        return ScanResult(child, tags)

    def _scanned(self) -> None:
        self._count += 1


class _Saver:
    """Single writer: dedupes artist/genre/album upserts and batches child rows."""

    def __init__(self, engine: Engine, cache_dir: Path, scanner: Scanner):
        self.engine = engine
        self.cache_dir = cache_dir
        self.scanner = scanner
        self.artists: set[str] = set()
        self.genres: set[str] = set()
        self.albums: dict[str, str] = {}  # album id -> cover id ("" when none)
        self.batch: list[tuple[dict, list[str], list[str]]] = []
        # Dedupe entries added by the item being saved, forgotten if its savepoint rolls back
        self._added: list[tuple[str, str, str | None]] = []

    def run(self, results: queue.Queue) -> None:
        try:
            with self.engine.connect() as conn:
                while True:
                    result = results.get()
                    if result is None:
                        break
                    self._save(conn, result)
                    if len(self.batch) >= BATCH_SIZE:
                        self._flush(conn)
                self._flush(conn)
        except Exception:
            logger.exception("Scan saver stopped")
            # Nothing consumes results any more; stop the walker and workers
            self.scanner.request_cancel()

    def _save(self, conn, result: ScanResult) -> None:
        self._added.clear()
        try:
            with conn.begin_nested():
                self._handle(conn, result)
        except Exception as e:
            logger.error("Failed to save %s: %s", result.child["path"], e)
            self._forget_added()

    def _forget_added(self) -> None:
        for kind, key, previous in reversed(self._added):
            if kind == "artist":
                self.artists.discard(key)
            elif kind == "genre":
                self.genres.discard(key)
            elif previous is None:
                self.albums.pop(key, None)
            else:
                self.albums[key] = previous
        self._added.clear()

    def _remember_album(self, aid: str, cover: str) -> None:
        self._added.append(("album", aid, self.albums.get(aid)))
        self.albums[aid] = cover

    def _handle(self, conn, result: ScanResult) -> None:
        child = result.child
        artist_ids: list[str] = []
        genre_names: list[str] = []
        if result.tags is not None:
            artist_ids, genre_names = self._merge(conn, child, result.tags)
        self.batch.append((child, artist_ids, genre_names))
        if not child["is_dir"]:
            self.scanner._scanned()

    def _merge(self, conn, child: dict, tags: tag_reader.Tags) -> tuple[list[str], list[str]]:
        if tags.title:
            child["title"] = tags.title
        child.update(
            artist=tags.artist,
            album=tags.album,
            track=tags.track,
            disc_number=tags.disc,
            year=tags.year,
            genre=tags.genre,
            lyrics=tags.lyrics,
            duration=tags.duration,
            bit_rate=tags.bitrate,
        )

        song_artist_names = tags.artists or ([tags.artist] if tags.artist else [])
        artist_ids = [self._upsert_artist(conn, name) for name in _unique(song_artist_names)]
        if artist_ids:
            child["artist_id"] = artist_ids[0]

        genre_names = _unique(tags.genres or ([tags.genre] if tags.genre else []))
        for name in genre_names:
            self._upsert_genre(conn, name)

        if tags.album:
            display = tags.album_artist or tags.artist or UNKNOWN_ARTIST
            aid = album_id(display, tags.album)
            child["album_id"] = aid
            cover = self._materialize_album(conn, aid, display, child, tags, genre_names)
            if cover:
                child["cover_art"] = cover

        if not child["cover_art"] and tags.image:
            if self._write_cover(child["id"], tags.image):
                child["cover_art"] = child["id"]
        return artist_ids, genre_names

    def _materialize_album(self, conn, aid, display, child, tags, genre_names) -> str:
        if aid in self.albums and (self.albums[aid] or not tags.image):
            return self.albums[aid]

        cover = self.albums.get(aid, "")
        if tags.image and self._write_cover(aid, tags.image):
            cover = aid

        if aid in self.albums:
            # Album already saved this scan without a cover
            conn.execute(AlbumID3.__table__.update().where(AlbumID3.id == aid).values(cover_art=cover))
            self._remember_album(aid, cover)
            return cover

        group_names = _unique(tags.album_artists or [display])
        group_ids = [self._upsert_artist(conn, name) for name in group_names]
        primary = self._upsert_artist(conn, display)

        table = AlbumID3.__table__
        stmt = sqlite_insert(table).values(
            id=aid,
            name=tags.album,
            artist=display,
            artist_id=primary,
            cover_art=cover,
            created=child["created"],
            year=tags.year,
            genre=tags.genre,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "name": stmt.excluded.name,
                "artist": stmt.excluded.artist,
                "artist_id": stmt.excluded.artist_id,
                "created": stmt.excluded.created,
                "year": stmt.excluded.year,
                "genre": stmt.excluded.genre,
                "cover_art": func.coalesce(func.nullif(stmt.excluded.cover_art, ""), table.c.cover_art),
            },
        )
        conn.execute(stmt)

        conn.execute(delete(album_artists).where(album_artists.c.album_id == aid))
        conn.execute(
            sqlite_insert(album_artists).on_conflict_do_nothing(),
            [{"album_id": aid, "artist_id": gid} for gid in _unique(group_ids + [primary])],
        )
        conn.execute(delete(album_genres).where(album_genres.c.album_id == aid))
        if genre_names:
            conn.execute(
                sqlite_insert(album_genres).on_conflict_do_nothing(),
                [{"album_id": aid, "genre_name": name} for name in genre_names],
            )

        if not cover:
            # Keep a cover stored by an earlier scan
            cover = conn.execute(select(AlbumID3.cover_art).where(AlbumID3.id == aid)).scalar_one()
        self._remember_album(aid, cover)
        return cover

    def _upsert_artist(self, conn, name: str) -> str:
        aid = artist_id(name)
        if aid in self.artists:
            return aid
        stmt = sqlite_insert(ArtistID3.__table__).values(id=aid, name=name)
        conn.execute(stmt.on_conflict_do_update(index_elements=["id"], set_={"name": stmt.excluded.name}))
        self.artists.add(aid)
        self._added.append(("artist", aid, None))
        return aid

    def _upsert_genre(self, conn, name: str) -> None:
        if name in self.genres:
            return
        conn.execute(sqlite_insert(Genre.__table__).values(name=name).on_conflict_do_nothing())
        self.genres.add(name)
        self._added.append(("genre", name, None))

    def _write_cover(self, item_id: str, data: bytes) -> bool:
        try:
            (self.cache_dir / item_id).write_bytes(data)
        except OSError as e:
            logger.warning("Failed to write cover %s: %s", item_id, e)
            return False
        return True

    def _flush(self, conn) -> None:
        batch, self.batch = self.batch, []
        if batch:
            try:
                with conn.begin_nested():
                    self._write_children(conn, batch)
            except Exception as e:
                logger.error("Failed to save batch of %d children, retrying one by one: %s", len(batch), e)
                for item in batch:
                    try:
                        with conn.begin_nested():
                            self._write_children(conn, [item])
                    except Exception as err:
                        logger.error("Failed to save %s: %s", item[0]["path"], err)
        conn.commit()

    def _write_children(self, conn, batch: list[tuple[dict, list[str], list[str]]]) -> None:
        rows = [child for child, _, _ in batch]
        stmt = sqlite_insert(Child.__table__).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={column: stmt.excluded[column] for column in SCAN_COLUMNS},
        )
        conn.execute(stmt)

        song_ids = [child["id"] for child in rows if not child["is_dir"]]
        if song_ids:
            conn.execute(delete(song_artists).where(song_artists.c.child_id.in_(song_ids)))
            conn.execute(delete(song_genres).where(song_genres.c.child_id.in_(song_ids)))
        artist_links = [
            {"child_id": child["id"], "artist_id": aid} for child, ids, _ in batch for aid in ids
        ]
        genre_links = [
            {"child_id": child["id"], "genre_name": name} for child, _, names in batch for name in names
        ]
        if artist_links:
            conn.execute(sqlite_insert(song_artists).on_conflict_do_nothing(), artist_links)
        if genre_links:
            conn.execute(sqlite_insert(song_genres).on_conflict_do_nothing(), genre_links)


def _put_until(q: queue.Queue, item, keep_going) -> bool:
    """Queue.put that gives up once keep_going() turns false."""
    while keep_going():
        try:
            q.put(item, timeout=PUT_POLL_SECONDS)
            return True
        except queue.Full:
            continue
    return False


def _unique(values: list[str]) -> list[str]:
    out: list[str] = []
    for value in values:
        if value and value not in out:
            out.append(value)
    return out
