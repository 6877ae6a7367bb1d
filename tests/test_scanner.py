# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Library scanner tests against a real temporary music folder."""

import os
import threading
import time

import pytest
from sqlalchemy import func, select

from conftest import PNG, make_wav
from miko_server.models import AlbumID3, ArtistID3, Child, Genre, MusicFolder, song_artists, song_genres
from miko_server.services import ids, tags
from miko_server.services import scanner as scanner_module
from miko_server.services.scanner import ScanInProgressError
from miko_server.services.walker import Walker, normalize_folder_path

pytestmark = pytest.mark.anyio


def _count(scanner, stmt):
    with scanner.engine.connect() as conn:
        return conn.execute(stmt).scalar_one()


def _song(scanner, path):
    with scanner.engine.connect() as conn:
        return conn.execute(select(Child).where(Child.path == str(path))).one()


def _folder_id(scanner) -> int:
    with scanner.engine.connect() as conn:
        return conn.execute(select(MusicFolder.id).order_by(MusicFolder.id)).scalars().first()


async def test_full_scan_builds_catalog(services, library):
    scanner = services.scanner
    assert scanner.scan_count() == 4
    assert not scanner.is_scanning()
    assert scanner.last_scan_time() is not None

    songs = _count(scanner, select(func.count()).select_from(Child).where(Child.is_dir.is_(False)))
    dirs = _count(scanner, select(func.count()).select_from(Child).where(Child.is_dir.is_(True)))
    assert songs == 4
    # root, Alpha, Alpha/First, Beta, Beta/Second
    assert dirs == 5
    assert _count(scanner, select(func.count()).select_from(AlbumID3)) == 2
    assert _count(scanner, select(func.count()).select_from(ArtistID3)) == 3
    assert _count(scanner, select(func.count()).select_from(Genre)) == 2


async def test_song_row_fields(services, library):
    scanner = services.scanner
    folder_id = _folder_id(scanner)
    song = _song(scanner, library / "Alpha" / "First" / "01.wav")

    assert song.id == ids.child_id(folder_id, "Alpha/First/01.wav")
    assert song.parent == ids.child_id(folder_id, "Alpha/First")
    assert song.title == "Dawn"
    assert song.artist == "Alpha"
    assert song.album == "First"
    assert song.track == 1
    assert song.year == 2001
    assert song.genre == "Rock"
    assert song.suffix == "wav"
    assert song.duration == 1
    assert song.album_id == ids.album_id("Alpha", "First")
    assert song.artist_id == ids.artist_id("Alpha")
    assert song.lyrics.startswith("[00:01.00]")


async def test_album_cover_is_cached(services, library):
    scanner = services.scanner
    album_id = ids.album_id("Alpha", "First")
    song = _song(scanner, library / "Alpha" / "First" / "02.wav")
    # The second track has no picture but shares the album cover
    assert song.cover_art == album_id
    assert (scanner.cover_cache_dir() / album_id).read_bytes() == PNG


async def test_song_without_album_tag(services, library):
    song = _song(services.scanner, library / "loose.wav")
    assert song.album == ""
    assert song.album_id == ""
    assert song.cover_art == ""


async def test_incremental_scan_rereads_changed_files(services, library):
    scanner = services.scanner
    path = library / "Beta" / "Second" / "01.wav"
    make_wav(path, title="Dusk (Remaster)", artist="Beta", album="Second", track="1", year="1999")
    future = time.time() + 60
    os.utime(path, (future, future))

    assert scanner.scan_all(incremental=True)
    assert _song(scanner, path).title == "Dusk (Remaster)"
    assert _song(scanner, library / "loose.wav").title == "Loose"


async def test_full_scan_prunes_removed_files(services, library):
    scanner = services.scanner
    os.remove(library / "Beta" / "Second" / "01.wav")
    assert scanner.scan_all(incremental=False)

    assert _count(scanner, select(func.count()).select_from(Child).where(Child.is_dir.is_(False))) == 3
    assert _count(scanner, select(func.count()).select_from(AlbumID3)) == 1
    names = _count(scanner, select(func.group_concat(ArtistID3.name)))
    assert "Beta" not in names.split(",")
    assert _count(scanner, select(func.count()).select_from(Genre).where(Genre.name == "Jazz")) == 0


async def test_scan_path_adds_new_file(services, library):
    scanner = services.scanner
    new = make_wav(library / "Alpha" / "First" / "03.wav", title="Dusk", artist="Alpha", album="First", track="3")
    scanner.scan_path(str(library / "Alpha"))
    assert _song(scanner, new).track == 3


async def test_update_song_metadata_unknown_song(services, library):
    with pytest.raises(LookupError):
        services.scanner.update_song_metadata("nope")


async def test_targeted_scan_refused_while_scanning(services, library):
    scanner = services.scanner
    assert scanner._begin()
    try:
        assert scanner.scan_all() is False
        with pytest.raises(ScanInProgressError):
            scanner.scan_path(str(library))
    finally:
        scanner._end()


async def test_delete_items(services, library):
    scanner = services.scanner
    album_dir = library / "Alpha" / "First"
    folder = _song(scanner, album_dir / "01.wav").parent
    loose = _song(scanner, library / "loose.wav").id

    removed = scanner.delete_items([folder, loose])
    # the directory row and its two songs, plus the loose file
    assert removed == 4
    assert not album_dir.exists()
    assert not (library / "loose.wav").exists()
    assert _count(scanner, select(func.count()).select_from(Child).where(Child.is_dir.is_(False))) == 1
    assert _count(scanner, select(func.count()).select_from(AlbumID3)) == 1


def _make_songs(music_dir, prefix: str, count: int = 4) -> list:
    return [
        make_wav(music_dir / prefix / f"{n:02d}.wav", title=f"{prefix} {n}", artist=prefix, album=prefix, track=str(n))
        for n in range(1, count + 1)
    ]


def _titles(scanner) -> set[str]:
    with scanner.engine.connect() as conn:
        return set(conn.execute(select(Child.title).where(Child.is_dir.is_(False))).scalars())


def _scan_in_thread(scanner, timeout: float = 30, **kwargs):
    results = []
    thread = threading.Thread(target=lambda: results.append(scanner.scan_all(**kwargs)), daemon=True)
    thread.start()
    thread.join(timeout)
    assert not thread.is_alive(), "scan did not finish"
    return results[0]


async def test_oversized_numeric_tags_are_zeroed(services, music_dir):
    scanner = services.scanner
    _make_songs(music_dir, "Wide")
    odd = make_wav(
        music_dir / "odd.wav",
        title="Wide odd",
        artist="Wide",
        year="99999999999999999999",
        track="99999999999999999999",
    )
    assert scanner.scan_all(incremental=False)

    assert scanner.scan_count() == 5
    song = _song(scanner, odd)
    assert (song.year, song.track) == (0, 0)
    assert {"Wide 1", "Wide 2", "Wide 3", "Wide 4"} <= _titles(scanner)


async def test_failed_item_does_not_lose_the_rest(services, music_dir, monkeypatch):
    scanner = services.scanner
    _make_songs(music_dir, "Keep")
    broken = make_wav(music_dir / "Broken" / "01.wav", title="Broken", artist="Broken", album="Broken")
    original = scanner_module._Saver._merge

    def merge(self, conn, child, song_tags):
        if song_tags.title == "Broken":
            raise RuntimeError("constraint failed")
        return original(self, conn, child, song_tags)

    monkeypatch.setattr(scanner_module._Saver, "_merge", merge)
    assert scanner.scan_all(incremental=False)

    assert {"Keep 1", "Keep 2", "Keep 3", "Keep 4"} <= _titles(scanner)
    assert _count(scanner, select(func.count()).select_from(Child).where(Child.path == str(broken))) == 0
    # The rolled back album must not be remembered as written
    assert _count(scanner, select(func.count()).select_from(AlbumID3).where(AlbumID3.name == "Broken")) == 0


async def test_failed_batch_is_retried_one_by_one(services, music_dir, monkeypatch):
    scanner = services.scanner
    _make_songs(music_dir, "Retry")
    original = scanner_module._Saver._write_children

    def write_children(self, conn, batch):
        if len(batch) > 1:
            raise RuntimeError("database is locked")
        return original(self, conn, batch)

    monkeypatch.setattr(scanner_module._Saver, "_write_children", write_children)
    assert scanner.scan_all(incremental=False)

    assert {"Retry 1", "Retry 2", "Retry 3", "Retry 4"} <= _titles(scanner)
    assert _count(scanner, select(func.count()).select_from(Child).where(Child.is_dir.is_(False))) == 4


async def test_scan_finishes_when_saver_stops(services, music_dir, monkeypatch):
    scanner = services.scanner
    for n in range(30):
        make_wav(music_dir / f"{n:02d}.wav", title=f"Stall {n}")
    monkeypatch.setattr(scanner, "num_workers", 1)
    monkeypatch.setattr(scanner, "walker", Walker(scanner.engine, buffer_size=10, consumers=1))
    monkeypatch.setattr(scanner_module, "BATCH_SIZE", 1)

    def flush(self, conn):
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr(scanner_module._Saver, "_flush", flush)
    assert _scan_in_thread(scanner, incremental=False)
    assert not scanner.is_scanning()


async def test_directory_symlinks_are_not_followed(services, library):
    scanner = services.scanner
    os.symlink(library, library / "Alpha" / "loop", target_is_directory=True)
    assert _scan_in_thread(scanner, incremental=False)

    assert _count(scanner, select(func.count()).select_from(Child).where(Child.is_dir.is_(False))) == 4
    assert _count(scanner, select(func.count()).select_from(Child).where(Child.path.contains("/loop"))) == 0


async def test_undecodable_filename_does_not_stop_scan(services, music_dir):
    scanner = services.scanner
    _make_songs(music_dir, "Bytes")
    odd = os.path.join(os.fsencode(music_dir), b"caf\xe9.wav")
    try:
        make_wav(type(music_dir)(os.fsdecode(odd)), title="Bytes odd")
    except (OSError, UnicodeError):
        pytest.skip("filesystem rejects undecodable names")

    assert scanner.scan_all(incremental=False)
    assert {"Bytes 1", "Bytes 2", "Bytes 3", "Bytes 4"} <= _titles(scanner)


async def test_folder_for_path(services, library):
    scanner = services.scanner
    folder_id = _folder_id(scanner)
    root = str(library)
    with scanner.engine.connect() as conn:
        assert Walker.folder_for_path(conn, root + "/").id == folder_id
        assert Walker.folder_for_path(conn, root + "/Alpha/First").id == folder_id
        with pytest.raises(LookupError):
            Walker.folder_for_path(conn, root + "X/song.wav")
    assert normalize_folder_path("/a/b/") == "/a/b"


async def test_scan_by_root_id(services, library):
    scanner = services.scanner
    new = make_wav(library / "Beta" / "Second" / "02.wav", title="Night", artist="Beta", album="Second", track="2")
    scanner.scan_by_id(ids.child_id(_folder_id(scanner), "."))
    assert _song(scanner, new).title == "Night"


async def test_incremental_scan_reads_only_changed_files(services, library, monkeypatch):
    scanner = services.scanner
    reads = []
    original = tags.read

    def read(path):
        reads.append(path)
        return original(path)

    monkeypatch.setattr(tags, "read", read)
    assert scanner.scan_all(incremental=True)
    assert reads == []

    path = library / "Beta" / "Second" / "01.wav"
    future = time.time() + 120
    os.utime(path, (future, future))
    assert scanner.scan_all(incremental=True)
    assert reads == [str(path)]


async def test_album_artist_change_moves_song(services, library):
    scanner = services.scanner
    path = library / "Beta" / "Second" / "01.wav"
    make_wav(path, title="Dusk", artist="Beta", album_artist="Various", album="Second", track="1", year="1999")
    future = time.time() + 60
    os.utime(path, (future, future))

    assert scanner.scan_all(incremental=True)
    assert _song(scanner, path).album_id == ids.album_id("Various", "Second")
    old = ids.album_id("Beta", "Second")
    assert _count(scanner, select(func.count()).select_from(AlbumID3).where(AlbumID3.id == old)) == 0


async def test_renamed_file_gets_new_id(services, library):
    scanner = services.scanner
    folder_id = _folder_id(scanner)
    old_id = ids.child_id(folder_id, "Beta/Second/01.wav")
    os.rename(library / "Beta" / "Second" / "01.wav", library / "Beta" / "Second" / "09.wav")

    assert scanner.scan_all(incremental=True)
    song = _song(scanner, library / "Beta" / "Second" / "09.wav")
    assert song.id == ids.child_id(folder_id, "Beta/Second/09.wav")
    assert song.title == "Dusk"
    assert _count(scanner, select(func.count()).select_from(Child).where(Child.id == old_id)) == 0


async def test_only_one_scan_runs_at_a_time(services, library, monkeypatch):
    scanner = services.scanner
    entered = threading.Event()
    release = threading.Event()
    original = tags.read

    def read(path):
        entered.set()
        release.wait(10)
        return original(path)

    monkeypatch.setattr(tags, "read", read)
    first = threading.Thread(target=scanner.scan_all, kwargs={"incremental": False}, daemon=True)
    first.start()
    try:
        assert entered.wait(10)
        assert scanner.is_scanning()
        others = []
        threads = [threading.Thread(target=lambda: others.append(scanner.scan_all())) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)
        assert others == [False, False, False]
        with pytest.raises(ScanInProgressError):
            scanner.scan_by_id(ids.child_id(_folder_id(scanner), "."))
    finally:
        release.set()
        first.join(30)
    assert not first.is_alive()
    assert not scanner.is_scanning()


async def test_multi_valued_artist_and_genre(services, library):
    scanner = services.scanner
    path = make_wav(
        library / "Alpha" / "First" / "04.wav",
        title="Duet",
        artist=["Alpha", "Zeta"],
        album="First",
        album_artist="Alpha",
        track="4",
        genre=["Rock", "Pop"],
    )
    scanner.scan_path(str(path))

    song = _song(scanner, path)
    assert song.artist == "Alpha; Zeta"
    assert song.genre == "Rock; Pop"
    assert song.artist_id == ids.artist_id("Alpha")
    assert song.album_id == ids.album_id("Alpha", "First")
    with scanner.engine.connect() as conn:
        artists = set(conn.execute(select(song_artists.c.artist_id).where(song_artists.c.child_id == song.id)).scalars())
        genres = set(conn.execute(select(song_genres.c.genre_name).where(song_genres.c.child_id == song.id)).scalars())
    assert artists == {ids.artist_id("Alpha"), ids.artist_id("Zeta")}
    assert genres == {"Rock", "Pop"}
