# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Read-side queries over the catalog: folders, indexes, directories, lists, search."""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

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
from miko_server.services import tags
from miko_server.services.walker import normalize_folder_path

logger = logging.getLogger(__name__)

ALBUM_LIST_TYPES = (
    "random",
    "newest",
    "frequent",
    "recent",
    "starred",
    "alphabeticalByName",
    "alphabeticalByArtist",
    "byYear",
    "byGenre",
    "highest",
)


class NotFoundError(LookupError):
    pass


@dataclass
class IndexEntry:
    id: str
    name: str
    starred: datetime | None = None
    user_rating: int = 0
    album_count: int | None = None
    cover_art: str = ""


@dataclass
class Index:
    name: str
    entries: list = field(default_factory=list)


@dataclass
class Indexes:
    last_modified: int
    ignored_articles: str
    index: list[Index] = field(default_factory=list)
    children: list[Child] = field(default_factory=list)


@dataclass
class Directory:
    id: str
    name: str
    parent: str = ""
    starred: datetime | None = None
    user_rating: int = 0
    play_count: int = 0
    # Child rows, or album rows when browsing an artist in tag mode
    children: list = field(default_factory=list)


# -- projections ---------------------------------------------------------------


def _album_songs():
    return and_(Child.album_id == AlbumID3.id, Child.is_dir.is_(False))


def album_columns(include_last_played: bool = False) -> list:
    """AlbumID3 plus song count, duration, play count (and last played) derived from children."""
    columns = [
        AlbumID3,
        select(func.count()).where(_album_songs()).correlate(AlbumID3).scalar_subquery().label("song_count"),
        select(func.coalesce(func.sum(Child.duration), 0))
        .where(_album_songs())
        .correlate(AlbumID3)
        .scalar_subquery()
        .label("duration"),
        select(func.coalesce(func.sum(Child.play_count), 0))
        .where(_album_songs())
        .correlate(AlbumID3)
        .scalar_subquery()
        .label("play_count"),
    ]
    if include_last_played:
        columns.append(
            select(func.max(Child.last_played))
            .where(_album_songs())
            .correlate(AlbumID3)
            .scalar_subquery()
            .label("last_played")
        )
    return columns


def artist_columns() -> list:
    return [
        ArtistID3,
        select(func.count())
        .select_from(album_artists)
        .where(album_artists.c.artist_id == ArtistID3.id)
        .correlate(ArtistID3)
        .scalar_subquery()
        .label("album_count"),
    ]


def _albums_in_folder(folder_id: int):
    return AlbumID3.id.in_(select(Child.album_id).where(Child.music_folder_id == folder_id))


def _artists_in_folder(folder_id: int):
    return ArtistID3.id.in_(
        select(song_artists.c.artist_id)
        .join(Child, Child.id == song_artists.c.child_id)
        .where(Child.music_folder_id == folder_id)
    )


def strip_articles(name: str, articles: list[str]) -> str:
    upper = name.upper()
    for article in articles:
        prefix = article.upper() + " "
        if upper.startswith(prefix):
            return name[len(prefix) :]
    return name


def _group(entries: list[IndexEntry], ignored_articles: str) -> list[Index]:
    articles = ignored_articles.split()
    groups: dict[str, list[IndexEntry]] = {}
    for entry in entries:
        if not entry.name:
            continue
        sort_name = strip_articles(entry.name, articles) or entry.name
        groups.setdefault(sort_name[0].upper(), []).append(entry)
    return [
        Index(name=key, entries=sorted(groups[key], key=lambda e: e.name)) for key in sorted(groups)
    ]


# -- folders & indexes ---------------------------------------------------------


async def get_music_folders(db: AsyncSession) -> list[MusicFolder]:
    result = await db.execute(select(MusicFolder).order_by(MusicFolder.id))
    return list(result.scalars().all())


async def ensure_music_folders(db: AsyncSession, paths: list[str]) -> list[MusicFolder]:
    """Create missing MusicFolder rows for configured roots."""
    known = {f.path for f in await get_music_folders(db)}
    for path in map(normalize_folder_path, paths):
        if path not in known:
            db.add(MusicFolder(name=os.path.basename(path.rstrip("/")) or path, path=path))
            logger.info("Registered music folder %s", path)
    await db.flush()
    return await get_music_folders(db)


async def _root_ids(db: AsyncSession, folder_id: int | None) -> list[str]:
    q = select(Child.id).where(Child.is_dir.is_(True), Child.parent == "")
    if folder_id is not None:
        q = q.where(Child.music_folder_id == folder_id)
    return list((await db.execute(q)).scalars().all())


async def get_indexes(
    db: AsyncSession,
    mode: str,
    folder_id: int | None = None,
    if_modified_since: int = 0,
    last_modified: int = 0,
    ignored_articles: str = "",
) -> Indexes:
    """Top-level entries grouped by first letter. Empty when nothing changed since if_modified_since (ms)."""
    out = Indexes(last_modified=last_modified, ignored_articles=ignored_articles)
    if if_modified_since and last_modified and last_modified <= if_modified_since:
        return out

    if mode == "tag":
        q = select(ArtistID3).where(ArtistID3.id.in_(select(song_artists.c.artist_id)))
        if folder_id is not None:
            q = q.where(_artists_in_folder(folder_id))
        artists = (await db.execute(q)).scalars().all()
        entries = [IndexEntry(a.id, a.name, a.starred, a.user_rating) for a in artists]
        out.index = _group(entries, ignored_articles)
        return out

    roots = await _root_ids(db, folder_id)
    if not roots:
        return out
    top = (await db.execute(select(Child).where(Child.parent.in_(roots)))).scalars().all()
    entries = [IndexEntry(c.id, c.title, c.starred, c.user_rating) for c in top if c.is_dir]
    out.index = _group(entries, ignored_articles)
    out.children = sorted((c for c in top if not c.is_dir), key=lambda c: c.title)
    return out


# -- directories -------------------------------------------------------------


async def _file_directory(db: AsyncSession, item_id: str) -> Directory:
    row = (
        await db.execute(select(Child).where(Child.id == item_id, Child.is_dir.is_(True)))
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError(f"directory {item_id} not found")
    children = (
        await db.execute(select(Child).where(Child.parent == item_id).order_by(Child.is_dir.desc(), Child.title))
    ).scalars().all()
    return Directory(
        id=row.id,
        name=row.title,
        parent=row.parent,
        starred=row.starred,
        user_rating=row.user_rating,
        play_count=row.play_count,
        children=list(children),
    )


async def get_directory(db: AsyncSession, mode: str, item_id: str) -> Directory:
    """
    File mode lists a directory's children (directories first, then by title).
    Tag mode resolves the id as an artist (children are its albums), then an
    album (children are its songs by disc and track), then as a plain directory.
    """
    if mode != "tag":
        return await _file_directory(db, item_id)

    artist = await db.get(ArtistID3, item_id)
    if artist is not None:
        albums = (
            await db.execute(
                select(*album_columns())
                .join(album_artists, album_artists.c.album_id == AlbumID3.id)
                .where(album_artists.c.artist_id == item_id)
                .order_by(AlbumID3.year.desc(), AlbumID3.name)
            )
        ).all()
        return Directory(
            id=artist.id,
            name=artist.name,
            starred=artist.starred,
            user_rating=artist.user_rating,
            children=list(albums),
        )

    album = await db.get(AlbumID3, item_id)
    if album is not None:
        songs = await _album_songs_list(db, item_id)
        return Directory(
            id=album.id,
            name=album.name,
            parent=album.artist_id,
            starred=album.starred,
            user_rating=album.user_rating,
            children=songs,
        )

    return await _file_directory(db, item_id)


async def _album_songs_list(db: AsyncSession, album_id: str) -> list[Child]:
    result = await db.execute(
        select(Child)
        .where(Child.album_id == album_id, Child.is_dir.is_(False))
        .order_by(Child.disc_number, Child.track, Child.title)
    )
    return list(result.scalars().all())


# -- ID3 browsing ---------------------------------------------------------------


async def get_genres(db: AsyncSession) -> list:
    song_count = (
        select(func.count())
        .select_from(song_genres)
        .where(song_genres.c.genre_name == Genre.name)
        .correlate(Genre)
        .scalar_subquery()
    )
    album_count = (
        select(func.count())
        .select_from(album_genres)
        .where(album_genres.c.genre_name == Genre.name)
        .correlate(Genre)
        .scalar_subquery()
    )
    result = await db.execute(
        select(Genre.name, song_count.label("song_count"), album_count.label("album_count")).order_by(Genre.name)
    )
    return list(result.all())


async def get_artists(db: AsyncSession, folder_id: int | None = None, ignored_articles: str = "") -> list[Index]:
    q = select(*artist_columns())
    if folder_id is not None:
        q = q.where(_artists_in_folder(folder_id))
    rows = (await db.execute(q)).all()
    entries = [
        IndexEntry(
            id=row.ArtistID3.id,
            name=row.ArtistID3.name,
            starred=row.ArtistID3.starred,
            user_rating=row.ArtistID3.user_rating,
            album_count=row.album_count,
            cover_art=row.ArtistID3.cover_art,
        )
        for row in rows
    ]
    return _group(entries, ignored_articles)


async def get_artist(db: AsyncSession, artist_id: str):
    """Return (artist row with album_count, album rows)."""
    row = (await db.execute(select(*artist_columns()).where(ArtistID3.id == artist_id))).one_or_none()
    if row is None:
        raise NotFoundError(f"artist {artist_id} not found")
    albums = (
        await db.execute(
            select(*album_columns())
            .join(album_artists, album_artists.c.album_id == AlbumID3.id)
            .where(album_artists.c.artist_id == artist_id)
            .order_by(AlbumID3.year.desc(), AlbumID3.name)
        )
    ).all()
    return row, list(albums)


async def get_album(db: AsyncSession, album_id: str):
    """Return (album row with stats, songs ordered by disc and track)."""
    row = (await db.execute(select(*album_columns(True)).where(AlbumID3.id == album_id))).one_or_none()
    if row is None:
        raise NotFoundError(f"album {album_id} not found")
    return row, await _album_songs_list(db, album_id)


async def get_song(db: AsyncSession, song_id: str) -> Child:
    song = (
        await db.execute(select(Child).where(Child.id == song_id, Child.is_dir.is_(False)))
    ).scalar_one_or_none()
    if song is None:
        raise NotFoundError(f"song {song_id} not found")
    return song


async def get_songs(db: AsyncSession, song_ids: list[str]) -> list[Child]:
    """Songs for the given ids, in the given order; unknown ids are skipped."""
    if not song_ids:
        return []
    rows = (await db.execute(select(Child).where(Child.id.in_(set(song_ids))))).scalars().all()
    by_id = {row.id: row for row in rows}
    return [by_id[i] for i in song_ids if i in by_id]


# -- lists -----------------------------------------------------------------------


async def get_album_list(
    db: AsyncSession,
    list_type: str,
    size: int = 10,
    offset: int = 0,
    from_year: int = 0,
    to_year: int = 0,
    genre: str = "",
    folder_id: int | None = None,
) -> list:
    if list_type not in ALBUM_LIST_TYPES:
        raise ValueError(f"unknown album list type {list_type!r}")
    columns = album_columns(include_last_played=list_type == "recent")
    q = select(*columns)
    if folder_id is not None:
        q = q.where(_albums_in_folder(folder_id))

    if list_type == "random":
        q = q.order_by(func.random())
    elif list_type == "newest":
        q = q.order_by(AlbumID3.created.desc())
    elif list_type == "frequent":
        q = q.order_by(columns[3].desc())
    elif list_type == "recent":
        last_played = columns[4]
        q = q.where(last_played.isnot(None)).order_by(last_played.desc())
    elif list_type == "starred":
        q = q.where(AlbumID3.starred.isnot(None)).order_by(AlbumID3.starred.desc())
    elif list_type == "highest":
        q = q.where(AlbumID3.user_rating > 0).order_by(AlbumID3.user_rating.desc(), AlbumID3.name)
    elif list_type == "alphabeticalByName":
        q = q.order_by(AlbumID3.name)
    elif list_type == "alphabeticalByArtist":
        q = q.order_by(AlbumID3.artist, AlbumID3.name)
    elif list_type == "byYear":
        low, high = sorted((from_year, to_year))
        q = q.where(AlbumID3.year >= low, AlbumID3.year <= high).order_by(AlbumID3.year.desc())
    elif list_type == "byGenre":
        q = q.where(
            AlbumID3.id.in_(select(album_genres.c.album_id).where(album_genres.c.genre_name == genre))
        ).order_by(AlbumID3.name)

    result = await db.execute(q.limit(size).offset(offset))
    return list(result.all())


async def get_random_songs(
    db: AsyncSession,
    size: int = 10,
    genre: str = "",
    from_year: int = 0,
    to_year: int = 0,
    folder_id: int | None = None,
) -> list[Child]:
    q = select(Child).where(Child.is_dir.is_(False))
    if folder_id is not None:
        q = q.where(Child.music_folder_id == folder_id)
    if genre:
        q = q.where(Child.id.in_(select(song_genres.c.child_id).where(song_genres.c.genre_name == genre)))
    if from_year > 0:
        q = q.where(Child.year >= from_year)
    if to_year > 0:
        q = q.where(Child.year <= to_year)
    result = await db.execute(q.order_by(func.random()).limit(size))
    return list(result.scalars().all())


async def get_songs_by_genre(
    db: AsyncSession, genre: str, count: int = 10, offset: int = 0, folder_id: int | None = None
) -> list[Child]:
    q = (
        select(Child)
        .join(song_genres, song_genres.c.child_id == Child.id)
        .where(song_genres.c.genre_name == genre, Child.is_dir.is_(False))
    )
    if folder_id is not None:
        q = q.where(Child.music_folder_id == folder_id)
    result = await db.execute(q.order_by(Child.album, Child.disc_number, Child.track).limit(count).offset(offset))
    return list(result.scalars().all())


async def get_starred(db: AsyncSession, folder_id: int | None = None):
    """Return (artist rows, album rows, songs) that carry a star."""
    artist_q = select(*artist_columns()).where(ArtistID3.starred.isnot(None)).order_by(ArtistID3.starred.desc())
    album_q = select(*album_columns()).where(AlbumID3.starred.isnot(None)).order_by(AlbumID3.starred.desc())
    song_q = select(Child).where(Child.is_dir.is_(False), Child.starred.isnot(None)).order_by(Child.starred.desc())
    if folder_id is not None:
        artist_q = artist_q.where(_artists_in_folder(folder_id))
        album_q = album_q.where(_albums_in_folder(folder_id))
        song_q = song_q.where(Child.music_folder_id == folder_id)
    artists = (await db.execute(artist_q)).all()
    albums = (await db.execute(album_q)).all()
    songs = (await db.execute(song_q)).scalars().all()
    return list(artists), list(albums), list(songs)


async def get_top_songs(db: AsyncSession, artist_name: str, count: int = 50) -> list[Child]:
    q = (
        select(Child)
        .where(Child.is_dir.is_(False), Child.artist == artist_name)
        .order_by(Child.play_count.desc(), Child.title)
        .limit(count)
    )
    return list((await db.execute(q)).scalars().all())


async def get_similar_songs(db: AsyncSession, item_id: str, count: int = 50) -> list[Child]:
    """Random songs sharing an artist with the given song, album or artist id."""
    artist_ids = select(song_artists.c.artist_id).where(song_artists.c.child_id == item_id)
    album_artist_ids = select(album_artists.c.artist_id).where(album_artists.c.album_id == item_id)
    q = (
        select(Child)
        .join(song_artists, song_artists.c.child_id == Child.id)
        .where(
            Child.is_dir.is_(False),
            Child.id != item_id,
            or_(
                song_artists.c.artist_id == item_id,
                song_artists.c.artist_id.in_(artist_ids),
                song_artists.c.artist_id.in_(album_artist_ids),
            ),
        )
        .distinct()
        .order_by(func.random())
        .limit(count)
    )
    return list((await db.execute(q)).scalars().all())


# -- search ------------------------------------------------------------------------


def _pattern(query: str) -> str:
    query = (query or "").strip().strip('"')
    return f"%{query}%" if query else "%"


async def search(
    db: AsyncSession,
    query: str,
    artist_count: int = 20,
    artist_offset: int = 0,
    album_count: int = 20,
    album_offset: int = 0,
    song_count: int = 20,
    song_offset: int = 0,
    folder_id: int | None = None,
):
    """LIKE substring search. Returns (artist rows, album rows, songs)."""
    pattern = _pattern(query)
    artist_q = select(*artist_columns()).where(ArtistID3.name.like(pattern)).order_by(ArtistID3.name)
    album_q = select(*album_columns()).where(AlbumID3.name.like(pattern)).order_by(AlbumID3.name)
    song_q = (
        select(Child)
        .where(
            Child.is_dir.is_(False),
            or_(Child.title.like(pattern), Child.album.like(pattern), Child.artist.like(pattern)),
        )
        .order_by(Child.title)
    )
    if folder_id is not None:
        artist_q = artist_q.where(_artists_in_folder(folder_id))
        album_q = album_q.where(_albums_in_folder(folder_id))
        song_q = song_q.where(Child.music_folder_id == folder_id)

    artists = (await db.execute(artist_q.limit(artist_count).offset(artist_offset))).all() if artist_count > 0 else []
    albums = (await db.execute(album_q.limit(album_count).offset(album_offset))).all() if album_count > 0 else []
    songs = (await db.execute(song_q.limit(song_count).offset(song_offset))).scalars().all() if song_count > 0 else []
    return list(artists), list(albums), list(songs)


async def search_songs(db: AsyncSession, query: str, count: int = 20, offset: int = 0):
    """Legacy search: (songs, total hits)."""
    pattern = _pattern(query)
    where = and_(
        Child.is_dir.is_(False),
        or_(Child.title.like(pattern), Child.album.like(pattern), Child.artist.like(pattern)),
    )
    total = (await db.execute(select(func.count()).select_from(Child).where(where))).scalar_one()
    songs = (await db.execute(select(Child).where(where).order_by(Child.title).limit(count).offset(offset))).scalars()
    return list(songs.all()), total


# -- cover art -------------------------------------------------------------------


async def _song_path_for(db: AsyncSession, item_id: str) -> str | None:
    """File whose embedded image stands in for the cover of a song, directory, album or artist."""
    child = await db.get(Child, item_id)
    if child is not None and not child.is_dir:
        return child.path
    if child is not None:
        q = select(Child.path).where(Child.parent == item_id, Child.is_dir.is_(False))
    elif await db.get(AlbumID3, item_id) is not None:
        q = select(Child.path).where(Child.album_id == item_id, Child.is_dir.is_(False))
    else:
        q = (
            select(Child.path)
            .join(song_artists, song_artists.c.child_id == Child.id)
            .where(song_artists.c.artist_id == item_id, Child.is_dir.is_(False))
        )
    return (await db.execute(q.order_by(Child.disc_number, Child.track, Child.path).limit(1))).scalar_one_or_none()


async def resolve_cover_art(db: AsyncSession, cache_dir: Path, item_id: str) -> bytes:
    """Cover bytes from the cache, else the embedded image of a representative song."""
    if not item_id or "/" in item_id or item_id in (".", ".."):
        raise NotFoundError("cover art not found")
    cached = cache_dir / item_id
    loop = asyncio.get_running_loop()
    if cached.is_file():
        return await loop.run_in_executor(None, cached.read_bytes)

    path = await _song_path_for(db, item_id)
    if path is None:
        raise NotFoundError("cover art not found")
    data = await loop.run_in_executor(None, _read_image_quiet, path)
    if not data:
        raise NotFoundError("cover art not found")
    return data


def _read_image_quiet(path: str) -> bytes | None:
    try:
        return tags.read_image(path)
    except tags.TagReadError as e:
        logger.warning("Failed to read cover from %s: %s", path, e)
        return None
