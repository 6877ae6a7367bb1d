# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Catalog rows to Subsonic payload dicts."""

from datetime import datetime, timezone

from miko_server.models import Child, MusicFolder, Playlist, User
from miko_server.services.browser import Directory, Index, IndexEntry, Indexes
from miko_server.services.now_playing import NowPlayingRecord


def _nz(value):
    """Drop zero/empty values, matching omitempty fields."""
    return value or None


def child(c: Child) -> dict:
    return {
        "id": c.id,
        "parent": _nz(c.parent),
        "isDir": bool(c.is_dir),
        "title": c.title,
        "album": _nz(c.album),
        "artist": _nz(c.artist),
        "track": _nz(c.track),
        "year": _nz(c.year),
        "genre": _nz(c.genre),
        "coverArt": _nz(c.cover_art),
        "size": _nz(c.size),
        "contentType": _nz(c.content_type),
        "suffix": _nz(c.suffix),
        "duration": _nz(c.duration),
        "bitRate": _nz(c.bit_rate),
        "path": _nz(c.path),
        "userRating": _nz(c.user_rating),
        "playCount": _nz(c.play_count),
        "lastPlayed": c.last_played,
        "discNumber": _nz(c.disc_number),
        "created": c.created,
        "starred": c.starred,
        "albumId": _nz(c.album_id),
        "artistId": _nz(c.artist_id),
        "type": _nz(c.type),
        "bookmarkPosition": _nz(c.bookmark_position),
    }


def album(row) -> dict:
    """ID3 album from a browser album row (AlbumID3 plus derived stats)."""
    a = row.AlbumID3
    return {
        "id": a.id,
        "name": a.name,
        "artist": _nz(a.artist),
        "artistId": _nz(a.artist_id),
        "coverArt": _nz(a.cover_art),
        "songCount": row.song_count or 0,
        "duration": row.duration or 0,
        "playCount": _nz(row.play_count),
        "created": a.created,
        "starred": a.starred,
        "userRating": _nz(a.user_rating),
        "year": _nz(a.year),
        "genre": _nz(a.genre),
    }


def album_as_child(row, parent: str = "") -> dict:
    """Album rendered as a directory child (albumList, search2, getStarred, tag-mode directories)."""
    a = row.AlbumID3
    return {
        "id": a.id,
        "parent": _nz(parent),
        "isDir": True,
        "title": a.name,
        "album": a.name,
        "artist": _nz(a.artist),
        "artistId": _nz(a.artist_id),
        "coverArt": _nz(a.cover_art),
        "duration": _nz(row.duration),
        "playCount": _nz(row.play_count),
        "created": a.created,
        "starred": a.starred,
        "userRating": _nz(a.user_rating),
        "year": _nz(a.year),
        "genre": _nz(a.genre),
    }


def artist(row) -> dict:
    """ID3 artist from a browser artist row (ArtistID3 plus album_count)."""
    a = row.ArtistID3
    return {
        "id": a.id,
        "name": a.name,
        "coverArt": _nz(a.cover_art),
        "artistImageUrl": _nz(a.artist_image_url),
        "albumCount": row.album_count or 0,
        "starred": a.starred,
        "userRating": _nz(a.user_rating),
        "averageRating": _nz(a.average_rating),
    }


def artist_short(row) -> dict:
    a = row.ArtistID3
    return {"id": a.id, "name": a.name, "starred": a.starred, "userRating": _nz(a.user_rating)}


def index_entry(entry: IndexEntry, id3: bool = False) -> dict:
    out = {"id": entry.id, "name": entry.name, "starred": entry.starred, "userRating": _nz(entry.user_rating)}
    if id3:
        out["albumCount"] = entry.album_count or 0
        out["coverArt"] = _nz(entry.cover_art)
    return out


def index_list(indexes: list[Index], id3: bool = False) -> list[dict]:
    return [{"name": i.name, "artist": [index_entry(e, id3) for e in i.entries]} for i in indexes]


def indexes(result: Indexes) -> dict:
    return {
        "lastModified": result.last_modified,
        "ignoredArticles": result.ignored_articles,
        "index": index_list(result.index),
        "child": [child(c) for c in result.children],
    }


def directory(d: Directory) -> dict:
    return {
        "id": d.id,
        "parent": _nz(d.parent),
        "name": d.name,
        "starred": d.starred,
        "userRating": _nz(d.user_rating),
        "playCount": _nz(d.play_count),
        "child": [child(c) if isinstance(c, Child) else album_as_child(c, d.id) for c in d.children],
    }


def music_folder(f: MusicFolder) -> dict:
    return {"id": f.id, "name": _nz(f.name)}


def playlist(p: Playlist, song_count: int, duration: int) -> dict:
    return {
        "id": str(p.id),
        "name": p.name,
        "comment": _nz(p.comment),
        "owner": p.owner,
        "public": bool(p.public),
        "songCount": song_count or 0,
        "duration": duration or 0,
        "created": p.created_at,
        "changed": p.updated_at,
    }


def user(u: User, folder_ids: list[int]) -> dict:
    return {
        "username": u.username,
        "email": _nz(u.email),
        "scrobblingEnabled": u.scrobbling_enabled,
        "maxBitRate": _nz(u.max_bit_rate),
        "adminRole": u.admin_role,
        "settingsRole": u.settings_role,
        "downloadRole": u.download_role,
        "uploadRole": u.upload_role,
        "playlistRole": u.playlist_role,
        "coverArtRole": u.cover_art_role,
        "commentRole": u.comment_role,
        "podcastRole": u.podcast_role,
        "streamRole": u.stream_role,
        "jukeboxRole": u.jukebox_role,
        "shareRole": u.share_role,
        "videoConversionRole": u.video_conversion_role,
        "folder": folder_ids,
    }


def now_playing_entry(record: NowPlayingRecord, song: Child, now: datetime | None = None) -> dict:
    out = child(song)
    out.update(
        username=record.username,
        minutesAgo=record.minutes_ago(now or datetime.now(timezone.utc)),
        playerId=record.player_id,
        playerName=_nz(record.player_name),
    )
    return out
