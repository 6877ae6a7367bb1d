# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database models."""

from miko_server.models.base import Base
from miko_server.models.music_folder import MusicFolder
from miko_server.models.child import Child
from miko_server.models.artist import ArtistID3
from miko_server.models.album import AlbumID3
from miko_server.models.genre import Genre, album_artists, album_genres, song_artists, song_genres
from miko_server.models.playlist import Playlist, PlaylistSong
from miko_server.models.bookmark import BookmarkRecord, PlayQueueRecord, PlayQueueSong
from miko_server.models.user import User
from miko_server.models.system_setting import SystemSetting
from miko_server.models.identity import Identity

__all__ = [
    "Base",
    "MusicFolder",
    "Child",
    "ArtistID3",
    "AlbumID3",
    "Genre",
    "song_artists",
    "album_artists",
    "song_genres",
    "album_genres",
    "Playlist",
    "PlaylistSong",
    "BookmarkRecord",
    "PlayQueueRecord",
    "PlayQueueSong",
    "User",
    "SystemSetting",
    "Identity",
]
