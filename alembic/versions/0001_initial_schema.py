# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later
"""Initial catalog, account and annotation schema.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = False) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False))
    return cols


def _link_table(name: str, left: str, right: str, right_len: int) -> None:
    op.create_table(
        name,
        sa.Column(left, sa.String(32), primary_key=True),
        sa.Column(right, sa.String(right_len), primary_key=True),
    )
    op.create_index(f"ix_{name}_{right}", name, [right])


def upgrade() -> None:
    op.create_table(
        "music_folders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("path", sa.String(1024), nullable=False, unique=True),
    )
    op.create_table(
        "children",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("parent", sa.String(32), nullable=False),
        sa.Column("is_dir", sa.Boolean, nullable=False),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("album", sa.String(512), nullable=False),
        sa.Column("artist", sa.String(512), nullable=False),
        sa.Column("track", sa.Integer, nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("genre", sa.String(255), nullable=False),
        sa.Column("cover_art", sa.String(64), nullable=False),
        sa.Column("size", sa.Integer, nullable=False),
        sa.Column("content_type", sa.String(64), nullable=False),
        sa.Column("suffix", sa.String(16), nullable=False),
        sa.Column("duration", sa.Integer, nullable=False),
        sa.Column("bit_rate", sa.Integer, nullable=False),
        sa.Column("path", sa.String(2048), nullable=False, unique=True),
        sa.Column("play_count", sa.Integer, nullable=False),
        sa.Column("last_played", sa.DateTime, nullable=True),
        sa.Column("disc_number", sa.Integer, nullable=False),
        sa.Column("created", sa.DateTime, nullable=True),
        sa.Column("starred", sa.DateTime, nullable=True),
        sa.Column("album_id", sa.String(32), nullable=False),
        sa.Column("artist_id", sa.String(32), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("user_rating", sa.Integer, nullable=False),
        sa.Column("bookmark_position", sa.Integer, nullable=False),
        sa.Column("lyrics", sa.Text, nullable=False),
        sa.Column("music_folder_id", sa.Integer, nullable=False),
    )
    for column in ("parent", "is_dir", "album_id", "artist_id", "music_folder_id"):
        op.create_index(f"ix_children_{column}", "children", [column])

    op.create_table(
        "artists",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("cover_art", sa.String(64), nullable=False),
        sa.Column("artist_image_url", sa.String(1024), nullable=False),
        sa.Column("starred", sa.DateTime, nullable=True),
        sa.Column("user_rating", sa.Integer, nullable=False),
        sa.Column("average_rating", sa.Float, nullable=False),
    )
    op.create_index("ix_artists_name", "artists", ["name"])
    op.create_table(
        "albums",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("artist", sa.String(512), nullable=False),
        sa.Column("artist_id", sa.String(32), nullable=False),
        sa.Column("cover_art", sa.String(64), nullable=False),
        sa.Column("created", sa.DateTime, nullable=True),
        sa.Column("starred", sa.DateTime, nullable=True),
        sa.Column("user_rating", sa.Integer, nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("genre", sa.String(255), nullable=False),
    )
    op.create_index("ix_albums_name", "albums", ["name"])
    op.create_index("ix_albums_artist_id", "albums", ["artist_id"])
    op.create_table("genres", sa.Column("name", sa.String(255), primary_key=True))
    _link_table("song_artists", "child_id", "artist_id", 32)
    _link_table("album_artists", "album_id", "artist_id", 32)
    _link_table("song_genres", "child_id", "genre_name", 255)
    _link_table("album_genres", "album_id", "genre_name", 255)

    op.create_table(
        "playlists",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("comment", sa.Text, nullable=False),
        sa.Column("owner", sa.String(64), nullable=False),
        sa.Column("public", sa.Boolean, nullable=False),
        *_timestamps(updated=True),
    )
    op.create_index("ix_playlists_owner", "playlists", ["owner"])
    op.create_table(
        "playlist_songs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("playlist_id", sa.Integer, sa.ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False),
        sa.Column("song_id", sa.String(32), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
    )
    op.create_index("ix_playlist_songs_playlist_id", "playlist_songs", ["playlist_id"])
    op.create_index("ix_playlist_songs_song_id", "playlist_songs", ["song_id"])

    op.create_table(
        "bookmarks",
        sa.Column("username", sa.String(64), primary_key=True),
        sa.Column("song_id", sa.String(32), primary_key=True),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=False),
        *_timestamps(updated=True),
    )
    op.create_table(
        "play_queues",
        sa.Column("username", sa.String(64), primary_key=True),
        sa.Column("current", sa.String(32), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("changed", sa.DateTime, nullable=False),
        sa.Column("changed_by", sa.String(255), nullable=False),
    )
    op.create_table(
        "play_queue_songs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("song_id", sa.String(32), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
    )
    op.create_index("ix_play_queue_songs_username", "play_queue_songs", ["username"])

    op.create_table(
        "users",
        sa.Column("username", sa.String(64), primary_key=True),
        sa.Column("password", sa.String(512), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        *[
            sa.Column(name, sa.Boolean, nullable=False)
            for name in (
                "admin_role",
                "scrobbling_enabled",
                "settings_role",
                "download_role",
                "upload_role",
                "playlist_role",
                "cover_art_role",
                "comment_role",
                "podcast_role",
                "stream_role",
                "jukebox_role",
                "share_role",
                "video_conversion_role",
            )
        ],
        sa.Column("max_bit_rate", sa.Integer, nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("key", sa.String(64), nullable=False, unique=True),
        sa.Column("value", sa.Text, nullable=False),
    )
    op.create_table(
        "cookiecloud_identities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(64), nullable=False, unique=True),
        sa.Column("uuid", sa.Text, nullable=False),
        sa.Column("password", sa.Text, nullable=False),
        sa.Column("url", sa.Text, nullable=False),
        *_timestamps(updated=True),
    )


def downgrade() -> None:
    for table in (
        "cookiecloud_identities",
        "system_settings",
        "users",
        "play_queue_songs",
        "play_queues",
        "bookmarks",
        "playlist_songs",
        "playlists",
        "album_genres",
        "song_genres",
        "album_artists",
        "song_artists",
        "genres",
        "albums",
        "artists",
        "children",
        "music_folders",
    ):
        op.drop_table(table)
