# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Child model: a file or directory in the library."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from miko_server.models.base import Base


class Child(Base):
    """
    A song (is_dir=False) or directory (is_dir=True).
    id = md5("<music_folder_id>:<relative path>"); see services.ids.
    """

    __tablename__ = "children"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    parent: Mapped[str] = mapped_column(String(32), default="", nullable=False, index=True)
    is_dir: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    album: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    artist: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    track: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    year: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    genre: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    cover_art: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    content_type: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    suffix: Mapped[str] = mapped_column(String(16), default="", nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # seconds
    bit_rate: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # kbps
    path: Mapped[str] = mapped_column(String(2048), unique=True, nullable=False)
    play_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_played: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    disc_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # File mtime (UTC); incremental scans compare against it
    created: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    starred: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    album_id: Mapped[str] = mapped_column(String(32), default="", nullable=False, index=True)
    artist_id: Mapped[str] = mapped_column(String(32), default="", nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(16), default="music", nullable=False)
    user_rating: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bookmark_position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lyrics: Mapped[str] = mapped_column(Text, default="", nullable=False)
    music_folder_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)
