# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Bookmark and play queue models."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from miko_server.models.base import Base
from miko_server.models.timestamp import UpdatedMixin


class BookmarkRecord(Base, UpdatedMixin):
    """Playback position (ms) a user saved in a song."""

    __tablename__ = "bookmarks"

    username: Mapped[str] = mapped_column(String(64), primary_key=True)
    song_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)


class PlayQueueRecord(Base):
    """One saved play queue per user."""

    __tablename__ = "play_queues"

    username: Mapped[str] = mapped_column(String(64), primary_key=True)
    current: Mapped[str] = mapped_column(String(32), default="", nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    changed: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    changed_by: Mapped[str] = mapped_column(String(255), default="", nullable=False)


class PlayQueueSong(Base):
    """Song entry of a saved play queue."""

    __tablename__ = "play_queue_songs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    song_id: Mapped[str] = mapped_column(String(32), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
