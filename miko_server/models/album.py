# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Album model (ID3 view). Song count, duration and play stats are derived at query time."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from miko_server.models.base import Base


class AlbumID3(Base):
    """Album identified by md5("<display artist>|<album>")."""

    __tablename__ = "albums"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    artist: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    artist_id: Mapped[str] = mapped_column(String(32), default="", nullable=False, index=True)
    cover_art: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    created: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    starred: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    user_rating: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    year: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    genre: Mapped[str] = mapped_column(String(255), default="", nullable=False)
