# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Artist model (ID3 view)."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from miko_server.models.base import Base


class ArtistID3(Base):
    """Artist identified by md5(name)."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    cover_art: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    artist_image_url: Mapped[str] = mapped_column(String(1024), default="", nullable=False)
    starred: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    user_rating: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
