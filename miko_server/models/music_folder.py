# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Music folder model - one configured library root."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from miko_server.models.base import Base


class MusicFolder(Base):
    """Library root. Created at first scan when configured; never auto-deleted."""

    __tablename__ = "music_folders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    path: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
