# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User model."""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from miko_server.models.base import Base
from miko_server.models.timestamp import TimestampMixin


class User(Base, TimestampMixin):
    """
    Account shared by the management API and Subsonic clients.
    password holds AES-GCM ciphertext (see crypto.py) or legacy clear text;
    Subsonic token auth needs the recoverable form.
    """

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(64), primary_key=True)
    password: Mapped[str] = mapped_column(String(512), nullable=False)
    email: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    admin_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    scrobbling_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_bit_rate: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    settings_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    download_role: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    upload_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    playlist_role: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    cover_art_role: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    comment_role: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    podcast_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stream_role: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    jukebox_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    share_role: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    video_conversion_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
