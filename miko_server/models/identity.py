# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""CookieCloud identity bound to a local user."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from miko_server.models.base import Base
from miko_server.models.timestamp import UpdatedMixin


class Identity(Base, UpdatedMixin):
    """uuid/password pair used to pull cookies from a CookieCloud server."""

    __tablename__ = "cookiecloud_identities"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    uuid: Mapped[str] = mapped_column(Text, default="", nullable=False)
    password: Mapped[str] = mapped_column(Text, default="", nullable=False)
    url: Mapped[str] = mapped_column(Text, default="", nullable=False)
