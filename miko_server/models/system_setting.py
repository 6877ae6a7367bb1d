# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Key-value store for generated secrets."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from miko_server.models.base import Base

JWT_SECRET_KEY = "jwt_secret"
PASSWORD_SECRET_KEY = "password_secret"


class SystemSetting(Base):
    """Persisted setting (currently the auto-generated JWT and password secrets)."""

    __tablename__ = "system_settings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
