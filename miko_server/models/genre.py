# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Genre model and the many-to-many link tables of the catalog."""

from sqlalchemy import Column, String, Table
from sqlalchemy.orm import Mapped, mapped_column

from miko_server.models.base import Base


class Genre(Base):
    """Genre keyed by name; counts are derived."""

    __tablename__ = "genres"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)


# Link rows are cleaned by the prune phase rather than by FK cascades:
# children are upserted in batches before their link rows are rewritten.
song_artists = Table(
    "song_artists",
    Base.metadata,
    Column("child_id", String(32), primary_key=True),
    Column("artist_id", String(32), primary_key=True, index=True),
)

album_artists = Table(
    "album_artists",
    Base.metadata,
    Column("album_id", String(32), primary_key=True),
    Column("artist_id", String(32), primary_key=True, index=True),
)

song_genres = Table(
    "song_genres",
    Base.metadata,
    Column("child_id", String(32), primary_key=True),
    Column("genre_name", String(255), primary_key=True, index=True),
)

album_genres = Table(
    "album_genres",
    Base.metadata,
    Column("album_id", String(32), primary_key=True),
    Column("genre_name", String(255), primary_key=True, index=True),
)
