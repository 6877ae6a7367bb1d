# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pytest fixtures. Settings point at a throwaway data directory before the app is imported."""

import os
import shutil
import tempfile
import wave
from pathlib import Path

import pytest

_ROOT = Path(tempfile.mkdtemp(prefix="miko-tests-"))
MUSIC_DIR = _ROOT / "music"
MUSIC_DIR.mkdir()

os.environ["MIKO_CONFIG"] = str(_ROOT / "absent.toml")
os.environ["MIKO_SUBSONIC__DATA_DIR"] = str(_ROOT / "data")
os.environ["MIKO_SUBSONIC__FOLDERS"] = f'["{MUSIC_DIR.as_posix()}"]'
os.environ["MIKO_COOKIECLOUD__URL"] = "http://cookiecloud.test"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from mutagen.id3 import APIC, TALB, TCON, TDRC, TIT2, TPE1, TPE2, TPOS, TRCK, USLT  # noqa: E402
from mutagen.wave import WAVE  # noqa: E402

from miko_server.auth import store_password  # noqa: E402
from miko_server.database import async_session_maker  # noqa: E402
from miko_server.main import app as miko_app  # noqa: E402
from miko_server.models import User  # noqa: E402

ADMIN = {"u": "admin", "p": "adminpassword"}

# Smallest valid PNG; enough for mime sniffing and cover caching
PNG = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89"
    b"\x00\x00\x00\rIDATx\x9cc\xf8\x0f\x00\x00\x01\x01\x00\x05\x18\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
)


def make_wav(
    path: Path,
    title: str = "",
    artist: str | list[str] = "",
    album: str = "",
    track: str = "",
    disc: str = "",
    year: str = "",
    genre: str | list[str] = "",
    lyrics: str = "",
    cover: bytes | None = None,
    album_artist: str = "",
) -> Path:
    """Write a one-second silent WAV and tag it through mutagen's ID3 support.

    List values become multi-valued text frames.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(8000)
        w.writeframes(b"\x00\x00" * 8000)

    audio = WAVE(str(path))
    audio.add_tags()
    frames = [
        (TIT2, title),
        (TPE1, artist),
        (TPE2, album_artist),
        (TALB, album),
        (TRCK, track),
        (TPOS, disc),
        (TDRC, year),
        (TCON, genre),
    ]
    for frame, value in frames:
        if value:
            audio.tags.add(frame(encoding=3, text=value if isinstance(value, list) else [value]))
    if lyrics:
        audio.tags.add(USLT(encoding=3, lang="eng", desc="", text=lyrics))
    if cover:
        audio.tags.add(APIC(encoding=3, mime="image/png", type=3, desc="Cover", data=cover))
    audio.save()
    return path


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def music_dir():
    """Empty library root; whatever a previous test left behind is removed."""
    for entry in MUSIC_DIR.iterdir():
        if entry.is_dir():
            shutil.rmtree(entry)
        else:
            entry.unlink()
    return MUSIC_DIR


@pytest.fixture
async def app():
    async with miko_app.router.lifespan_context(miko_app):
        yield miko_app


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def services(app):
    return app.state.services


@pytest.fixture
def library(music_dir, services):
    """Two albums by two artists plus a loose file, fully scanned."""
    shutil.rmtree(services.scanner.cover_cache_dir(), ignore_errors=True)
    make_wav(
        music_dir / "Alpha" / "First" / "01.wav",
        title="Dawn",
        artist="Alpha",
        album="First",
        track="1",
        year="2001",
        genre="Rock",
        lyrics="[00:01.00]hello\n[00:02.50]world",
        cover=PNG,
    )
    make_wav(
        music_dir / "Alpha" / "First" / "02.wav",
        title="Noon",
        artist="Alpha",
        album="First",
        track="2",
        year="2001",
        genre="Rock",
    )
    make_wav(
        music_dir / "Beta" / "Second" / "01.wav",
        title="Dusk",
        artist="Beta",
        album="Second",
        track="1",
        year="1999",
        genre="Jazz",
    )
    make_wav(music_dir / "loose.wav", title="Loose", artist="Gamma")
    assert services.scanner.scan_all(incremental=False)
    return music_dir


async def login(client: AsyncClient, username: str = "admin", password: str = "adminpassword") -> dict:
    r = await client.post("/api/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}


@pytest.fixture
async def auth_headers(client):
    return await login(client)


async def make_user(username: str, password: str, admin: bool = False) -> None:
    """Create a user unless it already exists from an earlier test."""
    async with async_session_maker() as db:
        if await db.get(User, username) is not None:
            return
        user = User(username=username, admin_role=admin)
        store_password(user, password)
        db.add(user)
        await db.commit()
