# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Stars, ratings, scrobbles and the now-playing list."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import ADMIN
from miko_server.services import ids
from miko_server.services.now_playing import NowPlaying

pytestmark = pytest.mark.anyio


async def _call(client, endpoint: str, **params) -> dict:
    r = await client.get(f"/rest/{endpoint}", params={**ADMIN, "f": "json", **params})
    assert r.status_code == 200, r.text
    return r.json()["subsonic-response"]


async def _song(client, title: str) -> dict:
    body = await _call(client, "search3", query=title)
    return next(s for s in body["searchResult3"]["song"] if s["title"] == title)


async def test_star_and_unstar(client, library):
    song = await _song(client, "Dawn")
    album_id = ids.album_id("Beta", "Second")
    artist_id = ids.artist_id("Gamma")

    await _call(client, "star", id=song["id"], albumId=album_id, artistId=artist_id)
    starred = (await _call(client, "getStarred2"))["starred2"]
    assert song["id"] in [s["id"] for s in starred["song"]]
    assert album_id in [a["id"] for a in starred["album"]]
    assert artist_id in [a["id"] for a in starred["artist"]]
    assert "starred" in (await _song(client, "Dawn"))

    legacy = (await _call(client, "getStarred"))["starred"]
    assert album_id in [a["id"] for a in legacy["album"]]

    await _call(client, "unstar", id=song["id"], albumId=album_id, artistId=artist_id)
    starred = (await _call(client, "getStarred2"))["starred2"]
    assert song["id"] not in [s["id"] for s in starred["song"]]
    assert album_id not in [a["id"] for a in starred["album"]]
    assert artist_id not in [a["id"] for a in starred["artist"]]


async def test_set_rating(client, library):
    album_id = ids.album_id("Alpha", "First")
    assert (await _call(client, "setRating", id=album_id, rating=4))["status"] == "ok"
    assert (await _call(client, "getAlbum", id=album_id))["album"]["userRating"] == 4

    song = await _song(client, "Noon")
    await _call(client, "setRating", id=song["id"], rating=2)
    assert (await _song(client, "Noon"))["userRating"] == 2
    await _call(client, "setRating", id=song["id"], rating=0)
    assert "userRating" not in (await _song(client, "Noon"))


async def test_set_rating_errors(client, library):
    album_id = ids.album_id("Alpha", "First")
    assert (await _call(client, "setRating", id=album_id, rating=6))["error"]["code"] == 10
    assert (await _call(client, "setRating", id=album_id, rating="five"))["error"]["code"] == 10
    assert (await _call(client, "setRating", id="missing", rating=3))["error"]["code"] == 70
    assert (await _call(client, "setRating", id=album_id))["error"]["code"] == 10


async def test_scrobble_counts_plays(client, library):
    song = await _song(client, "Dusk")
    before = song.get("playCount", 0)
    played = int(datetime(2024, 5, 1, tzinfo=timezone.utc).timestamp() * 1000)

    assert (await _call(client, "scrobble", id=song["id"], time=played))["status"] == "ok"
    after = await _song(client, "Dusk")
    assert after["playCount"] == before + 1
    assert after["lastPlayed"].startswith("2024-05-01T00:00:00")

    assert (await _call(client, "scrobble", id="missing"))["error"]["code"] == 70
    assert (await _call(client, "scrobble"))["error"]["code"] == 10


async def test_now_playing(client, library, services):
    song = await _song(client, "Loose")
    await _call(client, "scrobble", id=song["id"], submission="false", c="player")

    entries = (await _call(client, "getNowPlaying"))["nowPlaying"]["entry"]
    entry = next(e for e in entries if e["id"] == song["id"])
    assert entry["username"] == "admin"
    assert entry["playerName"] == "player"
    assert entry["minutesAgo"] == 0

    await _call(client, "scrobble", id=song["id"], c="player")
    entries = (await _call(client, "getNowPlaying"))["nowPlaying"]["entry"]
    assert song["id"] not in [e["id"] for e in entries if e["playerName"] == "player"]


def test_now_playing_expiry():
    table = NowPlaying(expiry=timedelta(minutes=10))
    table.update("admin", "a", "one")
    stale = table.update("admin", "b", "two")
    stale.updated_at -= timedelta(minutes=11)
    assert [r.song_id for r in table.entries()] == ["a"]

    # one entry per user and client
    table.update("admin", "c", "one")
    assert [r.song_id for r in table.entries()] == ["c"]
