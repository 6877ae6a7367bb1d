# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Playlist endpoints, including ownership rules between users."""

import pytest

from conftest import ADMIN, make_user

pytestmark = pytest.mark.anyio

GUEST = {"u": "guest", "p": "guestpassword"}


async def _call(client, endpoint: str, auth: dict = ADMIN, **params) -> dict:
    r = await client.get(f"/rest/{endpoint}", params={**auth, "f": "json", **params})
    assert r.status_code == 200, r.text
    return r.json()["subsonic-response"]


async def _songs(client) -> dict[str, str]:
    body = await _call(client, "search3", query="")
    return {s["title"]: s["id"] for s in body["searchResult3"]["song"]}


async def test_create_and_get_playlist(client, library):
    songs = await _songs(client)
    body = await _call(client, "createPlaylist", name="Morning", songId=[songs["Dawn"], songs["Noon"]])
    playlist = body["playlist"]
    assert playlist["name"] == "Morning"
    assert playlist["owner"] == "admin"
    assert playlist["public"] is False
    assert playlist["songCount"] == 2
    assert playlist["duration"] == 2
    assert [e["title"] for e in playlist["entry"]] == ["Dawn", "Noon"]

    body = await _call(client, "getPlaylist", id=playlist["id"])
    assert [e["title"] for e in body["playlist"]["entry"]] == ["Dawn", "Noon"]

    body = await _call(client, "getPlaylists")
    listed = {p["id"]: p for p in body["playlists"]["playlist"]}
    assert listed[playlist["id"]]["songCount"] == 2


async def test_create_requires_name(client, library):
    body = await _call(client, "createPlaylist")
    assert body["error"]["code"] == 10


async def test_create_with_playlist_id_replaces_songs(client, library):
    songs = await _songs(client)
    created = (await _call(client, "createPlaylist", name="Swap", songId=songs["Dawn"]))["playlist"]
    body = await _call(client, "createPlaylist", playlistId=created["id"], songId=[songs["Dusk"], songs["Loose"]])
    assert body["playlist"]["name"] == "Swap"
    assert [e["title"] for e in body["playlist"]["entry"]] == ["Dusk", "Loose"]


async def test_update_playlist(client, library):
    songs = await _songs(client)
    created = (
        await _call(client, "createPlaylist", name="Edit", songId=[songs["Dawn"], songs["Noon"], songs["Dusk"]])
    )["playlist"]

    body = await _call(
        client,
        "updatePlaylist",
        playlistId=created["id"],
        name="Edited",
        comment="late",
        public="true",
        songIndexToRemove=[0, 2],
        songIdToAdd=songs["Loose"],
    )
    assert body["status"] == "ok"

    playlist = (await _call(client, "getPlaylist", id=created["id"]))["playlist"]
    assert playlist["name"] == "Edited"
    assert playlist["comment"] == "late"
    assert playlist["public"] is True
    assert [e["title"] for e in playlist["entry"]] == ["Noon", "Loose"]


async def test_missing_playlist(client, library):
    body = await _call(client, "getPlaylist", id=999999)
    assert body["error"]["code"] == 70
    body = await _call(client, "getPlaylist")
    assert body["error"]["code"] == 10
    body = await _call(client, "getPlaylist", id="abc")
    assert body["error"]["code"] == 10


async def test_other_users_playlists(client, library):
    await make_user(GUEST["u"], GUEST["p"])
    songs = await _songs(client)
    private = (await _call(client, "createPlaylist", name="Mine", songId=songs["Dawn"]))["playlist"]
    shared = (await _call(client, "createPlaylist", name="Ours", songId=songs["Noon"]))["playlist"]
    await _call(client, "updatePlaylist", playlistId=shared["id"], public="true")

    assert (await _call(client, "getPlaylist", auth=GUEST, id=private["id"]))["error"]["code"] == 70
    body = await _call(client, "getPlaylist", auth=GUEST, id=shared["id"])
    assert body["playlist"]["name"] == "Ours"

    body = await _call(client, "getPlaylists", auth=GUEST, username="admin")
    ids = [p["id"] for p in body["playlists"]["playlist"]]
    assert shared["id"] in ids
    assert private["id"] not in ids

    body = await _call(client, "updatePlaylist", auth=GUEST, playlistId=shared["id"], name="Taken")
    assert body["error"]["code"] == 0
    body = await _call(client, "deletePlaylist", auth=GUEST, id=shared["id"])
    assert body["error"]["code"] == 0


async def test_delete_playlist(client, library):
    created = (await _call(client, "createPlaylist", name="Gone"))["playlist"]
    assert (await _call(client, "deletePlaylist", id=created["id"]))["status"] == "ok"
    assert (await _call(client, "getPlaylist", id=created["id"]))["error"]["code"] == 70
    assert (await _call(client, "deletePlaylist", id=created["id"]))["error"]["code"] == 70


async def test_guest_cannot_list_users(client, library):
    await make_user(GUEST["u"], GUEST["p"])
    body = await _call(client, "getUsers", auth=GUEST)
    assert body["error"]["code"] == 50
    body = await _call(client, "getUser", auth=GUEST, username="admin")
    assert body["error"]["code"] == 50
