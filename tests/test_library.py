# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Library management API: folders, directories, scans, tag editing and deletion."""

import pytest

from conftest import PNG, make_wav
from miko_server.services import ids

pytestmark = pytest.mark.anyio


async def _root(client, headers) -> str:
    r = await client.get("/api/library/folders", headers=headers)
    assert r.status_code == 200
    return r.json()[0]["directory_id"]


async def _child(client, headers, dir_id: str, title: str) -> dict:
    r = await client.get("/api/library/directory", params={"id": dir_id}, headers=headers)
    assert r.status_code == 200, r.text
    return next(c for c in r.json()["children"] if c["title"] == title)


async def _dawn(client, headers) -> dict:
    alpha = await _child(client, headers, await _root(client, headers), "Alpha")
    first = await _child(client, headers, alpha["id"], "First")
    return await _child(client, headers, first["id"], "Dawn")


async def test_requires_auth(client):
    r = await client.get("/api/library/folders")
    assert r.status_code == 401
    assert r.json() == {"error": "missing authorization header"}

    r = await client.get("/api/library/folders", headers={"Authorization": "Bearer junk"})
    assert r.status_code == 401


async def test_folders(client, auth_headers, library):
    r = await client.get("/api/library/folders", headers=auth_headers)
    folder = r.json()[0]
    assert folder["name"] == "music"
    assert folder["path"] == library.as_posix()
    assert folder["directory_id"] == ids.child_id(folder["id"], ".")


async def test_directory(client, auth_headers, library):
    root = await _root(client, auth_headers)
    r = await client.get("/api/library/directory", params={"id": root}, headers=auth_headers)
    body = r.json()
    assert body["name"] == "music"
    assert [c["title"] for c in body["children"]] == ["Alpha", "Beta", "Loose"]
    assert body["children"][0]["is_dir"] is True

    dawn = await _dawn(client, auth_headers)
    assert dawn["artist"] == "Alpha"
    assert dawn["track"] == 1
    assert dawn["album_id"] == ids.album_id("Alpha", "First")

    r = await client.get("/api/library/directory", headers=auth_headers)
    assert r.status_code == 400
    assert r.json() == {"error": "ID is required"}
    r = await client.get("/api/library/directory", params={"id": "missing"}, headers=auth_headers)
    assert r.status_code == 404


async def test_cover_art(client, auth_headers, library):
    dawn = await _dawn(client, auth_headers)
    r = await client.get("/api/library/coverArt", params={"id": dawn["id"]}, headers=auth_headers)
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.content == PNG

    # cover links carry the token in the query string
    token = auth_headers["Authorization"].split(" ", 1)[1]
    r = await client.get("/api/library/coverArt", params={"id": dawn["id"], "token": token})
    assert r.status_code == 200

    r = await client.get("/api/library/coverArt", params={"id": "missing"}, headers=auth_headers)
    assert r.status_code == 404


async def test_scan_item(client, auth_headers, library):
    dawn = await _dawn(client, auth_headers)
    make_wav(library / "Alpha" / "First" / "01.wav", title="Daybreak", artist="Alpha", album="First", track="1")

    r = await client.post("/api/library/scan", json={"id": dawn["id"]}, headers=auth_headers)
    assert r.status_code == 200, r.text
    assert r.json()["title"] == "Daybreak"

    r = await client.post("/api/library/scan", json={"id": "missing"}, headers=auth_headers)
    assert r.status_code == 404


async def test_scan_status_and_full_scan(client, app, auth_headers, library):
    r = await client.get("/api/library/scan/status", headers=auth_headers)
    assert r.json() == {"scanning": False, "count": 4}

    r = await client.post("/api/library/scan/all", headers=auth_headers)
    assert r.json() == {"status": "scanning"}
    await app.state.scan_task


async def test_song_tags_and_update(client, auth_headers, library):
    dawn = await _dawn(client, auth_headers)
    r = await client.get("/api/library/song/tags", params={"id": dawn["id"]}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["TITLE"] == ["Dawn"]
    assert r.json()["GENRE"] == ["Rock"]

    r = await client.post(
        "/api/library/song/update",
        json={"id": dawn["id"], "tags": {"TITLE": ["Sunrise"], "GENRE": ["Ambient"]}},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["title"] == "Sunrise"
    assert r.json()["genre"] == "Ambient"

    r = await client.get("/api/library/song/tags", params={"id": "missing"}, headers=auth_headers)
    assert r.status_code == 404


async def test_song_cover_upload(client, auth_headers, library):
    r = await client.get("/api/library/directory", params={"id": await _root(client, auth_headers)}, headers=auth_headers)
    beta = next(c for c in r.json()["children"] if c["title"] == "Beta")
    second = await _child(client, auth_headers, beta["id"], "Second")
    dusk = await _child(client, auth_headers, second["id"], "Dusk")

    r = await client.post(
        "/api/library/song/cover",
        data={"id": dusk["id"]},
        files={"file": ("cover.png", PNG, "image/png")},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["id"] == dusk["id"]

    r = await client.get("/api/library/coverArt", params={"id": dusk["id"]}, headers=auth_headers)
    assert r.content == PNG

    r = await client.post(
        "/api/library/song/cover",
        data={"id": dusk["id"]},
        files={"file": ("cover.png", b"", "image/png")},
        headers=auth_headers,
    )
    assert r.status_code == 400


async def test_delete(client, auth_headers, library):
    r = await client.post("/api/library/delete", json={}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json() == {"error": "ID or IDs are required"}

    root = await _root(client, auth_headers)
    loose = await _child(client, auth_headers, root, "Loose")
    beta = await _child(client, auth_headers, root, "Beta")
    r = await client.post("/api/library/delete", json={"ids": [beta["id"]], "id": loose["id"]}, headers=auth_headers)
    assert r.json() == {"status": "ok"}

    assert not (library / "loose.wav").exists()
    assert not (library / "Beta").exists()
    r = await client.get("/api/library/directory", params={"id": root}, headers=auth_headers)
    assert [c["title"] for c in r.json()["children"]] == ["Alpha"]
    r = await client.get("/api/library/scan/status", headers=auth_headers)
    assert r.json()["count"] == 2
