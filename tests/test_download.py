# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Platform downloads: track types, the batch downloader and the NetEase provider."""

import hashlib
import io
import threading

import httpx
import pytest

from conftest import make_wav
from miko_server.routers.download import _timeout_seconds, summary
from miko_server.services import tags
from miko_server.services.download import default_registry, netease
from miko_server.services.download.provider import Provider, ProviderError, download_batch
from miko_server.services.download.registry import ProviderRegistry, UnsupportedPlatformError
from miko_server.services.download.types import (
    Album,
    Artist,
    ConflictPolicy,
    DownloadConfig,
    DownloadInfo,
    DownloadResult,
    InvalidConflictPolicyError,
    InvalidQualityLevelError,
    Music,
    MusicDownloadResults,
    PlatformUser,
)

pytestmark = pytest.mark.anyio


def _music(song_id: int = 7, name: str = "Dawn") -> Music:
    return Music(
        id=song_id,
        name=name,
        artists=[Artist(1, "Alpha"), Artist(2, "Be/ta")],
        album=Album(3, "First", ""),
        time=3723000,
        track_number="1",
    )


class FakeProvider(Provider):
    """Serves every track from an in-memory audio file."""

    name = "fake"

    def __init__(self, audio: bytes, md5: str = "", ext: str = "wav"):
        self.audio = audio
        self.md5 = md5
        self.ext = ext
        self.requests: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request.url.path)
            if request.url.path.startswith("/missing"):
                return httpx.Response(404)
            return httpx.Response(200, content=self.audio)

        super().__init__(httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://cdn.test"))

    async def user(self) -> PlatformUser:
        return PlatformUser(username="listener", user_id=42)

    async def get_music(self, uris: list[str]) -> list[Music]:
        return [_music(int(u), f"Song {u}") for u in uris]

    def validate_level(self, level: str) -> str:
        return netease.validate_level(level)

    async def fetch_download_info(self, music: Music, level: str) -> DownloadInfo:
        path = "/missing" if music.id == 404 else f"/{music.id}"
        return DownloadInfo(url=f"http://cdn.test{path}", md5=self.md5, type=self.ext, size=len(self.audio), quality=level)

    async def get_lyrics(self, music: Music) -> str:
        return "[00:01.00]la"


@pytest.fixture
def wav_bytes(tmp_path_factory) -> bytes:
    return make_wav(tmp_path_factory.mktemp("source") / "source.wav").read_bytes()


# -- types --------------------------------------------------------------------


def test_music_filename_and_str():
    music = _music()
    assert music.song_id == "7"
    assert music.artist_string() == "Alpha,Be_ta"
    assert music.filename("MP3") == "Alpha,Be_ta - Dawn.mp3"
    assert music.filename("flac", 2) == "Alpha,Be_ta - Dawn (2).flac"
    assert str(music) == "Alpha,Be_ta-Dawn(7) [01:02:03]"


def test_conflict_policy_parse():
    assert ConflictPolicy.parse("") is ConflictPolicy.SKIP
    assert ConflictPolicy.parse("update_tags") is ConflictPolicy.UPDATE_TAGS
    with pytest.raises(InvalidConflictPolicyError):
        ConflictPolicy.parse("merge")


def test_result_dicts():
    ok = DownloadResult(music=_music(), info=DownloadInfo(url="u", file_path="/x", type="mp3", size=3, quality="hires"))
    data = ok.to_dict()["data"]
    assert data["name"] == "Dawn"
    assert data["filePath"] == "/x"
    assert data["quality"] == "hires"
    assert DownloadResult(error="boom").to_dict() == {"error": "boom"}


def test_summary_messages():
    one_ok = MusicDownloadResults([DownloadResult(music=_music(), info=DownloadInfo())])
    one_bad = MusicDownloadResults([DownloadResult(error="x")])
    mixed = MusicDownloadResults([DownloadResult(music=_music(), info=DownloadInfo()), DownloadResult(error="x")])
    assert summary(one_ok) == "Download URL generated successfully"
    assert summary(one_bad) == "Download failed"
    assert summary(mixed) == "Batch download completed: 2 total, 1 success, 1 failed"


def test_timeout_parsing():
    assert _timeout_seconds(None) == 60
    assert _timeout_seconds("1500") == 1.5
    assert _timeout_seconds("0") is None
    assert _timeout_seconds("soon") == 60
    assert _timeout_seconds("-5") == 60


# -- registry -----------------------------------------------------------------


def test_registry_default_and_unknown():
    registry = default_registry("netease")
    assert registry.supported_platforms() == ["netease"]
    provider = registry.create_provider(None)
    assert isinstance(provider, netease.NeteaseProvider)

    with pytest.raises(UnsupportedPlatformError):
        registry.create_provider("qq")


def test_registry_passes_keyword_arguments():
    registry = ProviderRegistry("fake")
    seen = {}

    def factory(jar=None):
        seen["jar"] = jar
        return FakeProvider(b"")

    registry.register_factory("fake", factory)
    registry.create_provider("", jar="the jar")
    assert seen == {"jar": "the jar"}


# -- netease helpers ----------------------------------------------------------


def test_validate_level():
    assert netease.validate_level("") == "hires"
    assert netease.validate_level("320") == "exhigh"
    assert netease.validate_level("lossless") == "lossless"
    assert netease.validate_level("sq") == "lossless"
    with pytest.raises(InvalidQualityLevelError):
        netease.validate_level("256")
    with pytest.raises(InvalidQualityLevelError):
        netease.validate_level("ultra")


def test_parse_uri():
    assert netease.parse_uri("12345") == ("song", 12345)
    assert netease.parse_uri("https://music.163.com/#/album?id=99") == ("album", 99)
    assert netease.parse_uri("https://music.163.com/playlist?id=5&userid=1") == ("playlist", 5)
    with pytest.raises(ProviderError):
        netease.parse_uri("https://example.com/song?id=1")
    with pytest.raises(ProviderError):
        netease.parse_uri("https://music.163.com/discover")


def test_weapi_encrypt_shape():
    fields = netease.weapi_encrypt({"id": 1}, secret_key="a" * 16)
    assert set(fields) == {"params", "encSecKey"}
    assert len(fields["encSecKey"]) == 256
    assert fields == netease.weapi_encrypt({"id": 1}, secret_key="a" * 16)
    assert fields["params"] != netease.weapi_encrypt({"id": 2}, secret_key="a" * 16)["params"]


# -- batch downloader -----------------------------------------------------------


async def test_download_batch_writes_tagged_files(tmp_path, wav_bytes):
    provider = FakeProvider(wav_bytes, md5=hashlib.md5(wav_bytes).hexdigest())
    config = DownloadConfig(level="lossless", output=str(tmp_path / "out"))
    results = await download_batch(provider, [_music(1, "One"), _music(2, "Two")], config)
    await provider.close()

    assert (results.total, results.success, results.failed) == (2, 2, 0)
    paths = sorted(r.info.file_path for r in results.results)
    assert [p.rsplit("/", 1)[-1] for p in paths] == ["Alpha,Be_ta - One.wav", "Alpha,Be_ta - Two.wav"]
    assert all(r.info.quality == "lossless" for r in results.results)

    record = tags.read(paths[0])
    assert record.title == "One"
    assert record.artists == ["Alpha", "Be/ta"]
    assert record.album == "First"
    assert record.track == 1
    assert record.lyrics == "[00:01.00]la"
    assert not list((tmp_path / "out").glob("*.tmp"))


async def test_download_batch_reports_failures(tmp_path, wav_bytes):
    provider = FakeProvider(wav_bytes, md5="0" * 32)
    config = DownloadConfig(output=str(tmp_path))
    results = await download_batch(provider, [_music(1), _music(404, "Gone")], config)
    await provider.close()

    assert (results.total, results.success, results.failed) == (2, 0, 2)
    errors = sorted(r.error for r in results.results)
    assert "md5 not match" in errors[0] or "md5 not match" in errors[1]
    assert not list(tmp_path.glob("*.tmp"))
    assert not list(tmp_path.glob("*.wav"))


async def test_download_batch_rejects_bad_level(tmp_path):
    provider = FakeProvider(b"")
    with pytest.raises(InvalidQualityLevelError):
        await download_batch(provider, [_music()], DownloadConfig(level="ultra", output=str(tmp_path)))
    await provider.close()


async def test_urls_only_without_output(wav_bytes):
    provider = FakeProvider(wav_bytes)
    results = await download_batch(provider, [_music(5)], DownloadConfig())
    await provider.close()
    info = results.results[0].info
    assert info.url == "http://cdn.test/5"
    assert info.file_path == ""
    assert provider.requests == []


async def test_download_to_writes_off_the_event_loop():
    audio = bytes(range(256)) * 1024
    provider = FakeProvider(audio)
    loop_thread = threading.get_ident()
    writers = set()

    class Recorder(io.BytesIO):
        def write(self, data):
            writers.add(threading.get_ident())
            return super().write(data)

    fh = Recorder()
    digest = await provider.download_to("http://cdn.test/9", fh)
    assert digest == hashlib.md5(audio).hexdigest()
    assert fh.getvalue() == audio
    assert writers and loop_thread not in writers

    with pytest.raises(httpx.HTTPStatusError):
        await provider.download_to("http://cdn.test/missing", io.BytesIO())
    await provider.close()


@pytest.mark.parametrize(
    "policy, expected",
    [
        (ConflictPolicy.SKIP, ["Alpha,Be_ta - Dawn.wav"]),
        (ConflictPolicy.OVERWRITE, ["Alpha,Be_ta - Dawn.wav"]),
        (ConflictPolicy.RENAME, ["Alpha,Be_ta - Dawn (1).wav", "Alpha,Be_ta - Dawn.wav"]),
        (ConflictPolicy.UPDATE_TAGS, ["Alpha,Be_ta - Dawn.wav"]),
    ],
)
async def test_conflict_policies(tmp_path, wav_bytes, policy, expected):
    existing = make_wav(tmp_path / "Alpha,Be_ta - Dawn.wav", title="Old")
    before = existing.read_bytes()
    provider = FakeProvider(wav_bytes)
    results = await download_batch(provider, [_music()], DownloadConfig(output=str(tmp_path), conflict_policy=policy))
    await provider.close()

    assert results.success == 1
    assert sorted(p.name for p in tmp_path.glob("*.wav")) == expected
    if policy == ConflictPolicy.SKIP:
        assert existing.read_bytes() == before
        assert provider.requests == []
    if policy == ConflictPolicy.UPDATE_TAGS:
        assert provider.requests == []
        assert tags.read(existing).title == "Dawn"
    if policy == ConflictPolicy.OVERWRITE:
        assert tags.read(existing).title == "Dawn"


# -- NetEase provider over a mocked platform -------------------------------------


def _netease_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/weapi/w/nuser/account/get":
        return httpx.Response(200, json={"code": 200, "profile": {"nickname": "listener", "userId": 42}})
    if path == "/weapi/v3/song/detail":
        song = {"id": 7, "name": "Dawn", "ar": [{"id": 1, "name": "Alpha"}], "al": {"id": 3, "name": "First"}, "dt": 1000, "no": 1}
        return httpx.Response(200, json={"code": 200, "songs": [song]})
    if path == "/weapi/v1/album/3":
        songs = [{"id": 7, "name": "Dawn"}, {"id": 8, "name": "Noon"}]
        return httpx.Response(200, json={"code": 200, "songs": songs})
    if path == "/weapi/song/enhance/download/url":
        return httpx.Response(200, json={"code": 200, "data": {"code": -103}})
    if path == "/weapi/song/enhance/player/url/v1":
        item = {"url": "http://cdn.test/7.flac", "md5": "ABC", "type": "FLAC", "size": 10, "level": "lossless"}
        return httpx.Response(200, json={"code": 200, "data": [item]})
    if path == "/weapi/song/lyric":
        return httpx.Response(200, json={"code": 200, "lrc": {"lyric": "[00:01.00]la"}})
    return httpx.Response(200, json={"code": 404, "message": "not found"})


async def test_netease_provider():
    provider = netease.NeteaseProvider(transport=httpx.MockTransport(_netease_handler))
    try:
        user = await provider.user()
        assert (user.username, user.user_id) == ("listener", 42)

        musics = await provider.get_music(["7", "https://music.163.com/#/album?id=3"])
        assert [m.id for m in musics] == [7, 8]
        assert musics[0].album.name == "First"
        assert musics[0].track_number == "1"

        info = await provider.fetch_download_info(musics[0], "lossless")
        assert (info.url, info.md5, info.type, info.quality) == ("http://cdn.test/7.flac", "abc", "flac", "lossless")
        assert await provider.get_lyrics(musics[0]) == "[00:01.00]la"

        with pytest.raises(ProviderError):
            await provider.get_music(["https://music.163.com/#/artist?id=1"])
    finally:
        await provider.close()


# -- routes -------------------------------------------------------------------


async def test_download_route(client, services, auth_headers, tmp_path, wav_bytes, monkeypatch):
    async def no_cookies(username):
        return None

    monkeypatch.setattr(services.cookiecloud, "get", no_cookies)
    services.providers.register_factory("fake", lambda jar=None: FakeProvider(wav_bytes))

    r = await client.get(
        "/api/download",
        params={"uri": ["1", "2"], "platform": "fake", "output": str(tmp_path)},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["summary"] == "Batch download completed: 2 total, 2 success, 0 failed"
    assert sorted(d["data"]["name"] for d in body["details"]) == ["Song 1", "Song 2"]

    r = await client.get("/api/download", params={"uri": "1", "platform": "fake"}, headers=auth_headers)
    assert r.json()["summary"] == "Download URL generated successfully"


async def test_download_route_errors(client, services, auth_headers, monkeypatch):
    async def no_cookies(username):
        return None

    monkeypatch.setattr(services.cookiecloud, "get", no_cookies)
    services.providers.register_factory("fake", lambda jar=None: FakeProvider(b""))

    r = await client.get("/api/download", headers=auth_headers)
    assert r.status_code == 400
    assert r.json() == {"error": "uri query parameter is required"}

    r = await client.get("/api/download", params={"uri": "1", "conflict_policy": "merge"}, headers=auth_headers)
    assert r.status_code == 400

    r = await client.get("/api/download", params={"uri": "1", "platform": "fake", "level": "ultra"}, headers=auth_headers)
    assert r.status_code == 400

    r = await client.get("/api/download", params={"uri": "1", "platform": "qq"}, headers=auth_headers)
    assert r.status_code == 500

    r = await client.get("/api/download", params={"uri": "1"})
    assert r.status_code == 401


async def test_platform_user_route(client, services, auth_headers, monkeypatch):
    async def no_cookies(username):
        return None

    monkeypatch.setattr(services.cookiecloud, "get", no_cookies)
    services.providers.register_factory("fake", lambda jar=None: FakeProvider(b""))

    r = await client.get("/api/platform/fake/user", headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {"username": "listener", "user_id": 42}

    r = await client.get("/api/platform/qq/user", headers=auth_headers)
    assert r.status_code == 400
    assert "unsupported platform" in r.json()["error"]
