# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
NetEase Cloud Music provider.

Requests go to the web "weapi" endpoints: the JSON body is AES-128-CBC
encrypted twice (a fixed preset key, then a random 16-character key) and the
random key is sent RSA-encrypted without padding as encSecKey.
"""

import base64
import json
import logging
import re
import secrets
import string

import httpx
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from miko_server.services.cookiecloud import CookieCloudJar
from miko_server.services.download.provider import Provider, ProviderError
from miko_server.services.download.types import (
    Album,
    Artist,
    DownloadInfo,
    InvalidQualityLevelError,
    Music,
    PlatformUser,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://music.163.com"
HOST = "music.163.com"

PRESET_KEY = b"0CoJUm6Qyw8W8jud"
IV = b"0102030405060708"
RSA_EXPONENT = 0x010001
RSA_MODULUS = int(
    "00e0b509f6259df8642dbc35662901477df22677ec152b5ff68ace615bb7b725152b3ab17a876aea8a5aa76d2e417629ec"
    "4ee341f56135fccf695280104e0312ecbda92557c93870114af6c9d05c4f7f0c3685b7a46bee255932575cce10b424d813"
    "cfe4875d3e82047b97ddef52741d546b8e289dc6935b3ece0462db0a22b8e7",
    16,
)
_KEY_CHARS = string.ascii_letters + string.digits

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

URI_PATTERN = re.compile(r"/(song|artist|album|playlist)\?id=(\d+)")

DETAIL_BATCH = 500

LEVELS = ("standard", "higher", "exhigh", "lossless", "hires")
NUMERIC_LEVELS = {"128": "standard", "192": "higher", "320": "exhigh"}
LEVEL_ALIASES = {"HQ": "exhigh", "SQ": "lossless", "HR": "hires"}
LEVEL_BITRATES = {
    "standard": 128000,
    "higher": 192000,
    "exhigh": 320000,
    "lossless": 999000,
    "hires": 1999000,
}


def _aes_cbc(data: bytes, key: bytes) -> bytes:
    padder = padding.PKCS7(128).padder()
    padded = padder.update(data) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(IV)).encryptor()
    return base64.b64encode(encryptor.update(padded) + encryptor.finalize())


def weapi_encrypt(payload: dict, secret_key: str | None = None) -> dict[str, str]:
    """Form fields {params, encSecKey} for a weapi request."""
    secret_key = secret_key or "".join(secrets.choice(_KEY_CHARS) for _ in range(16))
    text = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    params = _aes_cbc(_aes_cbc(text, PRESET_KEY), secret_key.encode("ascii"))
    reversed_key = int(secret_key[::-1].encode("ascii").hex(), 16)
    enc_sec_key = format(pow(reversed_key, RSA_EXPONENT, RSA_MODULUS), "x").zfill(256)
    return {"params": params.decode("ascii"), "encSecKey": enc_sec_key}


def parse_uri(source: str) -> tuple[str, int]:
    """(kind, id) for a bare song id or a music.163.com song/album/playlist URL."""
    source = source.strip()
    if source.isdigit():
        return "song", int(source)
    if "music.163.com" not in source:
        raise ProviderError(f"could not parse the url: {source}")
    m = URI_PATTERN.search(source)
    if m is None:
        raise ProviderError(f"could not parse the url: {source}")
    return m.group(1), int(m.group(2))


def validate_level(level: str) -> str:
    if not level:
        return "hires"
    if level.isdigit():
        if level not in NUMERIC_LEVELS:
            raise InvalidQualityLevelError(f"{level} level is not supported")
        return NUMERIC_LEVELS[level]
    if level in LEVELS:
        return level
    alias = LEVEL_ALIASES.get(level.upper())
    if alias is None:
        raise InvalidQualityLevelError(f"[{level}] quality is not supported")
    return alias


def _music(song: dict) -> Music:
    al = song.get("al") or {}
    return Music(
        id=int(song["id"]),
        name=song.get("name", ""),
        artists=[Artist(id=int(a.get("id") or 0), name=a.get("name") or "") for a in song.get("ar") or []],
        album=Album(id=int(al.get("id") or 0), name=al.get("name") or "", pic_url=al.get("picUrl") or ""),
        time=int(song.get("dt") or 0),
        track_number=str(song.get("no") or song.get("cd") or ""),
    )


class NeteaseProvider(Provider):
    name = "netease"

    def __init__(
        self,
        jar: CookieCloudJar | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        cookies = httpx.Cookies()
        if jar is not None:
            for cookie in jar.cookies_for(HOST):
                cookies.jar.set_cookie(cookie)
        super().__init__(
            httpx.AsyncClient(
                base_url=BASE_URL,
                cookies=cookies,
                timeout=timeout,
                transport=transport,
                headers={"User-Agent": USER_AGENT, "Referer": BASE_URL},
                follow_redirects=True,
            )
        )
        self.jar = jar

    def _csrf(self) -> str:
        for cookie in self.client.cookies.jar:
            if cookie.name == "__csrf":
                return cookie.value or ""
        return ""

    async def _request(self, path: str, payload: dict) -> dict:
        csrf = self._csrf()
        data = weapi_encrypt({**payload, "csrf_token": csrf})
        r = await self.client.post(path, params={"csrf_token": csrf}, data=data)
        r.raise_for_status()
        if r.cookies and self.jar is not None:
            await self.jar.set_cookies(HOST, list(r.cookies.jar))
        body = r.json()
        if body.get("code") != 200:
            raise ProviderError(f"{path} error: code={body.get('code')} message={body.get('message') or body.get('msg')}")
        return body

    async def user(self) -> PlatformUser:
        body = await self._request("/weapi/w/nuser/account/get", {})
        profile = body.get("profile")
        if not profile:
            raise ProviderError("get user info: no logged in user found")
        return PlatformUser(username=profile.get("nickname", ""), user_id=int(profile.get("userId") or 0))

    async def _song_details(self, ids: list[int]) -> list[Music]:
        out = []
        for start in range(0, len(ids), DETAIL_BATCH):
            page = ids[start : start + DETAIL_BATCH]
            body = await self._request(
                "/weapi/v3/song/detail",
                {"c": json.dumps([{"id": str(i), "v": 0} for i in page]), "ids": json.dumps(page)},
            )
            songs = body.get("songs") or []
            if not songs:
                logger.warning("SongDetail returned no songs")
            out.extend(_music(s) for s in songs)
        return out

    async def get_music(self, uris: list[str]) -> list[Music]:
        seen: set[int] = set()
        grouped: dict[str, list[int]] = {}
        for uri in uris:
            kind, item_id = parse_uri(uri)
            grouped.setdefault(kind, []).append(item_id)

        musics: list[Music] = []
        for kind, ids in grouped.items():
            if kind == "song":
                fresh = [i for i in dict.fromkeys(ids) if i not in seen]
                seen.update(fresh)
                musics.extend(await self._song_details(fresh))
            elif kind == "album":
                for album_id in ids:
                    body = await self._request(f"/weapi/v1/album/{album_id}", {})
                    songs = body.get("songs") or []
                    if not songs:
                        logger.warning("Album(%d) songs is empty", album_id)
                    for song in songs:
                        if song["id"] in seen:
                            continue
                        seen.add(song["id"])
                        musics.append(_music(song))
            elif kind == "playlist":
                for playlist_id in ids:
                    body = await self._request("/weapi/v6/playlist/detail", {"id": str(playlist_id), "n": 100000})
                    track_ids = (body.get("playlist") or {}).get("trackIds")
                    if not track_ids:
                        logger.warning("PlaylistDetail(%d) tracks is empty", playlist_id)
                        continue
                    fresh = [t["id"] for t in track_ids if t["id"] not in seen]
                    seen.update(fresh)
                    musics.extend(await self._song_details(fresh))
            else:
                raise ProviderError(f"[{kind}] is not supported")

        if not musics:
            raise ProviderError("input uri is empty or the song is copyrighted")
        return musics

    def validate_level(self, level: str) -> str:
        return validate_level(level)

    async def fetch_download_info(self, music: Music, level: str) -> DownloadInfo:
        body = await self._request(
            "/weapi/song/enhance/download/url",
            {"id": music.song_id, "br": str(LEVEL_BITRATES[level])},
        )
        data = body.get("data") or {}
        code = data.get("code")
        if code != 200 or not data.get("url"):
            if code == -110:
                raise ProviderError("no audio source available")
            if code == -105:
                raise ProviderError("insufficient permissions or no membership")
            if code == -103:
                return await self._player_url(music, level)
            raise ProviderError(f"resource unavailable or no copyright (code: {code})")
        return self._info(data)

    async def _player_url(self, music: Music, level: str) -> DownloadInfo:
        body = await self._request(
            "/weapi/song/enhance/player/url/v1",
            {"ids": json.dumps([music.id]), "level": level, "encodeType": "flac"},
        )
        items = body.get("data") or []
        if not items or not items[0].get("url"):
            raise ProviderError("no audio source available in alternative data")
        return self._info(items[0])

    @staticmethod
    def _info(data: dict) -> DownloadInfo:
        return DownloadInfo(
            url=data["url"],
            md5=(data.get("md5") or "").lower(),
            type=(data.get("type") or "").lower(),
            size=int(data.get("size") or 0),
            quality=data.get("level") or "",
        )

    async def get_lyrics(self, music: Music) -> str:
        body = await self._request("/weapi/song/lyric", {"id": music.id, "lv": -1, "tv": -1})
        return (body.get("lrc") or {}).get("lyric") or ""
