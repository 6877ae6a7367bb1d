# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Platform provider contract and the concurrent batch downloader."""

import abc
import asyncio
import hashlib
import logging
import os
import tempfile

import httpx

from miko_server.services import tags
from miko_server.services.download.types import (
    ConflictPolicy,
    DownloadConfig,
    DownloadInfo,
    DownloadResult,
    Md5MismatchError,
    Music,
    MusicDownloadResults,
    PlatformUser,
)

logger = logging.getLogger(__name__)

MAX_PARALLEL_DOWNLOADS = 5
CHUNK_SIZE = 64 * 1024


class ProviderError(Exception):
    """The platform answered, but not with what we asked for."""


class Provider(abc.ABC):
    """One music platform, bound to the cookies of one user."""

    name: str = ""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @abc.abstractmethod
    async def user(self) -> PlatformUser:
        """Profile of the logged-in platform user."""

    @abc.abstractmethod
    async def get_music(self, uris: list[str]) -> list[Music]:
        """Resolve song, album and playlist URIs to a flat, de-duplicated track list."""

    @abc.abstractmethod
    def validate_level(self, level: str) -> str:
        """Normalized quality level; raises InvalidQualityLevelError."""

    @abc.abstractmethod
    async def fetch_download_info(self, music: Music, level: str) -> DownloadInfo:
        """Download URL, checksum, file type and size of a track at level."""

    @abc.abstractmethod
    async def get_lyrics(self, music: Music) -> str:
        ...

    async def download_cover(self, url: str) -> bytes:
        r = await self.client.get(url)
        r.raise_for_status()
        return r.content

    async def download_to(self, url: str, fh) -> str:
        """Stream url into the open binary file fh; returns the md5 hex digest."""
        digest = hashlib.md5()
        loop = asyncio.get_running_loop()
        async with self.client.stream("GET", url) as r:
            r.raise_for_status()
            async for chunk in r.aiter_bytes(CHUNK_SIZE):
                await loop.run_in_executor(None, fh.write, chunk)
                digest.update(chunk)
        return digest.hexdigest()

    async def close(self) -> None:
        await self.client.aclose()


def _resolve_destination(output: str, music: Music, ext: str, policy: ConflictPolicy) -> str:
    dest = os.path.join(output, music.filename(ext))
    if policy == ConflictPolicy.RENAME:
        index = 1
        while os.path.exists(dest):
            dest = os.path.join(output, music.filename(ext, index))
            index += 1
    elif policy == ConflictPolicy.OVERWRITE and os.path.exists(dest):
        os.remove(dest)
    return dest


async def _download_to_local(
    provider: Provider, music: Music, info: DownloadInfo, config: DownloadConfig
) -> tuple[str, bool]:
    """Place the track under config.output.

    Returns the destination and whether tags should be written to it.
    """
    dest = os.path.join(config.output, music.filename(info.type))
    if os.path.exists(dest):
        if config.conflict_policy == ConflictPolicy.SKIP:
            logger.info("File %s already exists, skip download", dest)
            return dest, False
        if config.conflict_policy == ConflictPolicy.UPDATE_TAGS:
            logger.info("File %s already exists, update tags only", dest)
            return dest, True

    os.makedirs(config.output, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix="download-", suffix=f"-{music.name_string()}.tmp", dir=config.output)
    try:
        with os.fdopen(fd, "wb") as fh:
            got = await provider.download_to(info.url, fh)
        if info.md5 and got != info.md5:
            raise Md5MismatchError(f"file {temp_path} md5 not match, want={info.md5}, got={got}")
        dest = _resolve_destination(config.output, music, info.type, config.conflict_policy)
        os.replace(temp_path, dest)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise
    os.chmod(dest, 0o644)
    return dest, True


async def _write_tags(provider: Provider, music: Music, path: str) -> None:
    values = {
        tags.ARTIST: [a.name for a in music.artists],
        tags.ALBUM: [music.album.name],
        tags.TITLE: [music.name],
        tags.LYRICS: [music.lyrics],
        tags.TRACK_NUMBER: [music.track_number],
    }
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, tags.write, path, values)
    except (tags.TagReadError, OSError) as e:
        logger.warning("Writing tags to %s failed: %s", path, e)
        return

    if not music.album.pic_url:
        return
    try:
        cover = await provider.download_cover(music.album.pic_url)
    except httpx.HTTPError as e:
        logger.warning("Download cover failed: %s", e)
        return
    try:
        await loop.run_in_executor(None, tags.write_image, path, cover)
    except (tags.TagReadError, OSError) as e:
        logger.warning("Embedding cover in %s failed: %s", path, e)


async def download_single(provider: Provider, music: Music, level: str, config: DownloadConfig) -> DownloadInfo:
    info = await provider.fetch_download_info(music, level)
    if not info.type:
        # some titles carry the extension
        stem, ext = os.path.splitext(music.name)
        if ext:
            info.type = ext[1:]
            music.name = stem
        else:
            info.type = "mp3"

    try:
        music.lyrics = await provider.get_lyrics(music)
    except (ProviderError, httpx.HTTPError) as e:
        logger.warning("Download lyric failed: %s", e)

    if config.output:
        dest, proceed = await _download_to_local(provider, music, info, config)
        if proceed:
            await _write_tags(provider, music, dest)
        info.file_path = dest
    return info


async def download_batch(provider: Provider, musics: list[Music], config: DownloadConfig) -> MusicDownloadResults:
    """Download every track, at most MAX_PARALLEL_DOWNLOADS at a time.

    Failures are reported per track; the batch itself only fails on an
    invalid quality level.
    """
    level = provider.validate_level(config.level)
    semaphore = asyncio.Semaphore(MAX_PARALLEL_DOWNLOADS)
    results = MusicDownloadResults()

    async def run(music: Music) -> None:
        async with semaphore:
            try:
                info = await download_single(provider, music, level, config)
            except (ProviderError, Md5MismatchError, httpx.HTTPError, OSError) as e:
                logger.error("download %s err: %s", music, e)
                results.add(DownloadResult(error=f"download {music}: {e}"))
                return
            results.add(DownloadResult(music=music, info=info))

    await asyncio.gather(*(run(m) for m in musics))
    return results
