# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Track descriptors, download results and download options."""

import enum
import re
from dataclasses import asdict, dataclass, field

ILLEGAL_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]')


class InvalidConflictPolicyError(ValueError):
    pass


class InvalidQualityLevelError(ValueError):
    pass


class Md5MismatchError(Exception):
    pass


def normalize_filename(name: str, replacement: str = "_") -> str:
    return ILLEGAL_FILENAME_CHARS.sub(replacement, name.strip())


@dataclass
class Artist:
    id: int
    name: str


@dataclass
class Album:
    id: int = 0
    name: str = ""
    pic_url: str = ""


@dataclass
class Music:
    id: int
    name: str
    artists: list[Artist] = field(default_factory=list)
    album: Album = field(default_factory=Album)
    time: int = 0  # milliseconds
    lyrics: str = ""
    track_number: str = ""

    @property
    def song_id(self) -> str:
        return str(self.id)

    def artist_string(self) -> str:
        return ",".join(normalize_filename(a.name) for a in self.artists)

    def name_string(self) -> str:
        return normalize_filename(self.name)

    def filename(self, ext: str, index: int = 0) -> str:
        """'Artists - Title.ext', or 'Artists - Title (n).ext' for n > 0."""
        if index <= 0:
            return f"{self.artist_string()} - {self.name_string()}.{ext.lower()}"
        return f"{self.artist_string()} - {self.name_string()} ({index}).{ext.lower()}"

    def __str__(self) -> str:
        seconds = self.time // 1000
        hours, rest = divmod(seconds, 3600)
        minutes, secs = divmod(rest, 60)
        return f"{self.artist_string()}-{self.name}({self.id}) [{hours:02d}:{minutes:02d}:{secs:02d}]"


@dataclass
class DownloadInfo:
    """Where a track came from and where it landed."""

    url: str = ""
    md5: str = ""
    file_path: str = ""
    type: str = ""
    size: int = 0
    quality: str = ""


@dataclass
class DownloadResult:
    music: Music | None = None
    info: DownloadInfo | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error is not None:
            return {"error": self.error}
        data = asdict(self.music)
        data.update(
            url=self.info.url,
            filePath=self.info.file_path,
            type=self.info.type,
            size=self.info.size,
            quality=self.info.quality,
        )
        return {"data": data}


@dataclass
class MusicDownloadResults:
    results: list[DownloadResult] = field(default_factory=list)

    def add(self, result: DownloadResult | None) -> None:
        if result is not None:
            self.results.append(result)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success(self) -> int:
        return sum(1 for r in self.results if r.error is None)

    @property
    def failed(self) -> int:
        return self.total - self.success


class ConflictPolicy(str, enum.Enum):
    SKIP = "skip"
    OVERWRITE = "overwrite"
    RENAME = "rename"
    UPDATE_TAGS = "update_tags"

    @classmethod
    def parse(cls, value: str | None) -> "ConflictPolicy":
        if not value:
            return cls.SKIP
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise InvalidConflictPolicyError(
                f"invalid conflict policy: {value!r}, valid values are: {valid}"
            ) from None


@dataclass
class DownloadConfig:
    level: str = "lossless"
    output: str = ""
    conflict_policy: ConflictPolicy = ConflictPolicy.SKIP


@dataclass
class PlatformUser:
    username: str
    user_id: int
