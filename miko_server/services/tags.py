# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Read and write audio tags with Mutagen.

Tags from ID3 (mp3, wav), MP4 atoms (m4a) and Vorbis comments (flac) are
normalized to upper-case property names (TITLE, ARTIST, ALBUMARTIST, ...)
so the scanner and the tag editor see one vocabulary.
"""

import mimetypes
import re
from dataclasses import dataclass, field
from pathlib import Path

import mutagen.id3
from mutagen import File as MutagenFile
from mutagen import MutagenError
from mutagen.flac import FLAC, Picture
from mutagen.id3 import APIC, ID3, TXXX, USLT
from mutagen.mp4 import MP4, MP4Cover, MP4FreeForm

AUDIO_EXTENSIONS = {".mp3", ".flac", ".m4a", ".wav"}

TITLE = "TITLE"
ARTIST = "ARTIST"
ARTISTS = "ARTISTS"
ALBUM = "ALBUM"
ALBUM_ARTIST = "ALBUMARTIST"
TRACK_NUMBER = "TRACKNUMBER"
DISC_NUMBER = "DISCNUMBER"
DATE = "DATE"
GENRE = "GENRE"
LYRICS = "LYRICS"

ID3_FRAMES = {
    "TIT2": TITLE,
    "TPE1": ARTIST,
    "TPE2": ALBUM_ARTIST,
    "TALB": ALBUM,
    "TRCK": TRACK_NUMBER,
    "TPOS": DISC_NUMBER,
    "TDRC": DATE,
    "TCON": GENRE,
    "TCOM": "COMPOSER",
    "TEXT": "LYRICIST",
    "TBPM": "BPM",
    "TSRC": "ISRC",
    "TPUB": "LABEL",
    "TCOP": "COPYRIGHT",
    "TMED": "MEDIA",
    "TIT3": "SUBTITLE",
    "TENC": "ENCODEDBY",
    "TDOR": "ORIGINALDATE",
    "TSOP": "ARTISTSORT",
    "TSO2": "ALBUMARTISTSORT",
    "TSOA": "ALBUMSORT",
    "TSOT": "TITLESORT",
}
ID3_PROPERTIES = {v: k for k, v in ID3_FRAMES.items()}

MP4_ATOMS = {
    "\xa9nam": TITLE,
    "\xa9ART": ARTIST,
    "aART": ALBUM_ARTIST,
    "\xa9alb": ALBUM,
    "\xa9day": DATE,
    "\xa9gen": GENRE,
    "\xa9wrt": "COMPOSER",
    "\xa9lyr": LYRICS,
    "\xa9cmt": "COMMENT",
    "cprt": "COPYRIGHT",
    "trkn": TRACK_NUMBER,
    "disk": DISC_NUMBER,
    "tmpo": "BPM",
}
MP4_PROPERTIES = {v: k for k, v in MP4_ATOMS.items()}
MP4_FREEFORM_PREFIX = "----:com.apple.iTunes:"

_INT_RE = re.compile(r"\d+")
# Largest value an SQLite INTEGER column holds
MAX_TAG_INT = 2**63 - 1


class TagReadError(Exception):
    """The file could not be opened or is not a recognized audio format."""


@dataclass
class Tags:
    """Tag record of one audio file. Missing values stay at their zero value."""

    title: str = ""
    artist: str = ""
    artists: list[str] = field(default_factory=list)
    album: str = ""
    album_artist: str = ""
    album_artists: list[str] = field(default_factory=list)
    track: int = 0
    disc: int = 0
    year: int = 0
    genre: str = ""
    genres: list[str] = field(default_factory=list)
    lyrics: str = ""
    duration: int = 0  # seconds
    bitrate: int = 0  # kbps
    image: bytes | None = None


def is_audio_file(path: str | Path) -> bool:
    return Path(path).suffix.lower() in AUDIO_EXTENSIONS


def content_type(path: str | Path) -> str:
    ext = Path(path).suffix.lower()
    guessed = mimetypes.guess_type(f"x{ext}")[0]
    if guessed:
        return guessed
    return f"audio/{ext[1:]}" if len(ext) > 1 else ""


def parse_tag_int(value: str) -> int:
    """First integer in a tag value: "3/12" -> 3, "2021-05-01" -> 2021. 0 when absent or too large."""
    m = _INT_RE.search(value or "")
    if not m:
        return 0
    digits = m.group(0).lstrip("0") or "0"
    # Long digit runs are rejected before int() so huge values never convert
    if len(digits) > len(str(MAX_TAG_INT)):
        return 0
    number = int(digits)
    return number if number <= MAX_TAG_INT else 0


def _open(path: str | Path):
    try:
        audio = MutagenFile(str(path))
    except (MutagenError, OSError) as e:
        raise TagReadError(f"{path}: {e}") from e
    if audio is None:
        raise TagReadError(f"{path}: unsupported audio format")
    return audio


def _append(out: dict[str, list[str]], key: str, values) -> None:
    for v in values:
        text = str(v).strip()
        if text:
            out.setdefault(key, []).append(text)


def _id3_properties(tags: ID3) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for frame in tags.values():
        frame_id = frame.FrameID
        if frame_id == "TCON":
            _append(out, GENRE, frame.genres)
        elif frame_id in ID3_FRAMES:
            _append(out, ID3_FRAMES[frame_id], getattr(frame, "text", []))
        elif frame_id == "TXXX":
            _append(out, frame.desc.upper(), frame.text)
        elif frame_id == "USLT":
            key = LYRICS if not frame.desc else frame.desc.upper()
            _append(out, key, [frame.text])
        elif frame_id == "COMM" and not frame.desc:
            _append(out, "COMMENT", frame.text)
    return out


def _mp4_properties(tags) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for key, values in tags.items():
        if key in ("trkn", "disk"):
            for number, total in values:
                out.setdefault(MP4_ATOMS[key], []).append(
                    f"{number}/{total}" if total else str(number)
                )
        elif key in MP4_ATOMS:
            _append(out, MP4_ATOMS[key], values)
        elif key.startswith("----:"):
            name = key.rsplit(":", 1)[-1].upper()
            _append(out, name, [bytes(v).decode("utf-8", errors="replace") for v in values])
    return out


def _vorbis_properties(tags) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for key, values in tags.as_dict().items():
        _append(out, key.upper(), values)
    return out


def _properties(audio) -> dict[str, list[str]]:
    tags = audio.tags
    if tags is None:
        return {}
    if isinstance(tags, ID3):
        return _id3_properties(tags)
    if isinstance(audio, MP4):
        return _mp4_properties(tags)
    if hasattr(tags, "as_dict"):
        return _vorbis_properties(tags)
    return {}


def read_all(path: str | Path) -> dict[str, list[str]]:
    """Every tag of the file keyed by upper-case property name."""
    return _properties(_open(path))


def read_image(path: str | Path) -> bytes | None:
    """Embedded front cover (or first picture) bytes, None when absent."""
    audio = _open(path)
    return _image_from(audio)


def _image_from(audio) -> bytes | None:
    tags = audio.tags
    if isinstance(tags, ID3):
        pictures = tags.getall("APIC")
        front = [p for p in pictures if p.type == 3] or pictures
        for apic in front:
            if apic.data:
                return bytes(apic.data)
        return None
    if isinstance(audio, MP4) and tags:
        covr = tags.get("covr")
        if covr:
            return bytes(covr[0])
        return None
    if isinstance(audio, FLAC):
        front = [p for p in audio.pictures if p.type == 3] or audio.pictures
        for pic in front:
            if pic.data:
                return bytes(pic.data)
    return None


def read(path: str | Path) -> Tags:
    """Tag record used by the scanner. Raises TagReadError when the file cannot be read."""
    audio = _open(path)
    props = _properties(audio)

    res = Tags()
    if props.get(TITLE):
        res.title = props[TITLE][0]
    if props.get(ARTIST):
        res.artists = props[ARTIST]
        res.artist = "; ".join(res.artists)
    # Prefer the ARTISTS list for multiple artists
    if props.get(ARTISTS):
        res.artists = props[ARTISTS]
        if not res.artist:
            res.artist = "; ".join(res.artists)
    if props.get(ALBUM):
        res.album = props[ALBUM][0]

    album_artists = props.get(ALBUM_ARTIST) or props.get("ALBUM ARTIST")
    if album_artists:
        res.album_artists = album_artists
        res.album_artist = "; ".join(res.album_artists)

    if props.get(TRACK_NUMBER):
        res.track = parse_tag_int(props[TRACK_NUMBER][0])
    if props.get(DISC_NUMBER):
        res.disc = parse_tag_int(props[DISC_NUMBER][0])
    if props.get(DATE):
        res.year = parse_tag_int(props[DATE][0])
    if props.get(GENRE):
        res.genres = props[GENRE]
        res.genre = "; ".join(res.genres)

    if props.get(LYRICS):
        res.lyrics = props[LYRICS][0]
    elif props.get("UNSYNCED LYRICS"):
        res.lyrics = props["UNSYNCED LYRICS"][0]

    info = getattr(audio, "info", None)
    if info is not None:
        res.duration = int(getattr(info, "length", 0) or 0)
        res.bitrate = int((getattr(info, "bitrate", 0) or 0) // 1000)

    res.image = _image_from(audio)
    return res


def image_mime(data: bytes) -> str:
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:4] == b"GIF8":
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def _ensure_tags(audio):
    if audio.tags is None:
        audio.add_tags()
    return audio.tags


def write(path: str | Path, values: dict[str, list[str]]) -> None:
    """Replace the given properties in the file; an empty list removes the property."""
    audio = _open(path)
    tags = _ensure_tags(audio)

    if isinstance(tags, ID3):
        for key, vals in values.items():
            key = key.upper()
            vals = [v for v in vals if v != ""]
            if key in ID3_PROPERTIES:
                frame_id = ID3_PROPERTIES[key]
                tags.delall(frame_id)
                if vals:
                    frame_cls = getattr(mutagen.id3, frame_id)
                    tags.add(frame_cls(encoding=3, text=vals))
            elif key == LYRICS:
                tags.delall("USLT")
                if vals:
                    tags.add(USLT(encoding=3, lang="eng", desc="", text=vals[0]))
            else:
                tags.delall(f"TXXX:{key}")
                if vals:
                    tags.add(TXXX(encoding=3, desc=key, text=vals))
    elif isinstance(audio, MP4):
        for key, vals in values.items():
            key = key.upper()
            vals = [v for v in vals if v != ""]
            atom = MP4_PROPERTIES.get(key, f"{MP4_FREEFORM_PREFIX}{key}")
            if not vals:
                tags.pop(atom, None)
            elif atom in ("trkn", "disk"):
                number, _, total = vals[0].partition("/")
                tags[atom] = [(parse_tag_int(number), parse_tag_int(total))]
            elif atom == "tmpo":
                tags[atom] = [parse_tag_int(v) for v in vals]
            elif atom.startswith("----:"):
                tags[atom] = [MP4FreeForm(v.encode("utf-8")) for v in vals]
            else:
                tags[atom] = vals
    else:
        for key, vals in values.items():
            vals = [v for v in vals if v != ""]
            if vals:
                tags[key.upper()] = vals
            elif key.upper() in tags:
                del tags[key.upper()]

    audio.save()


def write_image(path: str | Path, data: bytes) -> None:
    """Embed data as the front cover, replacing existing pictures."""
    audio = _open(path)
    mime = image_mime(data)
    tags = _ensure_tags(audio)

    if isinstance(tags, ID3):
        tags.delall("APIC")
        tags.add(APIC(encoding=3, mime=mime, type=3, desc="Cover", data=data))
    elif isinstance(audio, MP4):
        fmt = MP4Cover.FORMAT_PNG if mime == "image/png" else MP4Cover.FORMAT_JPEG
        tags["covr"] = [MP4Cover(data, imageformat=fmt)]
    elif isinstance(audio, FLAC):
        audio.clear_pictures()
        pic = Picture()
        pic.type = 3
        pic.mime = mime
        pic.desc = "Cover"
        pic.data = data
        audio.add_picture(pic)
    else:
        raise TagReadError(f"{path}: embedding images is not supported for this format")
    audio.save()
