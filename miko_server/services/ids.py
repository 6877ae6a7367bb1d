# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Stable, content-addressed identifiers for catalog rows."""

import hashlib
import posixpath

ROOT_REL_PATH = "."


def md5_hex(data: str) -> str:
    # Undecodable filename bytes arrive surrogate-escaped; hash the original bytes
    return hashlib.md5(data.encode("utf-8", "surrogateescape")).hexdigest()


def normalize_rel_path(rel_path: str) -> str:
    """Forward slashes, no leading "./", "." for the root itself."""
    rel = rel_path.replace("\\", "/")
    rel = posixpath.normpath(rel) if rel else ROOT_REL_PATH
    return rel


def child_id(music_folder_id: int, rel_path: str) -> str:
    """md5("<folder id>:<relative path>") for files and directories."""
    return md5_hex(f"{music_folder_id}:{normalize_rel_path(rel_path)}")


def parent_id(music_folder_id: int, rel_path: str) -> str:
    """Id of the containing directory, empty for the folder root."""
    rel = normalize_rel_path(rel_path)
    if rel == ROOT_REL_PATH:
        return ""
    return child_id(music_folder_id, posixpath.dirname(rel) or ROOT_REL_PATH)


def album_id(artist_display: str, album: str) -> str:
    return md5_hex(f"{artist_display}|{album}")


def artist_id(name: str) -> str:
    return md5_hex(name)
