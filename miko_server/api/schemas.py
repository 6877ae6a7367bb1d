# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pydantic schemas for management API request/response."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    error: str


# Auth
class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str


class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str = Field(min_length=1)


class UserResponse(BaseModel):
    username: str
    email: str
    admin_role: bool
    settings_role: bool
    download_role: bool
    stream_role: bool
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    message: str


# CookieCloud
class CookieCloudServerResponse(BaseModel):
    url: str


class CookieCloudIdentityRequest(BaseModel):
    key: str = Field(min_length=1)
    password: str = Field(min_length=1)


class CookieCloudIdentityResponse(BaseModel):
    url: str
    key: str


# Platform
class PlatformUserResponse(BaseModel):
    username: str
    user_id: int


# Library
class ChildResponse(BaseModel):
    id: str
    parent: str
    is_dir: bool
    title: str
    album: str
    artist: str
    track: int
    year: int
    genre: str
    cover_art: str
    size: int
    content_type: str
    suffix: str
    duration: int
    bit_rate: int
    path: str
    play_count: int
    disc_number: int
    created: datetime | None = None
    starred: datetime | None = None
    album_id: str
    artist_id: str
    user_rating: int
    music_folder_id: int

    model_config = ConfigDict(from_attributes=True)


class FolderResponse(BaseModel):
    id: int
    name: str
    path: str
    directory_id: str


class DirectoryResponse(BaseModel):
    id: str
    name: str
    parent: str
    starred: datetime | None = None
    user_rating: int = 0
    play_count: int = 0
    children: list[ChildResponse] = []


class ScanRequest(BaseModel):
    id: str = Field(min_length=1)


class ScanStatusResponse(BaseModel):
    scanning: bool
    count: int


class SongUpdateRequest(BaseModel):
    id: str = Field(min_length=1)
    tags: dict[str, list[str]]


class DeleteRequest(BaseModel):
    ids: list[str] = []
    id: str = ""


class StatusResponse(BaseModel):
    status: str
