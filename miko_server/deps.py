# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Process-wide services built once in the lifespan and handed to routes."""

from dataclasses import dataclass

from fastapi import Request

from miko_server.config import Settings
from miko_server.services.cookiecloud import CookieCloudJars
from miko_server.services.download.registry import ProviderRegistry
from miko_server.services.now_playing import NowPlaying
from miko_server.services.scanner import Scanner


@dataclass
class Services:
    settings: Settings
    scanner: Scanner
    now_playing: NowPlaying
    providers: ProviderRegistry
    cookiecloud: CookieCloudJars


def get_services(request: Request) -> Services:
    return request.app.state.services
