# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Subsonic REST API mounted under /rest."""

from miko_server.subsonic import annotation, bookmarks, browsing, lists, media, playlists, search, system

routers = [
    system.router,
    browsing.router,
    lists.router,
    search.router,
    playlists.router,
    media.router,
    annotation.router,
    bookmarks.router,
]


class TrimViewSuffixMiddleware:
    """Rewrite /rest/<endpoint>.view to /rest/<endpoint> before routing."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            path = scope["path"]
            if path.startswith("/rest/") and path.endswith(".view"):
                scope = dict(scope)
                scope["path"] = path[: -len(".view")]
                raw = scope.get("raw_path")
                if raw and raw.endswith(b".view"):
                    scope["raw_path"] = raw[: -len(b".view")]
        await self.app(scope, receive, send)
