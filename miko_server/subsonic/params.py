# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Subsonic request parameters from the query string and, for POST, the form body."""

from fastapi import Request

from miko_server.subsonic.response import MISSING_PARAMETER, SubsonicError

_TRUE = {"1", "true", "yes", "on"}


class Params:
    def __init__(self, items: list[tuple[str, str]]):
        self._items = items

    def get(self, key: str, default: str | None = None) -> str | None:
        for k, v in self._items:
            if k == key:
                return v
        return default

    def get_all(self, key: str) -> list[str]:
        return [v for k, v in self._items if k == key and v != ""]

    def require(self, key: str) -> str:
        value = self.get(key)
        if not value:
            raise SubsonicError(MISSING_PARAMETER, f"missing required parameter: {key}")
        return value

    def get_int(self, key: str, default: int | None = None) -> int | None:
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            raise SubsonicError(MISSING_PARAMETER, f"invalid value for parameter '{key}': {value}") from None

    def require_int(self, key: str) -> int:
        self.require(key)
        return self.get_int(key)

    def get_ints(self, key: str) -> list[int]:
        out = []
        for value in self.get_all(key):
            try:
                out.append(int(value))
            except ValueError:
                raise SubsonicError(MISSING_PARAMETER, f"invalid value for parameter '{key}': {value}") from None
        return out

    def get_bool(self, key: str, default: bool | None = None) -> bool | None:
        value = self.get(key)
        if value is None or value == "":
            return default
        return value.lower() in _TRUE


async def get_params(request: Request) -> Params:
    """Merged query and form parameters; also records the requested response format."""
    items = list(request.query_params.multi_items())
    content_type = request.headers.get("content-type", "")
    if request.method == "POST" and (
        content_type.startswith("application/x-www-form-urlencoded") or content_type.startswith("multipart/form-data")
    ):
        form = await request.form()
        items.extend((k, v) for k, v in form.multi_items() if isinstance(v, str))
    params = Params(items)
    request.state.subsonic_format = params.get("f")
    return params
