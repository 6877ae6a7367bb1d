# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Subsonic response envelope.

Payloads are plain dicts: scalar values become XML attributes, dicts become
child elements, lists become repeated child elements and a "value" key becomes
element text. None values are dropped from both encodings.
"""

import json
from datetime import datetime, timezone
from xml.etree.ElementTree import Element, SubElement, tostring

from fastapi import Request
from fastapi.responses import Response

from miko_server.config import settings

API_VERSION = "1.16.1"
XMLNS = "http://subsonic.org/restapi"
SERVER_TYPE = "miko"

# Error codes
GENERIC = 0
MISSING_PARAMETER = 10
WRONG_CREDENTIALS = 40
NOT_AUTHORIZED = 50
NOT_FOUND = 70


class SubsonicError(Exception):
    """Rendered as a failed envelope with HTTP 200."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def format_time(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="seconds") + "Z"


def _scalar(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_time(value)
    return str(value)


def _jsonable(value):
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_jsonable(v) for v in value if v is not None]
    if isinstance(value, datetime):
        return format_time(value)
    return value


def _fill(elem: Element, data: dict) -> Element:
    for key, value in data.items():
        if value is None:
            continue
        if key == "value":
            elem.text = _scalar(value)
        elif isinstance(value, dict):
            _fill(SubElement(elem, key), value)
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, dict):
                    _fill(SubElement(elem, key), item)
                elif item is not None:
                    SubElement(elem, key).text = _scalar(item)
        else:
            elem.set(key, _scalar(value))
    return elem


def envelope(status: str, payload: dict | None = None) -> dict:
    body = {
        "status": status,
        "version": API_VERSION,
        "type": SERVER_TYPE,
        "serverVersion": settings.version,
        "openSubsonic": True,
    }
    if payload:
        body.update(payload)
    return body


def render(body: dict, fmt: str | None) -> Response:
    if fmt == "json":
        content = json.dumps({"subsonic-response": _jsonable(body)}, ensure_ascii=False)
        return Response(content=content, media_type="application/json")
    root = _fill(Element("subsonic-response", {"xmlns": XMLNS}), body)
    content = tostring(root, encoding="utf-8", xml_declaration=True)
    return Response(content=content, media_type="application/xml")


def response_format(request: Request) -> str | None:
    return getattr(request.state, "subsonic_format", None) or request.query_params.get("f")


def ok(request: Request, **payload) -> Response:
    return render(envelope("ok", payload), response_format(request))


def failed(request: Request, code: int, message: str) -> Response:
    return render(
        envelope("failed", {"error": {"code": code, "message": message}}),
        response_format(request),
    )


async def subsonic_error_handler(request: Request, exc: SubsonicError) -> Response:
    return failed(request, exc.code, exc.message)
