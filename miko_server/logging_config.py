# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Process-wide logging setup driven by the [log] config section."""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from miko_server.config import LogSettings

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# Handlers added by configure_logging, replaced on reconfiguration
_installed: list[logging.Handler] = []

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def json_formatter() -> JsonFormatter:
    """One JSON object per record: time, level, logger, msg (plus exc_info when set)."""
    return JsonFormatter(
        JSON_FORMAT,
        rename_fields={"asctime": "time", "levelname": "level", "name": "logger", "message": "msg"},
        json_ensure_ascii=False,
    )


def parse_level(level: str) -> int:
    return _LEVELS.get((level or "").strip().lower(), logging.INFO)


def configure_logging(cfg: LogSettings) -> None:
    """Install stdout (and optional file) handlers on the root logger."""
    formatter: logging.Formatter
    if (cfg.format or "").lower() == "json":
        formatter = json_formatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if cfg.file:
        handlers.append(logging.FileHandler(cfg.file, mode="a", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in _installed:
        root.removeHandler(existing)
        existing.close()
    _installed[:] = handlers
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(parse_level(cfg.level))
