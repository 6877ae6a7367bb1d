# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Track downloads from external music platforms."""

from miko_server.services.download.netease import NeteaseProvider
from miko_server.services.download.registry import ProviderRegistry


def default_registry(default_platform: str = "netease") -> ProviderRegistry:
    registry = ProviderRegistry(default_platform)
    registry.register_factory(NeteaseProvider.name, NeteaseProvider)
    return registry
