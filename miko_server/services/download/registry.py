# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Provider factories keyed by platform name."""

import logging
from collections.abc import Callable

from miko_server.services.download.provider import Provider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[..., Provider]


class UnsupportedPlatformError(LookupError):
    pass


class ProviderRegistry:
    """Creates a fresh provider per request for the requested platform."""

    def __init__(self, default_platform: str = ""):
        self.default_platform = default_platform
        self._factories: dict[str, ProviderFactory] = {}

    def register_factory(self, platform: str, factory: ProviderFactory) -> None:
        self._factories[platform] = factory
        logger.info("Registered provider factory: %s", platform)

    def supported_platforms(self) -> list[str]:
        return sorted(self._factories)

    def create_provider(self, platform: str | None = None, **kwargs) -> Provider:
        """Build a provider; an empty platform selects the default one.

        Keyword arguments (such as the cookie jar) are passed to the factory.
        """
        platform = platform or self.default_platform
        factory = self._factories.get(platform)
        if factory is None:
            raise UnsupportedPlatformError(
                f"unsupported platform: {platform}, available platforms: {self.supported_platforms()}"
            )
        return factory(**kwargs)
