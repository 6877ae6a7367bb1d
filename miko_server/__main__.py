# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Run the server: python -m miko_server (or the miko-server script)."""

import uvicorn

from miko_server.config import settings
from miko_server.logging_config import configure_logging


def main() -> None:
    configure_logging(settings.log)
    uvicorn.run(
        "miko_server.main:app",
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
