#!/usr/bin/env python3
# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Create an admin user or reset a user's password. Run: python -m miko_server.scripts.create_admin"""

import asyncio
import getpass
import sys

from miko_server.auth import store_password
from miko_server.database import async_session_maker, init_db
from miko_server.models import User
from miko_server.services import secrets


async def main():
    await init_db()
    username = input("Admin username: ").strip()
    password = getpass.getpass("Password: ")
    if not username or not password:
        print("Username and password are required")
        sys.exit(1)

    async with async_session_maker() as session:
        # Passwords are stored encrypted with the persisted password secret
        await secrets.get_password_secret(session)
        user = await session.get(User, username)
        if user is None:
            user = User(username=username, admin_role=True, settings_role=True)
            session.add(user)
            message = "Admin user created."
        else:
            message = "Password reset."
        store_password(user, password)
        await session.commit()
        print(message)


if __name__ == "__main__":
    asyncio.run(main())
