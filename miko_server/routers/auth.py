# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication API routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from miko_server.api.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    UserResponse,
)
from miko_server.auth import authenticate, create_access_token, get_current_username, store_password, verify_user_password
from miko_server.database import get_db
from miko_server.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


async def _current_user(
    username: str = Depends(get_current_username),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await db.get(User, username)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="user no longer exists")
    return user


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """Authenticate and return JWT."""
    user = await authenticate(db, data.username, data.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )
    return LoginResponse(token=create_access_token(user.username))


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(_current_user)) -> User:
    return user


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    data: ChangePasswordRequest,
    user: User = Depends(_current_user),
) -> MessageResponse:
    if not verify_user_password(user, data.old_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    store_password(user, data.new_password)
    logger.info("Password changed for user %s", user.username)
    return MessageResponse(message="Password changed successfully")
