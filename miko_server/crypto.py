# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Reversible password encryption (AES-256-GCM keyed by SHA-256 of a secret)."""

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12


class DecryptError(ValueError):
    pass


def _key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt(plain: str, secret: str) -> str:
    """Encrypt plain text; output is base64(nonce || ciphertext || tag)."""
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(_key(secret)).encrypt(nonce, plain.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt(data: str, secret: str) -> str:
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptError("not base64") from e
    if len(raw) <= NONCE_SIZE:
        raise DecryptError("ciphertext too short")
    nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    try:
        plain = AESGCM(_key(secret)).decrypt(nonce, sealed, None)
    except InvalidTag as e:
        raise DecryptError("authentication failed") from e
    return plain.decode("utf-8")


def decrypt_or_plain(data: str, secret: str) -> str:
    """Decrypt, or return data unchanged when it is a legacy clear-text value."""
    if not secret:
        return data
    try:
        return decrypt(data, secret)
    except (DecryptError, UnicodeDecodeError):
        return data
