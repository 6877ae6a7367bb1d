# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
CookieCloud client and a per-user cookie jar backed by it.

CookieCloud stores browser cookies encrypted the way CryptoJS.AES does with a
passphrase: base64("Salted__" + salt + AES-256-CBC ciphertext), key and IV
derived with OpenSSL's EVP_BytesToKey over MD5. The passphrase is the first
16 hex characters of md5(uuid + "-" + password).
"""

import asyncio
import base64
import hashlib
import json
import logging
import os
from http.cookiejar import Cookie

import httpx
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from sqlalchemy import select

from miko_server import crypto
from miko_server.config import CookieCloudSettings
from miko_server.models import Identity
from miko_server.models.system_setting import PASSWORD_SECRET_KEY
from miko_server.services import secrets

logger = logging.getLogger(__name__)

SALT_HEADER = b"Salted__"


class CookieCloudError(Exception):
    pass


def passphrase(uuid: str, password: str) -> str:
    return hashlib.md5(f"{uuid}-{password}".encode("utf-8")).hexdigest()[:16]


def _evp_bytes_to_key(secret: bytes, salt: bytes, key_len: int = 32, iv_len: int = 16) -> tuple[bytes, bytes]:
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + secret + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len : key_len + iv_len]


def encrypt(plain: bytes, secret: str) -> str:
    salt = os.urandom(8)
    key, iv = _evp_bytes_to_key(secret.encode("utf-8"), salt)
    padder = padding.PKCS7(128).padder()
    data = padder.update(plain) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ct = encryptor.update(data) + encryptor.finalize()
    return base64.b64encode(SALT_HEADER + salt + ct).decode("ascii")


def decrypt(encrypted: str, secret: str) -> bytes:
    try:
        raw = base64.b64decode(encrypted)
    except ValueError as e:
        raise CookieCloudError("invalid encrypted payload") from e
    if not raw.startswith(SALT_HEADER) or len(raw) < 32:
        raise CookieCloudError("invalid encrypted payload")
    salt, ct = raw[8:16], raw[16:]
    key, iv = _evp_bytes_to_key(secret.encode("utf-8"), salt)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    data = decryptor.update(ct) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    try:
        return unpadder.update(data) + unpadder.finalize()
    except ValueError as e:
        raise CookieCloudError("decryption failed, check uuid and password") from e


class CookieCloudClient:
    """Thin async client for a CookieCloud server."""

    def __init__(self, url: str, timeout: float = 30.0, retry: int = 3, transport: httpx.AsyncBaseTransport | None = None):
        if not url:
            raise CookieCloudError("cookiecloud url is not configured")
        self.url = url.rstrip("/")
        self.retry = max(retry, 0)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _send(self, method: str, url: str, **kwargs) -> dict:
        last_error: Exception | None = None
        for attempt in range(self.retry + 1):
            try:
                r = await self._client.request(method, url, **kwargs)
                r.raise_for_status()
                return r.json()
            except httpx.TransportError as e:
                last_error = e
                logger.warning("CookieCloud %s %s failed (attempt %d): %s", method, url, attempt + 1, e)
            except httpx.HTTPStatusError as e:
                raise CookieCloudError(f"cookiecloud returned {e.response.status_code}") from e
        raise CookieCloudError(f"cookiecloud unreachable: {last_error}") from last_error

    async def get(self, uuid: str, password: str) -> dict:
        """Decrypted payload: {"cookie_data": {domain: [cookie, ...]}, "local_storage_data": ...}."""
        body = await self._send("GET", f"{self.url}/get/{uuid}")
        encrypted = body.get("encrypted")
        if not encrypted:
            raise CookieCloudError("no cookies stored for this uuid")
        try:
            payload = json.loads(decrypt(encrypted, passphrase(uuid, password)))
        except ValueError as e:
            raise CookieCloudError("decrypted payload is not JSON, check uuid and password") from e
        payload.setdefault("cookie_data", {})
        return payload

    async def update(self, uuid: str, password: str, payload: dict) -> None:
        encrypted = encrypt(json.dumps(payload).encode("utf-8"), passphrase(uuid, password))
        body = await self._send("POST", f"{self.url}/update", json={"uuid": uuid, "encrypted": encrypted})
        if body.get("action") != "done":
            raise CookieCloudError(f"cookiecloud update failed: {body}")

    async def close(self) -> None:
        await self._client.aclose()


# -- cookie conversion ---------------------------------------------------------------


def normalize_host(host: str) -> str:
    host = host.strip().lstrip(".").lower()
    if host.startswith("["):
        return host[1:].split("]", 1)[0]
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host


def same_site_from(value: str | None) -> str | None:
    value = (value or "").lower()
    if value in ("no_restriction", "none"):
        return "None"
    if value == "strict":
        return "Strict"
    if value == "lax":
        return "Lax"
    return None


def same_site_to(value: str | None) -> str:
    return {"None": "no_restriction", "Strict": "strict", "Lax": "lax"}.get(value or "", "unspecified")


def cookie_from_data(domain: str, data: dict) -> Cookie:
    """Browser cookie record to a cookiejar Cookie."""
    name = data.get("name", "")
    normalized = normalize_host(data.get("domain", "")) or normalize_host(domain)
    host_only = bool(data.get("hostOnly")) or name.startswith("__Host-")
    expires = None
    if not data.get("session") and data.get("expirationDate"):
        expires = int(data["expirationDate"])
    rest = {}
    if data.get("httpOnly"):
        rest["HttpOnly"] = None
    same_site = same_site_from(data.get("sameSite"))
    if same_site:
        rest["SameSite"] = same_site
    return Cookie(
        version=0,
        name=name,
        value=data.get("value", ""),
        port=None,
        port_specified=False,
        domain=normalized if host_only else f".{normalized}",
        domain_specified=not host_only,
        domain_initial_dot=not host_only,
        path=data.get("path") or "/",
        path_specified=True,
        secure=bool(data.get("secure")),
        expires=expires,
        discard=expires is None,
        comment=None,
        comment_url=None,
        rest=rest,
    )


def cookie_to_data(origin_host: str, cookie: Cookie) -> tuple[str, dict]:
    """Cookie to (domain key, browser cookie record), applying the __Host-/__Secure- rules."""
    host = normalize_host(origin_host)
    domain = normalize_host(cookie.domain) if cookie.domain_specified else ""
    host_only = not domain
    if host_only:
        domain = host or normalize_host(cookie.domain)
    path = cookie.path or "/"
    secure = bool(cookie.secure)
    if cookie.name.startswith("__Secure-"):
        secure = True
    if cookie.name.startswith("__Host-"):
        secure = True
        host_only = True
        domain = host or domain
        path = "/"
    session = cookie.expires is None
    return domain, {
        "domain": domain if host_only else f".{domain}",
        "expirationDate": 0 if session else float(cookie.expires),
        "hostOnly": host_only,
        "httpOnly": cookie.has_nonstandard_attr("HttpOnly"),
        "name": cookie.name,
        "path": path,
        "sameSite": same_site_to(cookie.get_nonstandard_attr("SameSite")),
        "secure": secure,
        "session": session,
        "value": cookie.value or "",
    }


def _domain_matches(cookie_domain: str, host: str) -> bool:
    domain = normalize_host(cookie_domain)
    return host == domain or host.endswith(f".{domain}")


# -- jar ------------------------------------------------------------------------------


class CookieCloudJar:
    """Cookies of one local user, pulled from and pushed back to CookieCloud.

    The identity (uuid/password) is loaded from the database on first use
    when it is not passed in.
    """

    def __init__(
        self,
        config: CookieCloudSettings,
        username: str,
        identity: Identity | None = None,
        session_factory=None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.username = username
        self.cookies = httpx.Cookies()
        self._identity = identity
        self._session_factory = session_factory
        self._transport = transport
        self._client: CookieCloudClient | None = None
        self._domains: set[str] = set()
        self._dirty = False
        self._lock = asyncio.Lock()
        self._ticker: asyncio.Task | None = None

    async def identity(self) -> Identity:
        if self._identity is None:
            if self._session_factory is None:
                raise CookieCloudError("database not initialized")
            async with self._session_factory() as db:
                self._identity = (
                    await db.execute(select(Identity).where(Identity.username == self.username))
                ).scalar_one_or_none()
            if self._identity is None:
                raise CookieCloudError(f"no cookiecloud identity for user {self.username}")
        return self._identity

    async def _credentials(self) -> tuple[CookieCloudClient, str, str]:
        identity = await self.identity()
        if self._client is None:
            self._client = CookieCloudClient(
                identity.url or self.config.url,
                timeout=self.config.timeout,
                retry=self.config.retry,
                transport=self._transport,
            )
        password = crypto.decrypt_or_plain(identity.password, secrets.cached(PASSWORD_SECRET_KEY))
        return self._client, identity.uuid, password

    async def pull_all(self) -> int:
        """Replace the jar with every cookie stored in CookieCloud; returns the count."""
        client, uuid, password = await self._credentials()
        payload = await client.get(uuid, password)
        async with self._lock:
            self.cookies.clear()
            count = 0
            for domain, records in payload["cookie_data"].items():
                self._domains.add(normalize_host(domain))
                for record in records:
                    self.cookies.jar.set_cookie(cookie_from_data(domain, record))
                    count += 1
                logger.info("Pulled %d cookies for domain %s from cookiecloud", len(records), domain)
        return count

    def cookies_for(self, host: str) -> list[Cookie]:
        host = normalize_host(host)
        return [c for c in self.cookies.jar if _domain_matches(c.domain, host)]

    async def set_cookies(self, host: str, cookies: list[Cookie]) -> None:
        """Store cookies a server set for host and push them back to CookieCloud."""
        async with self._lock:
            for cookie in cookies:
                self.cookies.jar.set_cookie(cookie)
            self._domains.add(normalize_host(host))
            self._dirty = True
        if self._ticker is None:
            await self.push()

    async def push(self) -> None:
        """Merge the jar's cookies into the stored CookieCloud payload."""
        client, uuid, password = await self._credentials()
        payload = await client.get(uuid, password)
        async with self._lock:
            by_domain: dict[str, list[dict]] = {}
            for domain in self._domains:
                for cookie in self.cookies_for(domain):
                    key, record = cookie_to_data(domain, cookie)
                    if record not in by_domain.setdefault(key, []):
                        by_domain[key].append(record)
            self._dirty = False
        payload["cookie_data"].update(by_domain)
        logger.info("Pushing cookies of %d domains to cookiecloud", len(by_domain))
        await client.update(uuid, password, payload)

    def start(self) -> None:
        """Push changed cookies every config.push_interval seconds; <= 0 disables."""
        if self.config.push_interval > 0 and self._ticker is None:
            self._ticker = asyncio.create_task(self._tick())

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.config.push_interval)
            if not self._dirty:
                continue
            try:
                await self.push()
            except CookieCloudError as e:
                logger.warning("CookieCloud push failed: %s", e)

    async def close(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None
            if self._dirty:
                await self.push()
        if self._client is not None:
            await self._client.close()
            self._client = None


class CookieCloudJars:
    """One jar per local user, pulled on first use and kept for the process."""

    def __init__(self, config: CookieCloudSettings, session_factory, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._session_factory = session_factory
        self._transport = transport
        self._jars: dict[str, CookieCloudJar] = {}
        self._lock = asyncio.Lock()

    async def get(self, username: str) -> CookieCloudJar:
        async with self._lock:
            jar = self._jars.get(username)
            if jar is not None:
                return jar
            jar = CookieCloudJar(
                self.config,
                username,
                session_factory=self._session_factory,
                transport=self._transport,
            )
            await jar.pull_all()
            jar.start()
            self._jars[username] = jar
            return jar

    async def forget(self, username: str) -> None:
        """Drop the cached jar, e.g. after the user's identity changed."""
        async with self._lock:
            jar = self._jars.pop(username, None)
        if jar is not None:
            await jar.close()

    async def close(self) -> None:
        async with self._lock:
            jars, self._jars = list(self._jars.values()), {}
        for jar in jars:
            try:
                await jar.close()
            except CookieCloudError as e:
                logger.warning("Final cookie push for %s failed: %s", jar.username, e)
