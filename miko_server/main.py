# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Miko Server - Main FastAPI application."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from miko_server import subsonic
from miko_server.auth import ensure_default_admin
from miko_server.config import settings
from miko_server.database import async_session_maker, create_sync_engine, engine, init_db
from miko_server.deps import Services
from miko_server.logging_config import configure_logging
from miko_server.routers import auth, cookiecloud, download, library, platform
from miko_server.services import browser, secrets
from miko_server.services.cookiecloud import CookieCloudJars
from miko_server.services.download import default_registry
from miko_server.services.now_playing import NowPlaying
from miko_server.services.scanner import Scanner
from miko_server.subsonic.response import SubsonicError, subsonic_error_handler

logger = logging.getLogger(__name__)


def _get_cors_origins() -> list[str]:
    raw = (settings.server.cors_origins or "*").strip()
    if raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def _startup_scan(scanner: Scanner, incremental: bool) -> None:
    try:
        scanner.scan_all(incremental)
    except Exception:
        logger.exception("Startup scan failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging(settings.log)
    await init_db()
    settings.cover_cache_dir.mkdir(parents=True, exist_ok=True)

    async with async_session_maker() as db:
        await secrets.get_jwt_secret(db)
        await secrets.get_password_secret(db)
        await browser.ensure_music_folders(db, settings.subsonic.folders)
        await ensure_default_admin(db)
        await db.commit()

    sync_engine = create_sync_engine()
    services = Services(
        settings=settings,
        scanner=Scanner(settings, sync_engine),
        now_playing=NowPlaying(),
        providers=default_registry(settings.provider.platform),
        cookiecloud=CookieCloudJars(settings.cookiecloud, async_session_maker),
    )
    app.state.services = services
    app.state.scan_task = None
    logger.info("Miko server %s ready, music folders: %s", settings.version, settings.subsonic.folders)

    if settings.subsonic.scan_on_startup:
        incremental = settings.subsonic.scan_mode != "full"
        app.state.scan_task = asyncio.get_running_loop().run_in_executor(
            None, _startup_scan, services.scanner, incremental
        )
    yield
    # shutdown
    services.scanner.request_cancel()
    await services.cookiecloud.close()
    if app.state.scan_task is not None:
        await app.state.scan_task
    sync_engine.dispose()
    await engine.dispose()


app = FastAPI(
    title="Miko Server",
    description="Subsonic-compatible music server with platform downloads",
    version=settings.version,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status, and duration for each request (no body or auth headers)."""
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)
    return response


# Outermost, so routing and the logs see the trimmed path
app.add_middleware(subsonic.TrimViewSuffixMiddleware)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in errors)
    return JSONResponse({"error": message or "invalid request"}, status_code=400)


app.add_exception_handler(SubsonicError, subsonic_error_handler)

for router in subsonic.routers:
    app.include_router(router)
app.include_router(auth.router)
app.include_router(cookiecloud.router)
app.include_router(download.router)
app.include_router(platform.router)
app.include_router(library.router)


@app.get("/health", status_code=204)
async def health() -> Response:
    """Health check for container orchestrators."""
    return Response(status_code=204)
