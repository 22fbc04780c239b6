# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Starlette ASGI application for the MediVault sharing API."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from medivault.core.logging import correlation_context
from medivault.sharing import InMemoryPersistence, PostgresPersistence, SharingService

from .config import ServerSettings, get_settings
from .sharing_endpoints import (
    access_endpoint,
    access_history_endpoint,
    create_live_profile_endpoint,
    delete_token_endpoint,
    get_live_profile_endpoint,
    get_token_endpoint,
    issue_token_endpoint,
    list_tokens_endpoint,
    restore_token_endpoint,
    revoke_token_endpoint,
    set_active_endpoint,
)

logger = logging.getLogger(__name__)

API_V1 = "/api/v1"
CORRELATION_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Scope every request's log lines under one correlation id."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        with correlation_context(request.headers.get(CORRELATION_HEADER)) as cid:
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = cid
        return response


def _database_ok() -> bool:
    from medivault.db import check_connection

    return check_connection()


async def health_endpoint(request: Request) -> JSONResponse:
    """Health check endpoint."""
    settings: ServerSettings = request.app.state.settings

    health_data: dict[str, Any] = {
        "status": "healthy",
        "server": settings.server_name,
        "version": settings.server_version,
        "storage": settings.storage_backend,
    }

    if settings.storage_backend == "postgres":
        if await asyncio.to_thread(_database_ok):
            health_data["database"] = "connected"
        else:
            health_data["database"] = "unreachable"
            health_data["status"] = "degraded"

    status_code = 200 if health_data["status"] == "healthy" else 503
    return JSONResponse(health_data, status_code=status_code)


def build_sharing_service(settings: ServerSettings) -> SharingService:
    """Construct the sharing service for the configured storage backend."""
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory storage; shared links are lost on restart")
        return SharingService(InMemoryPersistence(), settings=settings)
    return SharingService(PostgresPersistence(), settings=settings)


@asynccontextmanager
async def lifespan(app: Starlette):
    """Application lifespan handler."""
    settings: ServerSettings = app.state.settings
    logger.info("Starting MediVault sharing API on %s:%s", settings.host, settings.port)
    yield
    if settings.storage_backend == "postgres":
        from medivault.db import close_pool

        close_pool()
    logger.info("MediVault sharing API shutting down")


def create_app(
    service: SharingService | None = None,
    settings: ServerSettings | None = None,
) -> Starlette:
    """Create the Starlette ASGI application.

    Args:
        service: Sharing service to serve; built from settings when None
        settings: Server settings; the process-wide settings when None
    """
    settings = settings or get_settings()

    routes = [
        Route(f"{API_V1}/health", health_endpoint, methods=["GET"]),
        # Token holders
        Route(f"{API_V1}/access/{{token_id}}", access_endpoint, methods=["GET"]),
        # Owners
        Route(f"{API_V1}/tokens", issue_token_endpoint, methods=["POST"]),
        Route(f"{API_V1}/tokens", list_tokens_endpoint, methods=["GET"]),
        Route(f"{API_V1}/tokens/{{id}}", get_token_endpoint, methods=["GET"]),
        Route(f"{API_V1}/tokens/{{id}}", delete_token_endpoint, methods=["DELETE"]),
        Route(f"{API_V1}/tokens/{{id}}/revoke", revoke_token_endpoint, methods=["POST"]),
        Route(f"{API_V1}/tokens/{{id}}/restore", restore_token_endpoint, methods=["POST"]),
        Route(f"{API_V1}/tokens/{{id}}/active", set_active_endpoint, methods=["POST"]),
        Route(f"{API_V1}/tokens/{{id}}/access", access_history_endpoint, methods=["GET"]),
        Route(f"{API_V1}/live-profile", get_live_profile_endpoint, methods=["GET"]),
        Route(f"{API_V1}/live-profile", create_live_profile_endpoint, methods=["POST"]),
    ]

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", CORRELATION_HEADER],
            expose_headers=[CORRELATION_HEADER],
        ),
        Middleware(CorrelationIdMiddleware),
    ]

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.settings = settings
    app.state.sharing_service = service if service is not None else build_sharing_service(settings)
    return app


def run() -> None:
    """Run the server using uvicorn."""
    import uvicorn

    settings = get_settings()

    logger.info("Starting MediVault sharing API on %s:%s", settings.host, settings.port)

    uvicorn.run(
        create_app(settings=settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
