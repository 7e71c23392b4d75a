"""Entry point for the call-signaling service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import SESSION_TOKEN_HEADER
from api.routes import router as api_router
from config.settings import Settings, get_settings
from integrations.media_provider import BaseMediaProvider
from integrations.push import PushNotifier
from signaling.errors import AuthError, SignalingError
from signaling.services import build_services

LOGGER = logging.getLogger(__name__)


async def signaling_error_handler(request: Request, exc: SignalingError) -> JSONResponse:
    if exc.status_code >= 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    headers = {"WWW-Authenticate": "BrowserID,Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "detail": exc.detail, "errors": exc.errors},
        headers=headers,
    )


def create_app(
    settings: Settings | None = None,
    *,
    provider: BaseMediaProvider | None = None,
    notifier: PushNotifier | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = await build_services(settings, provider=provider, notifier=notifier)
        app.state.services = services
        try:
            yield
        finally:
            await services.close()

    app = FastAPI(
        title="Call Signaling",
        description="Pseudonymous sessions, call URLs and call fan-out.",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[SESSION_TOKEN_HEADER, "WWW-Authenticate"],
    )
    app.add_exception_handler(SignalingError, signaling_error_handler)
    app.include_router(api_router)
    return app


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = create_app(settings)
