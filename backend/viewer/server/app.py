from __future__ import annotations

import contextlib
from http import HTTPStatus
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from fetcher.download import create_http_client
from fetcher.pipeline import RunPreparer
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.logging import setup_logging
from viewer.server.middleware import OriginCheckMiddleware, RateLimitMiddleware
from viewer.server.rate_limit import FixedWindowRateLimiter
from viewer.server.settings import ViewerServerSettings
from viewer.views import PREPARE_RUN_PATH, ImmutableStaticFiles, prepare_run

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import httpx
    from starlette.requests import Request


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "version": APP_VERSION, "commit": GIT_COMMIT})


async def _unhandled_error(request: Request, exc: Exception) -> PlainTextResponse:
    logger.error("unhandled error", path=request.url.path, exc_info=exc)
    return PlainTextResponse("Something broke!", status_code=HTTPStatus.INTERNAL_SERVER_ERROR)


def create_app(
    settings: ViewerServerSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Starlette:
    """Build the viewer app.

    transport replaces the network layer of the upstream HTTP client; tests
    pass an httpx.MockTransport.
    """
    if settings is None:  # pragma: no cover
        settings = ViewerServerSettings()  # ty: ignore[missing-argument]

    config = settings.fetcher_config()
    config.prepare_directories()

    client = create_http_client(config.download_timeout_seconds, transport=transport)
    run_preparer = RunPreparer.from_config(config, client)
    limiter = FixedWindowRateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)

    routes = [
        Route("/health", health, methods=["GET"], name="health"),
        Route(PREPARE_RUN_PATH, prepare_run, methods=["GET"], name="prepare_run"),
        Mount("/resources", app=ImmutableStaticFiles(directory=str(config.resources_dir)), name="resources"),
        Mount("/downloads", app=StaticFiles(directory=str(config.downloads_dir)), name="downloads"),
    ]

    public_dir = Path(settings.public_dir).resolve()
    if public_dir.is_dir():
        routes.append(Mount("/", app=StaticFiles(directory=str(public_dir), html=True), name="public"))
    else:
        logger.warning("public directory not found, viewer frontend will not be served", path=str(public_dir))

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        yield
        await client.aclose()

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={Exception: _unhandled_error},
    )
    # Last added runs first: CORS, then rate limit, then origin check.
    app.add_middleware(
        OriginCheckMiddleware,  # type: ignore[arg-type]
        allowed_origin=settings.allowed_origin,
        paths=[PREPARE_RUN_PATH],
    )
    app.add_middleware(RateLimitMiddleware, limiter=limiter, paths=[PREPARE_RUN_PATH])  # type: ignore[arg-type]
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )

    app.state.settings = settings
    app.state.fetcher_config = config
    app.state.http_client = client
    app.state.run_preparer = run_preparer
    app.state.rate_limiter = limiter

    logger.info(
        "viewer server ready",
        replay_origin=config.replay_origin,
        map_origin=config.map_origin,
        resources_dir=str(config.resources_dir),
    )
    return app


def get_app() -> Starlette:  # pragma: no cover
    """Factory function for uvicorn --factory viewer.server.app:get_app."""
    s = ViewerServerSettings()  # ty: ignore[missing-argument]
    setup_logging(log_dir=s.log_dir)
    return create_app(settings=s)


def main() -> None:  # pragma: no cover
    """Console entry point: serve get_app() with uvicorn."""
    import uvicorn

    s = ViewerServerSettings()  # ty: ignore[missing-argument]
    uvicorn.run(
        "viewer.server.app:get_app",
        factory=True,
        host=s.host,
        port=s.port,
        log_config=None,
    )
