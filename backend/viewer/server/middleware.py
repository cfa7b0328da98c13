"""ASGI middleware guarding the prepare-run API."""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING

import structlog
from starlette.datastructures import Headers
from starlette.responses import JSONResponse, PlainTextResponse

if TYPE_CHECKING:
    from collections.abc import Iterable

    from starlette.types import ASGIApp, Receive, Scope, Send

    from viewer.server.rate_limit import FixedWindowRateLimiter

logger = structlog.get_logger()

RATE_LIMITED_MESSAGE = "Too many downloads, please try again after 5 minutes"
FORBIDDEN_ORIGIN_MESSAGE = "Forbidden: Origin not allowed."


def _client_key(scope: Scope) -> str:
    client = scope.get("client")
    return client[0] if client else "unknown"


class _PathScopedMiddleware:
    """Base for middleware that only acts on HTTP requests to a fixed set of paths."""

    def __init__(self, app: ASGIApp, paths: Iterable[str]) -> None:
        self.app = app
        self._paths = frozenset(p.rstrip("/") or "/" for p in paths)

    def applies_to(self, scope: Scope) -> bool:
        if scope["type"] != "http":
            return False
        path: str = scope["path"]
        return (path.rstrip("/") or "/") in self._paths


class OriginCheckMiddleware(_PathScopedMiddleware):
    """Reject browser requests whose Origin (or Referer) is not the viewer's own site.

    Requests carrying neither header (curl, server-to-server) pass through,
    as does every request when allowed_origin is "*".
    """

    def __init__(self, app: ASGIApp, *, allowed_origin: str, paths: Iterable[str]) -> None:
        super().__init__(app, paths)
        self._allowed_origin = allowed_origin

    def is_allowed(self, headers: Headers) -> bool:
        if self._allowed_origin == "*":
            return True
        request_origin = headers.get("origin") or headers.get("referer")
        return not request_origin or request_origin.startswith(self._allowed_origin)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self.applies_to(scope):
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        if not self.is_allowed(headers):
            logger.warning(
                "blocked request from unauthorized origin",
                origin=headers.get("origin") or headers.get("referer"),
                client=_client_key(scope),
            )
            response = JSONResponse({"error": FORBIDDEN_ORIGIN_MESSAGE}, status_code=HTTPStatus.FORBIDDEN)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


class RateLimitMiddleware(_PathScopedMiddleware):
    """Throttle requests per client address with a shared FixedWindowRateLimiter."""

    def __init__(self, app: ASGIApp, *, limiter: FixedWindowRateLimiter, paths: Iterable[str]) -> None:
        super().__init__(app, paths)
        self._limiter = limiter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self.applies_to(scope):
            await self.app(scope, receive, send)
            return

        client = _client_key(scope)
        if not self._limiter.hit(client):
            logger.warning("rate limited client", client=client)
            response = PlainTextResponse(
                RATE_LIMITED_MESSAGE,
                status_code=HTTPStatus.TOO_MANY_REQUESTS,
                headers={"Retry-After": str(self._limiter.retry_after(client))},
            )
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
