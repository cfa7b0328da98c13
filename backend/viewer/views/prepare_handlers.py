"""Prepare-run API handler: make a run's replay and map available for the viewer."""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING

from starlette.responses import JSONResponse, PlainTextResponse

from fetcher.pipeline import FailureKind, PreparedRun

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from fetcher.pipeline import RunPreparer

PREPARE_RUN_PATH = "/api/prepare-run"


async def prepare_run(request: Request) -> Response:
    """GET /api/prepare-run?id=&mapName=&uniqueId=

    200 with the replay filename once both assets are cached, 400 with a
    plain-text reason for malformed parameters, 500 with a generic message
    when an upstream fetch or cache write failed.
    """
    preparer: RunPreparer = request.app.state.run_preparer
    params = request.query_params

    outcome = await preparer.prepare_detached(params.get("id"), params.get("mapName"), params.get("uniqueId"))

    if isinstance(outcome, PreparedRun):
        return JSONResponse(outcome.to_payload())
    if outcome.kind is FailureKind.VALIDATION:
        return PlainTextResponse(outcome.message, status_code=HTTPStatus.BAD_REQUEST)
    return JSONResponse({"success": False, "error": outcome.message}, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)
