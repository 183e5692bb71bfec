"""
Global middleware and error-to-response mapping.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from connectors.errors import ConnectorError

logger = logging.getLogger(__name__)


async def connector_error_handler(request: Request, exc: ConnectorError) -> JSONResponse:
    """Map a ``ConnectorError`` to its stable public message; details stay in the log."""
    logger.info(
        "%s %s -> %d %s (%s)",
        request.method,
        request.url.path,
        exc.status_code,
        exc.kind,
        exc.reason,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.public_message, "kind": exc.kind},
    )


def register_middleware(app: FastAPI) -> None:
    """Attach app-level middleware and exception handlers."""

    app.add_exception_handler(ConnectorError, connector_error_handler)

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response
