"""Custom ASGI middleware used by the FastAPI app."""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from restodir.core.config import settings
from restodir.core.logging import ANONYMOUS, request_id_ctx_var

REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_ID_MAX_LEN = 64


def _request_id(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "").strip()
    return supplied[:REQUEST_ID_MAX_LEN] if supplied else uuid.uuid4().hex


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Assigns a request id and writes one access log line per request.

    The endpoint runs in a copied context, so the actor is taken from
    ``request.state.actor_id`` (set by the auth dependency) once it returns.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = _request_id(request)
        request.state.request_id = request_id
        request.state.actor_id = ANONYMOUS
        token = request_id_ctx_var.set(request_id)
        started = time.perf_counter()
        status_code = 500
        try:
            response: Response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            access = logger.bind(
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                actor_id=getattr(request.state, "actor_id", ANONYMOUS),
            )
            if status_code >= 500:
                access.warning("request_completed")
            else:
                access.info("request_completed")
            request_id_ctx_var.reset(token)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Refuses bodies whose declared length exceeds ``MAX_BODY_BYTES``."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        declared = request.headers.get("content-length")
        if declared is None:
            return await call_next(request)
        try:
            length = int(declared)
        except ValueError:
            return JSONResponse(
                status_code=400,
                content={"detail": "Invalid Content-Length header", "code": "bad_request"},
            )
        if length > settings.MAX_BODY_BYTES:
            logger.bind(path=request.url.path, length=length, limit=settings.MAX_BODY_BYTES).info(
                "request_body_too_large"
            )
            return JSONResponse(
                status_code=413,
                content={"detail": "Request entity too large", "code": "payload_too_large"},
            )
        return await call_next(request)
