"""Application entry point for the restaurant directory API."""

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from restodir.api.routes.establishments import router as establishments_router
from restodir.api.routes.moderation import router as moderation_router
from restodir.api.routes.search import router as search_router
from restodir.core.audit import AuditEmitter, DatabaseAuditSink
from restodir.core.config import settings
from restodir.core.db import SessionLocal, get_session
from restodir.core.errors import DirectoryError
from restodir.core.logging import setup_logging
from restodir.core.middleware import BodySizeLimitMiddleware, RequestContextLogMiddleware
from restodir.core.rate_limit import init_rate_limiter

setup_logging()

app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)
app.state.audit_emitter = AuditEmitter(DatabaseAuditSink(SessionLocal))

init_rate_limiter(app)

app.add_middleware(RequestContextLogMiddleware)


def _cors_origins() -> list[str]:
    if settings.ENV == "prod":
        if not settings.CORS_ALLOWED_ORIGINS:
            raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
        return settings.CORS_ALLOWED_ORIGINS
    return settings.CORS_ALLOWED_ORIGINS or ["http://localhost:5173"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.exception_handler(DirectoryError)
async def directory_error_handler(request: Request, exc: DirectoryError) -> JSONResponse:
    logger.bind(code=exc.code, path=str(request.url.path)).info("request_rejected")
    content = {"detail": exc.message, "code": exc.code}
    field = getattr(exc, "field", None)
    if field:
        content["field"] = field
    return JSONResponse(status_code=exc.http_status, content=content)


@app.on_event("shutdown")
async def shutdown_event():
    """Let in-flight audit writes finish before the process exits."""

    await app.state.audit_emitter.wait_idle()


@app.get("/api/healthz", tags=["system"], summary="Liveness probe")
def healthz() -> dict[str, str]:
    """Simple liveness probe that load balancers and monitors can call."""

    return {"status": "ok"}


@app.get("/api/readyz", tags=["system"], summary="Readiness probe")
async def readyz(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
        return {"ready": True}
    except SQLAlchemyError:
        raise HTTPException(status_code=503, detail="Database not reachable")


app.include_router(establishments_router, prefix="/api")
app.include_router(moderation_router, prefix="/api")
app.include_router(search_router, prefix="/api")
