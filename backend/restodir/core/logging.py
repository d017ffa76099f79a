"""Loguru setup and the per-request log context.

Records carry ``request_id`` and ``actor_id``. Code running inside an endpoint
reads them from context variables; the access log in
``restodir.core.middleware`` reads ``request.state`` instead, since middleware
and endpoint do not share a context.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from sys import stdout
from typing import Any

from loguru import logger

from restodir.core.config import settings

ANONYMOUS = "-"

request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default=ANONYMOUS)
actor_id_ctx_var: ContextVar[str] = ContextVar("actor_id", default=ANONYMOUS)

_NOISY_STDLIB_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "aiomysql")


def _patch_record(record: dict[str, Any]) -> None:
    extra = record["extra"]
    extra.setdefault("request_id", request_id_ctx_var.get())
    extra.setdefault("actor_id", actor_id_ctx_var.get())
    extra.setdefault("env", settings.ENV)


def bind_actor(state: Any, actor_id: str) -> None:
    """Attach the authenticated actor to the request and to this task's log context."""

    state.actor_id = actor_id
    actor_id_ctx_var.set(actor_id)


def setup_logging() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL)
    for name in _NOISY_STDLIB_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logger.remove()
    logger.configure(patcher=_patch_record)
    logger.add(
        stdout,
        level=settings.LOG_LEVEL,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        serialize=settings.LOG_JSON,
    )
