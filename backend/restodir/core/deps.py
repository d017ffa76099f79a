from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from restodir.core.audit import AuditEmitter
from restodir.core.db import get_session
from restodir.core.logging import bind_actor
from restodir.core.security import decode_access_token
from restodir.domain.enums import ActorRole
from restodir.domain.lifecycle import Actor
from restodir.services.discovery import DiscoveryEngine
from restodir.services.lifecycle import LifecycleService


async def get_current_actor(request: Request) -> Actor:
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    token = auth.split(" ", 1)[1]
    try:
        payload = decode_access_token(token)
        if payload.get("type", "access") != "access":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type"
            )
        actor_id = payload.get("sub")
        role = ActorRole(payload.get("role"))
    except (JWTError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )

    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )
    bind_actor(request.state, str(actor_id))
    return Actor(id=str(actor_id), role=role)


def get_audit_emitter(request: Request) -> AuditEmitter:
    return request.app.state.audit_emitter


def get_lifecycle_service(
    session: AsyncSession = Depends(get_session),
    audit: AuditEmitter = Depends(get_audit_emitter),
) -> LifecycleService:
    return LifecycleService(session, audit)


def get_discovery_engine(session: AsyncSession = Depends(get_session)) -> DiscoveryEngine:
    return DiscoveryEngine(session)
