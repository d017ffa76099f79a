from typing import Optional

from fastapi import APIRouter, Depends, Query

from restodir.core.deps import get_current_actor, get_lifecycle_service
from restodir.domain.enums import EstablishmentStatus
from restodir.domain.lifecycle import Actor
from restodir.schemas.establishment import EstablishmentListOut, EstablishmentOut, SuspendRequest
from restodir.schemas.moderation import CoordinatesUpdate, ModerateRequest
from restodir.services.lifecycle import LifecycleService

router = APIRouter(prefix="/moderation/establishments", tags=["moderation"])


@router.get("", response_model=EstablishmentListOut)
async def moderation_queue(
    status_filter: EstablishmentStatus = Query(EstablishmentStatus.PENDING, alias="status"),
    limit: Optional[int] = None,
    offset: int = 0,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    page = await service.moderation_queue(actor, status_filter, limit=limit, offset=offset)
    return {"items": page.items, "total": page.total, "has_more": page.has_more}


@router.get("/search", response_model=EstablishmentListOut)
async def search_establishments(
    q: str,
    status_filter: Optional[EstablishmentStatus] = Query(None, alias="status"),
    city: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    page = await service.search_for_moderation(
        actor, q, status=status_filter, city=city, limit=limit, offset=offset
    )
    return {"items": page.items, "total": page.total, "has_more": page.has_more}


@router.get("/{establishment_id}", response_model=EstablishmentOut)
async def get_establishment(
    establishment_id: str,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    return await service.get_for_moderation(establishment_id, actor)


@router.post("/{establishment_id}/moderate", response_model=EstablishmentOut)
async def moderate_establishment(
    establishment_id: str,
    payload: ModerateRequest,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    return await service.moderate(establishment_id, actor, payload.action, payload.notes)


@router.post("/{establishment_id}/suspend", response_model=EstablishmentOut)
async def suspend_establishment(
    establishment_id: str,
    payload: SuspendRequest,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    return await service.suspend(establishment_id, actor, payload.reason)


@router.post("/{establishment_id}/unsuspend", response_model=EstablishmentOut)
async def unsuspend_establishment(
    establishment_id: str,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    return await service.unsuspend(establishment_id, actor)


@router.post("/{establishment_id}/archive", response_model=EstablishmentOut)
async def archive_establishment(
    establishment_id: str,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    return await service.archive(establishment_id, actor)


@router.patch("/{establishment_id}/coordinates", response_model=EstablishmentOut)
async def correct_coordinates(
    establishment_id: str,
    payload: CoordinatesUpdate,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    return await service.correct_coordinates(
        establishment_id, actor, payload.latitude, payload.longitude
    )
