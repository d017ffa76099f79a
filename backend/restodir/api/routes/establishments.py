from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from restodir.core.deps import get_current_actor, get_lifecycle_service
from restodir.domain.enums import EstablishmentStatus
from restodir.domain.lifecycle import Actor
from restodir.schemas.establishment import (
    EstablishmentCreate,
    EstablishmentListOut,
    EstablishmentOut,
    EstablishmentUpdate,
    SuspendRequest,
)
from restodir.services.lifecycle import LifecycleService

router = APIRouter(prefix="/establishments", tags=["establishments"])


@router.post("", response_model=EstablishmentOut, status_code=status.HTTP_201_CREATED)
async def create_establishment(
    payload: EstablishmentCreate,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    return await service.create_establishment(actor, payload.model_dump(exclude_none=True))


@router.get("", response_model=EstablishmentListOut)
async def list_my_establishments(
    status_filter: Optional[EstablishmentStatus] = Query(None, alias="status"),
    include_archived: bool = False,
    limit: Optional[int] = None,
    offset: int = 0,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    page = await service.list_own(
        actor,
        status=status_filter,
        include_archived=include_archived,
        limit=limit,
        offset=offset,
    )
    return {"items": page.items, "total": page.total, "has_more": page.has_more}


@router.get("/{establishment_id}", response_model=EstablishmentOut)
async def get_my_establishment(
    establishment_id: str,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    return await service.get_own(establishment_id, actor)


@router.patch("/{establishment_id}", response_model=EstablishmentOut)
async def update_establishment(
    establishment_id: str,
    payload: EstablishmentUpdate,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    fields = payload.model_dump(exclude_unset=True)
    expected_updated_at = fields.pop("expected_updated_at", None)
    return await service.update_establishment(
        establishment_id, actor, fields, expected_updated_at=expected_updated_at
    )


@router.post("/{establishment_id}/submit", response_model=EstablishmentOut)
async def submit_establishment(
    establishment_id: str,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(get_current_actor),
):
    return await service.submit_for_moderation(establishment_id, actor)


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
