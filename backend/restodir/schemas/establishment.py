from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, computed_field

from restodir.domain.enums import EstablishmentStatus
from restodir.domain.lifecycle import allowed_actions


class EstablishmentFields(BaseModel):
    # Unknown keys (status, partner_id, ...) are rejected rather than ignored
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    price_range: Optional[str] = None
    working_hours: Optional[Dict[str, Dict[str, Any]]] = None
    special_hours: Optional[Dict[str, Dict[str, Any]]] = None
    attributes: Optional[Dict[str, bool]] = None


class EstablishmentCreate(EstablishmentFields):
    name: str
    city: str
    categories: List[str]
    cuisines: List[str]


class EstablishmentUpdate(EstablishmentFields):
    expected_updated_at: Optional[datetime] = None
    name: Optional[str] = None
    city: Optional[str] = None
    categories: Optional[List[str]] = None
    cuisines: Optional[List[str]] = None


class SuspendRequest(BaseModel):
    reason: str


class PublicEstablishmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    city: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    categories: List[str]
    cuisines: List[str]
    price_range: Optional[str] = None
    working_hours: Dict[str, Any]
    special_hours: Optional[Dict[str, Any]] = None
    attributes: Dict[str, bool]
    view_count: int
    favorite_count: int
    review_count: int
    average_rating: Optional[float] = None
    published_at: Optional[datetime] = None


class EstablishmentOut(PublicEstablishmentOut):
    partner_id: str
    status: str
    moderation_notes: Optional[Dict[str, str]] = None
    moderation_history: List[Dict[str, Any]]
    moderated_by: Optional[str] = None
    moderated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def allowed_actions(self) -> List[str]:
        """Lifecycle actions the transition table offers from the current status."""

        return [action.value for action in allowed_actions(EstablishmentStatus(self.status))]


class EstablishmentListOut(BaseModel):
    items: List[EstablishmentOut]
    total: int
    has_more: bool
