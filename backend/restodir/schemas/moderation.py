from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


class ModerateRequest(BaseModel):
    action: Literal["approve", "reject"]
    notes: Dict[str, Optional[str]] = Field(default_factory=dict)


class CoordinatesUpdate(BaseModel):
    latitude: float
    longitude: float
