from typing import List, Optional

from pydantic import BaseModel

from restodir.schemas.establishment import PublicEstablishmentOut
from restodir.services.discovery import SearchPage


class SearchHitOut(PublicEstablishmentOut):
    distance_km: Optional[float] = None


class SearchPageOut(BaseModel):
    items: List[SearchHitOut]
    total: int
    has_more: bool
    limit: int
    offset: int

    @classmethod
    def from_page(cls, page: SearchPage) -> "SearchPageOut":
        items = [
            SearchHitOut.model_validate(hit.establishment).model_copy(
                update={"distance_km": hit.distance_km}
            )
            for hit in page.items
        ]
        return cls(
            items=items,
            total=page.total,
            has_more=page.has_more,
            limit=page.limit,
            offset=page.offset,
        )
