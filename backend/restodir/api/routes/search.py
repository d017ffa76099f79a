from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Request

from restodir.core.config import settings
from restodir.core.deps import get_discovery_engine
from restodir.core.rate_limit import limiter
from restodir.schemas.establishment import PublicEstablishmentOut
from restodir.schemas.search import SearchPageOut
from restodir.services.discovery import DiscoveryEngine

router = APIRouter(prefix="/search", tags=["search"])


class FilterParams:
    """Raw filter query parameters, validated by the filter composer."""

    def __init__(
        self,
        categories: Optional[List[str]] = Query(None),
        cuisines: Optional[List[str]] = Query(None),
        price_range: Optional[str] = None,
        min_rating: Optional[str] = None,
        open_now: Optional[str] = None,
        city: Optional[str] = None,
    ) -> None:
        raw = {
            "categories": categories,
            "cuisines": cuisines,
            "price_range": price_range,
            "min_rating": min_rating,
            "open_now": open_now,
            "city": city,
        }
        self.options: dict[str, Any] = {key: value for key, value in raw.items() if value is not None}


@router.get("/radius", response_model=SearchPageOut)
@limiter.limit(settings.SEARCH_RATE)
async def search_radius(
    request: Request,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius_km: Optional[float] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    filters: FilterParams = Depends(),
    engine: DiscoveryEngine = Depends(get_discovery_engine),
):
    page = await engine.search_by_radius(
        latitude, longitude, radius_km, filters.options, limit=limit, offset=offset
    )
    return SearchPageOut.from_page(page)


@router.get("/bounds", response_model=SearchPageOut)
@limiter.limit(settings.SEARCH_RATE)
async def search_bounds(
    request: Request,
    min_lat: Optional[float] = None,
    max_lat: Optional[float] = None,
    min_lon: Optional[float] = None,
    max_lon: Optional[float] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    filters: FilterParams = Depends(),
    engine: DiscoveryEngine = Depends(get_discovery_engine),
):
    page = await engine.search_by_bounds(
        min_lat, max_lat, min_lon, max_lon, filters.options, limit=limit, offset=offset
    )
    return SearchPageOut.from_page(page)


@router.get("/browse", response_model=SearchPageOut)
@limiter.limit(settings.SEARCH_RATE)
async def browse(
    request: Request,
    limit: Optional[int] = None,
    offset: int = 0,
    filters: FilterParams = Depends(),
    engine: DiscoveryEngine = Depends(get_discovery_engine),
):
    page = await engine.browse(filters.options, limit=limit, offset=offset)
    return SearchPageOut.from_page(page)


@router.get("/establishments/{establishment_id}", response_model=PublicEstablishmentOut)
@limiter.limit(settings.SEARCH_RATE)
async def get_establishment(
    request: Request,
    establishment_id: str,
    engine: DiscoveryEngine = Depends(get_discovery_engine),
):
    return await engine.get_public(establishment_id)
