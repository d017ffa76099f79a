"""Discovery engine: radius, bounding-box and location-less search over active listings.

The store narrows candidates in SQL (active status plus an enclosing box); the
filter predicates, exact distance, ordering and pagination are applied here over
that one candidate list, so ``total`` and ``has_more`` always agree with the page.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from restodir.core.config import settings
from restodir.core.errors import InvalidBounds, InvalidCoordinates, InvalidRadius, NotFound
from restodir.domain.enums import EstablishmentStatus
from restodir.domain.filters import FilterComposer, FilterPredicates, discovery_now
from restodir.domain.geo import (
    BoundingBox,
    haversine_km,
    is_valid_latitude,
    is_valid_longitude,
    radius_bounding_boxes,
)
from restodir.domain.validation import check_pagination, in_region
from restodir.models.establishment import Establishment
from restodir.services.store import EstablishmentStore

Filters = Union[FilterPredicates, Mapping[str, Any], None]


@dataclass(frozen=True)
class SearchHit:
    establishment: Establishment
    distance_km: Optional[float] = None


@dataclass(frozen=True)
class SearchPage:
    items: list[SearchHit]
    total: int
    has_more: bool
    limit: int
    offset: int


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def _by_rating(hits: list[SearchHit], tiebreak: Callable[[list[SearchHit]], None]) -> None:
    """Rating descending with unrated last, then review count descending.

    ``tiebreak`` sorts the innermost keys first; Python's stable sort keeps them.
    """

    tiebreak(hits)
    hits.sort(key=lambda hit: hit.establishment.review_count or 0, reverse=True)
    hits.sort(
        key=lambda hit: (
            hit.establishment.average_rating is None,
            -(hit.establishment.average_rating or 0.0),
        )
    )


def _newest_then_id(hits: list[SearchHit]) -> None:
    hits.sort(key=lambda hit: hit.establishment.id)
    hits.sort(key=lambda hit: hit.establishment.created_at, reverse=True)


def _name_then_id(hits: list[SearchHit]) -> None:
    hits.sort(key=lambda hit: (hit.establishment.name.casefold(), hit.establishment.id))


class DiscoveryEngine:
    """Read-only search over ``active`` establishments.

    ``clock`` returns the current time for the open-now filter; tests inject a
    fixed one.
    """

    def __init__(
        self,
        session: AsyncSession,
        composer: Optional[FilterComposer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = EstablishmentStore(session)
        self.composer = composer or FilterComposer()
        self.clock = clock

    def _predicates(self, filters: Filters) -> FilterPredicates:
        if isinstance(filters, FilterPredicates):
            return filters
        return self.composer.compose(filters)

    async def _candidates(
        self, predicates: FilterPredicates, boxes: Optional[tuple[BoundingBox, ...]]
    ) -> list[Establishment]:
        rows = await self.store.active_candidates(
            boxes,
            city=predicates.city.value if predicates.city else None,
            price_range=predicates.price_range.value if predicates.price_range else None,
        )
        local_now = discovery_now(self.clock() if self.clock else None)
        return [row for row in rows if predicates.matches(row, local_now)]

    @staticmethod
    def _paginate(hits: list[SearchHit], limit: int, offset: int) -> SearchPage:
        page = hits[offset : offset + limit]
        return SearchPage(
            items=page,
            total=len(hits),
            has_more=offset + len(page) < len(hits),
            limit=limit,
            offset=offset,
        )

    async def search_by_radius(
        self,
        latitude: Any,
        longitude: Any,
        radius_km: Any,
        filters: Filters = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> SearchPage:
        lat, lon = _number(latitude), _number(longitude)
        if lat is None or lon is None or not in_region(lat, lon):
            raise InvalidCoordinates(
                f"Coordinates ({latitude}, {longitude}) are missing or outside the served region",
                field="latitude",
            )
        radius = _number(radius_km)
        if radius is None or not 0 < radius <= settings.SEARCH_MAX_RADIUS_KM:
            raise InvalidRadius(
                f"radius_km must be greater than 0 and at most {settings.SEARCH_MAX_RADIUS_KM:g}",
                field="radius_km",
            )
        limit, offset = check_pagination(
            limit, offset, default=settings.SEARCH_DEFAULT_LIMIT, maximum=settings.SEARCH_MAX_LIMIT
        )
        predicates = self._predicates(filters)

        hits = []
        for row in await self._candidates(predicates, radius_bounding_boxes(lat, lon, radius)):
            distance = haversine_km(lat, lon, row.latitude, row.longitude)
            # cutoff compares full precision; rounding is for display only
            if distance <= radius:
                hits.append((distance, row))

        hits.sort(key=lambda pair: pair[1].id)
        hits.sort(key=lambda pair: pair[1].created_at, reverse=True)
        hits.sort(key=lambda pair: pair[0])
        result = self._paginate(
            [SearchHit(row, round(distance, 3)) for distance, row in hits], limit, offset
        )
        logger.bind(
            mode="radius", radius_km=radius, total=result.total, returned=len(result.items)
        ).debug("discovery_search")
        return result

    async def search_by_bounds(
        self,
        min_lat: Any,
        max_lat: Any,
        min_lon: Any,
        max_lon: Any,
        filters: Filters = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> SearchPage:
        box = self._bounds(min_lat, max_lat, min_lon, max_lon)
        limit, offset = check_pagination(
            limit, offset, default=settings.BOUNDS_DEFAULT_LIMIT, maximum=settings.BOUNDS_MAX_LIMIT
        )
        predicates = self._predicates(filters)

        hits = [
            SearchHit(row)
            for row in await self._candidates(predicates, (box,))
            if box.contains(row.latitude, row.longitude)
        ]
        _by_rating(hits, _newest_then_id)
        result = self._paginate(hits, limit, offset)
        logger.bind(mode="bounds", total=result.total, returned=len(result.items)).debug(
            "discovery_search"
        )
        return result

    async def browse(
        self,
        filters: Filters = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> SearchPage:
        limit, offset = check_pagination(
            limit, offset, default=settings.SEARCH_DEFAULT_LIMIT, maximum=settings.SEARCH_MAX_LIMIT
        )
        predicates = self._predicates(filters)
        hits = [SearchHit(row) for row in await self._candidates(predicates, None)]
        _by_rating(hits, _name_then_id)
        return self._paginate(hits, limit, offset)

    async def get_public(self, establishment_id: str) -> Establishment:
        record = await self.store.get(establishment_id)
        if record is None or record.status != EstablishmentStatus.ACTIVE.value:
            raise NotFound(establishment_id)
        return record

    @staticmethod
    def _bounds(min_lat: Any, max_lat: Any, min_lon: Any, max_lon: Any) -> BoundingBox:
        values = [_number(v) for v in (min_lat, max_lat, min_lon, max_lon)]
        if any(v is None for v in values):
            raise InvalidBounds("All four bounds are required and must be finite numbers")
        lo_lat, hi_lat, lo_lon, hi_lon = values
        if not (is_valid_latitude(lo_lat) and is_valid_latitude(hi_lat)):
            raise InvalidBounds("Latitude bounds must be within [-90, 90]", field="min_lat")
        if not (is_valid_longitude(lo_lon) and is_valid_longitude(hi_lon)):
            raise InvalidBounds("Longitude bounds must be within [-180, 180]", field="min_lon")
        if lo_lat > hi_lat:
            raise InvalidBounds("min_lat must not exceed max_lat", field="min_lat")
        if lo_lon > hi_lon:
            raise InvalidBounds("min_lon must not exceed max_lon", field="min_lon")
        return BoundingBox(lo_lat, hi_lat, lo_lon, hi_lon)
