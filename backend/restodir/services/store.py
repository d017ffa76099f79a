"""Persistence access for establishments.

The store executes statements on the caller's session and never commits;
transaction boundaries belong to the lifecycle service.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from restodir.core.errors import NotFound, StaleState
from restodir.domain.enums import EstablishmentStatus
from restodir.domain.geo import BoundingBox
from restodir.models.establishment import Establishment, utcnow


@dataclass
class Page:
    items: list[Establishment]
    total: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


class EstablishmentStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, establishment_id: str) -> Optional[Establishment]:
        stmt = (
            select(Establishment)
            .where(Establishment.id == establishment_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def require(self, establishment_id: str) -> Establishment:
        record = await self.get(establishment_id)
        if record is None:
            raise NotFound(establishment_id)
        return record

    async def insert(self, partner_id: str, values: dict[str, Any]) -> Establishment:
        now = utcnow()
        record = Establishment(
            partner_id=partner_id,
            status=EstablishmentStatus.DRAFT.value,
            created_at=now,
            updated_at=now,
            **values,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def name_taken(
        self, partner_id: str, name: str, *, exclude_id: Optional[str] = None
    ) -> bool:
        """Case-insensitive check against the partner's non-archived listings."""

        stmt = select(Establishment.id, Establishment.name).where(
            Establishment.partner_id == partner_id,
            Establishment.status != EstablishmentStatus.ARCHIVED.value,
        )
        # casefold in Python: sqlite's lower() ignores non-ASCII letters
        wanted = name.casefold()
        for row_id, row_name in (await self.session.execute(stmt)).all():
            if row_id != exclude_id and row_name.casefold() == wanted:
                return True
        return False

    async def compare_and_set(
        self,
        establishment_id: str,
        expected_status: EstablishmentStatus,
        values: dict[str, Any],
        *,
        partner_id: Optional[str] = None,
        expected_updated_at: Optional[datetime] = None,
    ) -> Establishment:
        """Apply ``values`` only if the row still has ``expected_status``.

        Everything happens in one UPDATE statement; zero affected rows raises
        ``StaleState``. ``partner_id`` and ``expected_updated_at`` narrow the
        guard further when given.
        """

        conds = [
            Establishment.id == establishment_id,
            Establishment.status == expected_status.value,
        ]
        if partner_id is not None:
            conds.append(Establishment.partner_id == partner_id)
        if expected_updated_at is not None:
            conds.append(Establishment.updated_at == expected_updated_at)

        stmt = (
            update(Establishment)
            .where(and_(*conds))
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise StaleState(establishment_id, expected_status.value)
        return await self.require(establishment_id)

    async def active_candidates(
        self,
        boxes: Optional[Sequence[BoundingBox]] = None,
        *,
        city: Optional[str] = None,
        price_range: Optional[str] = None,
    ) -> list[Establishment]:
        """Active listings, narrowed by bounding boxes and cheap scalar filters.

        Boxes imply that coordinates are required; without boxes every active
        listing is returned, located or not.
        """

        stmt = select(Establishment).where(
            Establishment.status == EstablishmentStatus.ACTIVE.value
        )
        if boxes is not None:
            stmt = stmt.where(
                Establishment.latitude.is_not(None),
                Establishment.longitude.is_not(None),
                or_(
                    *[
                        and_(
                            Establishment.latitude.between(box.min_lat, box.max_lat),
                            Establishment.longitude.between(box.min_lon, box.max_lon),
                        )
                        for box in boxes
                    ]
                ),
            )
        if city is not None:
            stmt = stmt.where(Establishment.city == city)
        if price_range is not None:
            stmt = stmt.where(Establishment.price_range == price_range)
        return list((await self.session.execute(stmt)).scalars().all())

    async def _page(self, stmt, order_by, limit: int, offset: int) -> Page:
        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.session.execute(count_stmt)).scalar_one()
        rows = (
            await self.session.execute(stmt.order_by(*order_by).limit(limit).offset(offset))
        ).scalars().all()
        return Page(items=list(rows), total=int(total), offset=offset)

    async def list_by_partner(
        self,
        partner_id: str,
        *,
        status: Optional[EstablishmentStatus] = None,
        include_archived: bool = False,
        limit: int,
        offset: int,
    ) -> Page:
        stmt = select(Establishment).where(Establishment.partner_id == partner_id)
        if status is not None:
            stmt = stmt.where(Establishment.status == status.value)
        elif not include_archived:
            stmt = stmt.where(Establishment.status != EstablishmentStatus.ARCHIVED.value)
        return await self._page(
            stmt, (Establishment.created_at.desc(), Establishment.id), limit, offset
        )

    async def list_by_status(
        self, status: EstablishmentStatus, *, limit: int, offset: int
    ) -> Page:
        stmt = select(Establishment).where(Establishment.status == status.value)
        if status == EstablishmentStatus.PENDING:
            # FIFO review queue
            order_by = (Establishment.updated_at.asc(), Establishment.id)
        else:
            order_by = (Establishment.updated_at.desc(), Establishment.id)
        return await self._page(stmt, order_by, limit, offset)

    async def search_by_name(
        self,
        term: str,
        *,
        status: Optional[EstablishmentStatus] = None,
        city: Optional[str] = None,
        limit: int,
        offset: int,
    ) -> Page:
        stmt = select(Establishment).where(Establishment.name.ilike(f"%{term}%"))
        if status is not None:
            stmt = stmt.where(Establishment.status == status.value)
        if city is not None:
            stmt = stmt.where(Establishment.city == city)
        return await self._page(
            stmt, (Establishment.name, Establishment.id), limit, offset
        )
