"""Filter composer: turns raw search options into an immutable predicate set."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Protocol, TypeVar
from zoneinfo import ZoneInfo

from restodir.core.config import settings
from restodir.core.errors import InvalidFilterValue
from restodir.domain import catalog
from restodir.domain.enums import Category, City, Cuisine, PriceRange
from restodir.domain.hours import is_open_at

E = TypeVar("E", bound=Enum)

_OPTION_ALIASES = {
    "categories": "categories",
    "cuisines": "cuisines",
    "price_range": "price_range",
    "priceRange": "price_range",
    "min_rating": "min_rating",
    "minRating": "min_rating",
    "open_now": "open_now",
    "openNow": "open_now",
    "city": "city",
}

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


class Filterable(Protocol):
    categories: list[str] | None
    cuisines: list[str] | None
    price_range: str | None
    average_rating: float | None
    city: str | None
    working_hours: dict | None
    special_hours: dict | None


@dataclass(frozen=True, slots=True)
class FilterPredicates:
    """Normalized filter set. Empty collections and ``None`` mean no restriction."""

    categories: frozenset[Category] = frozenset()
    cuisines: frozenset[Cuisine] = frozenset()
    price_range: PriceRange | None = None
    min_rating: float | None = None
    open_now: bool = False
    city: City | None = None

    def matches(self, record: Filterable, local_now: datetime | None = None) -> bool:
        # Enum members hash by name, so compare on raw values
        if self.categories and not _values(self.categories).intersection(record.categories or ()):
            return False
        if self.cuisines and not _values(self.cuisines).intersection(record.cuisines or ()):
            return False
        if self.price_range is not None and record.price_range != self.price_range.value:
            return False
        if self.min_rating is not None:
            if record.average_rating is None or record.average_rating < self.min_rating:
                return False
        if self.city is not None and record.city != self.city.value:
            return False
        if self.open_now:
            moment = local_now or discovery_now()
            if not is_open_at(moment, record.working_hours, record.special_hours):
                return False
        return True


NO_FILTERS = FilterPredicates()


def _values(members: frozenset[Enum]) -> set[str]:
    return {member.value for member in members}


def discovery_now(now: datetime | None = None) -> datetime:
    """Current time (or ``now``) expressed in the discovery timezone."""

    zone = ZoneInfo(settings.DISCOVERY_TIMEZONE)
    if now is None:
        return datetime.now(zone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(zone)


class FilterComposer:
    """Validates filter options against the recognized values.

    The recognized sets default to the configured allow-lists but can be passed
    explicitly, which keeps the composer free of I/O and easy to test.
    """

    def __init__(
        self,
        *,
        categories: Iterable[Category] | None = None,
        cuisines: Iterable[Cuisine] | None = None,
        cities: Iterable[City] | None = None,
    ) -> None:
        self.categories = frozenset(categories) if categories is not None else catalog.allowed_categories()
        self.cuisines = frozenset(cuisines) if cuisines is not None else catalog.allowed_cuisines()
        self.cities = frozenset(cities) if cities is not None else catalog.allowed_cities()

    def compose(self, options: Mapping[str, Any] | None = None) -> FilterPredicates:
        if not options:
            return NO_FILTERS

        normalized: dict[str, Any] = {}
        for name, value in options.items():
            key = _OPTION_ALIASES.get(name)
            if key is None:
                raise InvalidFilterValue(f"Unknown filter option '{name}'", field=name)
            if key in normalized:
                raise InvalidFilterValue(f"Filter option '{key}' given twice", field=key)
            normalized[key] = value

        return FilterPredicates(
            categories=self._members(Category, self.categories, normalized.get("categories"), "categories"),
            cuisines=self._members(Cuisine, self.cuisines, normalized.get("cuisines"), "cuisines"),
            price_range=self._single(PriceRange, frozenset(PriceRange), normalized.get("price_range"), "price_range"),
            min_rating=self._rating(normalized.get("min_rating")),
            open_now=self._flag(normalized.get("open_now")),
            city=self._single(City, self.cities, normalized.get("city"), "city"),
        )

    @staticmethod
    def _lookup(enum_cls: type[E], allowed: frozenset[E], raw: Any, field: str) -> E:
        try:
            member = raw if isinstance(raw, enum_cls) else enum_cls(raw)
        except ValueError:
            raise InvalidFilterValue(f"Unsupported {field} value '{raw}'", field=field) from None
        if member not in allowed:
            raise InvalidFilterValue(f"{field} value '{member.value}' is not enabled", field=field)
        return member

    def _members(self, enum_cls: type[E], allowed: frozenset[E], raw: Any, field: str) -> frozenset[E]:
        if raw is None:
            return frozenset()
        if isinstance(raw, (str, Enum)):
            raw = [raw]
        if not isinstance(raw, Iterable) or isinstance(raw, Mapping):
            raise InvalidFilterValue(f"{field} must be a list of values", field=field)
        return frozenset(self._lookup(enum_cls, allowed, item, field) for item in raw)

    def _single(self, enum_cls: type[E], allowed: frozenset[E], raw: Any, field: str) -> E | None:
        if raw is None or raw == "":
            return None
        return self._lookup(enum_cls, allowed, raw, field)

    @staticmethod
    def _rating(raw: Any) -> float | None:
        if raw is None or raw == "":
            return None
        if isinstance(raw, bool):
            raise InvalidFilterValue("min_rating must be a number", field="min_rating")
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise InvalidFilterValue("min_rating must be a number", field="min_rating") from None
        if math.isnan(value) or not 0.0 <= value <= 5.0:
            raise InvalidFilterValue("min_rating must be between 0 and 5", field="min_rating")
        return value

    @staticmethod
    def _flag(raw: Any) -> bool:
        if raw is None:
            return False
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        raise InvalidFilterValue("open_now must be a boolean", field="open_now")
