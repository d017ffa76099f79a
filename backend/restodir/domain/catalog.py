"""Recognized classification values: closed enums narrowed by configured allow-lists."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, TypeVar

from restodir.core.config import settings
from restodir.domain.enums import Category, City, Cuisine

E = TypeVar("E", bound=Enum)


def narrow(enum_cls: type[E], allow_list: Iterable[str]) -> frozenset[E]:
    """Enum members whose value appears in ``allow_list``; every member if the list is empty."""

    wanted = set(allow_list)
    if not wanted:
        return frozenset(enum_cls)
    return frozenset(member for member in enum_cls if member.value in wanted)


def allowed_categories() -> frozenset[Category]:
    return narrow(Category, settings.ALLOWED_CATEGORIES)


def allowed_cuisines() -> frozenset[Cuisine]:
    return narrow(Cuisine, settings.ALLOWED_CUISINES)


def allowed_cities() -> frozenset[City]:
    return narrow(City, settings.ALLOWED_CITIES)
