"""Closed enumerations for establishment classification and moderation."""

from __future__ import annotations

from enum import Enum


class EstablishmentStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class LifecycleAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    SUSPEND = "suspend"
    UNSUSPEND = "unsuspend"
    ARCHIVE = "archive"


class ActorRole(str, Enum):
    USER = "user"
    PARTNER = "partner"
    MODERATOR = "moderator"
    ADMIN = "admin"


MODERATOR_ROLES = frozenset({ActorRole.MODERATOR, ActorRole.ADMIN})


class City(str, Enum):
    MINSK = "Минск"
    GRODNO = "Гродно"
    BREST = "Брест"
    GOMEL = "Гомель"
    VITEBSK = "Витебск"
    MOGILEV = "Могилев"
    BOBRUISK = "Бобруйск"


class Category(str, Enum):
    RESTAURANT = "Ресторан"
    COFFEE_SHOP = "Кофейня"
    FAST_FOOD = "Фаст-фуд"
    BAR = "Бар"
    CONFECTIONERY = "Кондитерская"
    PIZZERIA = "Пиццерия"
    BAKERY = "Пекарня"
    PUB = "Паб"
    CANTEEN = "Столовая"
    HOOKAH = "Кальян"
    BOWLING = "Боулинг"
    KARAOKE = "Караоке"
    BILLIARDS = "Бильярд"


class Cuisine(str, Enum):
    NATIONAL = "Народная"
    AUTHOR = "Авторская"
    ASIAN = "Азиатская"
    AMERICAN = "Американская"
    VEGETARIAN = "Вегетарианская"
    JAPANESE = "Японская"
    GEORGIAN = "Грузинская"
    ITALIAN = "Итальянская"
    MIXED = "Смешанная"
    CONTINENTAL = "Континентальная"
    EUROPEAN = "Европейская"


class PriceRange(str, Enum):
    BUDGET = "$"
    MEDIUM = "$$"
    EXPENSIVE = "$$$"


WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)
