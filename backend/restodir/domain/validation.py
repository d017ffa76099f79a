"""Field validation for establishment create/update payloads."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from restodir.core.config import settings
from restodir.core.errors import ValidationError
from restodir.domain import catalog
from restodir.domain.enums import PriceRange
from restodir.domain.hours import special_hours_error, working_hours_error

NAME_MAX = 255
DESCRIPTION_MAX = 2000
ADDRESS_MAX = 500
PHONE_MAX = 50
EMAIL_MAX = 255
WEBSITE_MAX = 500
CATEGORIES_RANGE = (1, 2)
CUISINES_RANGE = (1, 3)

REQUIRED_ON_CREATE = ("name", "city", "categories", "cuisines")

EDITABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "city",
        "address",
        "latitude",
        "longitude",
        "phone",
        "email",
        "website",
        "categories",
        "cuisines",
        "price_range",
        "working_hours",
        "special_hours",
        "attributes",
    }
)

# Fields owned by the lifecycle, moderation or aggregate recomputation
PROTECTED_FIELDS = frozenset(
    {
        "id",
        "partner_id",
        "status",
        "moderation_notes",
        "moderation_history",
        "moderated_by",
        "moderated_at",
        "view_count",
        "favorite_count",
        "review_count",
        "average_rating",
        "created_at",
        "updated_at",
        "published_at",
    }
)


def _text(field: str, max_len: int, *, required: bool = False) -> Callable[[Any], str | None]:
    def clean(value: Any) -> str | None:
        if value is None:
            if required:
                raise ValidationError(f"{field} is required", field=field)
            return None
        if not isinstance(value, str):
            raise ValidationError(f"{field} must be a string", field=field)
        value = value.strip()
        if not value:
            if required:
                raise ValidationError(f"{field} must not be empty", field=field)
            return None
        if len(value) > max_len:
            raise ValidationError(f"{field} must be at most {max_len} characters", field=field)
        return value

    return clean


def _enum_value(field: str, allowed: Iterable[Enum], raw: Any) -> str:
    values = {member.value for member in allowed}
    value = raw.value if isinstance(raw, Enum) else raw
    if not isinstance(value, str) or value not in values:
        raise ValidationError(f"Unsupported {field} value '{value}'", field=field)
    return value


def _ordered_set(field: str, allowed: Iterable[Enum], bounds: tuple[int, int]) -> Callable[[Any], list[str]]:
    low, high = bounds

    def clean(value: Any) -> list[str]:
        if value is None or isinstance(value, (str, Mapping)) or not isinstance(value, Iterable):
            raise ValidationError(f"{field} must be a list", field=field)
        items = [_enum_value(field, allowed, item) for item in value]
        if len(set(items)) != len(items):
            raise ValidationError(f"{field} must not contain duplicates", field=field)
        if not low <= len(items) <= high:
            raise ValidationError(f"{field} must contain between {low} and {high} items", field=field)
        return items

    return clean


def _coordinate(field: str) -> Callable[[Any], float | None]:
    def clean(value: Any) -> float | None:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{field} must be a number", field=field)
        value = float(value)
        if not math.isfinite(value):
            raise ValidationError(f"{field} must be finite", field=field)
        return value

    return clean


def _city(value: Any) -> str:
    if value is None:
        raise ValidationError("city is required", field="city")
    return _enum_value("city", catalog.allowed_cities(), value)


def _price_range(value: Any) -> str | None:
    if value is None:
        return None
    return _enum_value("price_range", PriceRange, value)


def _email(value: Any) -> str | None:
    value = _text("email", EMAIL_MAX)(value)
    if value is not None and ("@" not in value or value.startswith("@") or value.endswith("@")):
        raise ValidationError("email is not a valid address", field="email")
    return value


def _working_hours(value: Any) -> dict:
    if value is None:
        return {}
    problem = working_hours_error(value)
    if problem:
        raise ValidationError(problem, field="working_hours")
    return {day: dict(entry) for day, entry in value.items()}


def _special_hours(value: Any) -> dict | None:
    if value is None:
        return None
    problem = special_hours_error(value)
    if problem:
        raise ValidationError(problem, field="special_hours")
    return {day: dict(entry) for day, entry in value.items()} or None


def _attributes(value: Any) -> dict[str, bool]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("attributes must be an object", field="attributes")
    for key, flag in value.items():
        if not isinstance(key, str) or not isinstance(flag, bool):
            raise ValidationError("attributes must map names to booleans", field="attributes")
    return dict(value)


def _cleaners() -> dict[str, Callable[[Any], Any]]:
    # Built per call so allow-list changes in settings are picked up
    return {
        "name": _text("name", NAME_MAX, required=True),
        "description": _text("description", DESCRIPTION_MAX),
        "city": _city,
        "address": _text("address", ADDRESS_MAX),
        "latitude": _coordinate("latitude"),
        "longitude": _coordinate("longitude"),
        "phone": _text("phone", PHONE_MAX),
        "email": _email,
        "website": _text("website", WEBSITE_MAX),
        "categories": _ordered_set("categories", catalog.allowed_categories(), CATEGORIES_RANGE),
        "cuisines": _ordered_set("cuisines", catalog.allowed_cuisines(), CUISINES_RANGE),
        "price_range": _price_range,
        "working_hours": _working_hours,
        "special_hours": _special_hours,
        "attributes": _attributes,
    }


def clean_fields(fields: Mapping[str, Any], *, partial: bool) -> dict[str, Any]:
    """Validate and normalize establishment fields.

    With ``partial=False`` the create-time required fields must be present. Only
    fields present in ``fields`` are checked and returned.
    """

    protected = sorted(PROTECTED_FIELDS.intersection(fields))
    if protected:
        raise ValidationError(f"Fields {protected} cannot be set directly", field=protected[0])
    unknown = sorted(set(fields) - EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown fields {unknown}", field=unknown[0])
    if not partial:
        missing = [name for name in REQUIRED_ON_CREATE if fields.get(name) is None]
        if missing:
            raise ValidationError(f"Missing required fields {missing}", field=missing[0])

    cleaners = _cleaners()
    return {name: cleaners[name](value) for name, value in fields.items()}


def in_region(latitude: float, longitude: float) -> bool:
    return (
        settings.REGION_LAT_MIN <= latitude <= settings.REGION_LAT_MAX
        and settings.REGION_LON_MIN <= longitude <= settings.REGION_LON_MAX
    )


def check_location(city: str | None, latitude: float | None, longitude: float | None) -> None:
    """Cross-field checks on the effective location of a record."""

    if (latitude is None) != (longitude is None):
        raise ValidationError("latitude and longitude must be provided together", field="latitude")
    if latitude is None or longitude is None:
        return
    if not in_region(latitude, longitude):
        raise ValidationError(
            f"Coordinates ({latitude}, {longitude}) are outside the served region",
            field="latitude",
        )
    bounds = settings.CITY_BOUNDS.get(city) if city else None
    if bounds:
        lat_min, lat_max, lon_min, lon_max = bounds
        if not (lat_min <= latitude <= lat_max and lon_min <= longitude <= lon_max):
            raise ValidationError(
                f"Coordinates ({latitude}, {longitude}) are not within {city}",
                field="latitude",
            )


def missing_for_submission(record: Any) -> list[str]:
    """Names of fields that must be filled before a listing can enter moderation."""

    missing = []
    for name in ("name", "city", "address"):
        if not getattr(record, name, None):
            missing.append(name)
    latitude, longitude = record.latitude, record.longitude
    if latitude is None or longitude is None or not in_region(latitude, longitude):
        missing.append("coordinates")
    if not record.categories:
        missing.append("categories")
    if not record.cuisines:
        missing.append("cuisines")
    if not record.working_hours:
        missing.append("working_hours")
    return missing


def check_pagination(
    limit: int | None, offset: int | None, *, default: int, maximum: int
) -> tuple[int, int]:
    """Apply the default limit and reject out-of-range paging values."""

    if limit is None:
        limit = default
    if offset is None:
        offset = 0
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= maximum:
        raise ValidationError(f"limit must be between 1 and {maximum}", field="limit")
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise ValidationError("offset must be zero or greater", field="offset")
    return limit, offset
