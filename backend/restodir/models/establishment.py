"""Establishment ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import Mapped, mapped_column

from restodir.models.base import Base

# Microsecond precision keeps ``updated_at`` usable as an optimistic-lock token on MySQL
Timestamp = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every datetime column."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class Establishment(Base):
    """Represents a partner-owned listing (``establishments``)."""

    __tablename__ = "establishments"
    __table_args__ = (
        Index("ix_establishments_status_lat_lon", "status", "latitude", "longitude"),
        Index("ix_establishments_partner_status", "partner_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    partner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    city: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500))
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    website: Mapped[Optional[str]] = mapped_column(String(500))

    categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    cuisines: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    price_range: Mapped[Optional[str]] = mapped_column(String(8))
    working_hours: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    special_hours: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    attributes: Mapped[dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="draft", server_default=text("'draft'")
    )
    moderation_notes: Mapped[Optional[dict[str, str]]] = mapped_column(JSON)
    moderation_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    moderated_by: Mapped[Optional[str]] = mapped_column(String(64))
    moderated_at: Mapped[Optional[datetime]] = mapped_column(Timestamp)

    # Maintained by the review/favorite subsystems; read-only here
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    favorite_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_rating: Mapped[Optional[float]] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(Timestamp, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(Timestamp, nullable=False, default=utcnow)
    published_at: Mapped[Optional[datetime]] = mapped_column(Timestamp)
