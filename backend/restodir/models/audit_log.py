from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from restodir.models.base import Base
from restodir.models.establishment import Timestamp, utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    # BigInteger on MySQL, INTEGER on sqlite so autoincrement works there too
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    created_at: Mapped[datetime] = mapped_column(Timestamp, nullable=False, default=utcnow)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    old_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    new_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
