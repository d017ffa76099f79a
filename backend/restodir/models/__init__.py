"""ORM model exports for convenient imports elsewhere in the app."""

from restodir.models.base import Base
from restodir.models.audit_log import AuditLog
from restodir.models.establishment import Establishment

__all__ = [
    "Base",
    "AuditLog",
    "Establishment",
]
