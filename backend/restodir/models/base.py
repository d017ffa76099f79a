"""Shared declarative base for all ORM models.

Keeping one ``Base`` means ``Base.metadata`` describes the whole schema, which
``scripts/init_db.py`` and the test fixtures rely on to create tables.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass
