from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class EntityType(str, Enum):
    LOCATION = 'location'
    AREA = 'area'
    SECTION = 'section'
    ITEM = 'item'


class ItemCondition(str, Enum):
    NEW = 'new'
    GOOD = 'good'
    FAIR = 'fair'
    POOR = 'poor'


class RestoreMode(str, Enum):
    REPLACE = 'replace'
    MERGE = 'merge'


class AssignmentOutcome(str, Enum):
    ASSIGNED = 'ASSIGNED'
    ALREADY_ASSIGNED = 'ALREADY_ASSIGNED'
    NOT_IN_POOL = 'NOT_IN_POOL'


class StoredBlob(Base):
    __tablename__ = 'stored_blobs'

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
