"""SQLAlchemy ORM models for tms_sync."""

from tms_sync.models.base import Base
from tms_sync.models.translation import Translation

__all__ = [
    "Base",
    "Translation",
]
