"""Key-value translation storage model."""

from __future__ import annotations

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tms_sync.models.base import Base


class Translation(Base):
    """One attribute of one record in one non-default locale.

    Default-locale values live on the record's own table. Timestamps are
    unix seconds, the same scale as revision keys.
    """

    __tablename__ = "translations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    translatable_type: Mapped[str] = mapped_column(String, nullable=False)
    translatable_id: Mapped[str] = mapped_column(String, nullable=False)
    key: Mapped[str] = mapped_column(String, nullable=False)
    locale: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("translatable_type", "translatable_id", "key", "locale"),
        Index("idx_translations_lookup", "translatable_type", "key", "locale"),
    )
