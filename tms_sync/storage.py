"""Storage collaborator: reading records and writing translated attributes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import String, cast, select

from tms_sync.exceptions import EntityNotFoundError
from tms_sync.models.translation import Translation
from tms_sync.services.datetime_service import now_revision
from tms_sync.services.file_identity import EntityRef
from tms_sync.services.write_hooks import WriteTarget

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from tms_sync.registry import ModelRegistry, TranslatableModel
    from tms_sync.services.write_hooks import WriteInterceptor

logger = logging.getLogger(__name__)


@dataclass
class EntitySnapshot:
    """Current default-locale state of a record's translatable attributes."""

    ref: EntityRef
    revision: int | None
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class DuplicateTranslation:
    """An existing translation of an identical source value."""

    locale: str
    value: str | None
    updated_at: int
    entity_id: str


@runtime_checkable
class TranslationStore(Protocol):
    """Operations the engines need from application storage. All may raise."""

    async def load_entity(
        self, entity_type: str, entity_id: str, attributes: Iterable[str] | None = None
    ) -> EntitySnapshot | None:
        """Load a record's revision and default-locale attribute values."""
        ...

    async def read_attribute(self, entity_type: str, entity_id: str, attribute: str) -> Any:
        """Current default-locale value of one attribute."""
        ...

    async def apply_translations(
        self, entity_type: str, entity_id: str, locale: str, values: Mapping[str, Any]
    ) -> None:
        """Write attribute values for a record under a locale."""
        ...

    async def find_duplicate_translations(
        self,
        entity_type: str,
        attribute: str,
        value: Any,
        *,
        exclude_id: str | None = None,
        not_before: int | None = None,
    ) -> dict[str, DuplicateTranslation]:
        """Newest translation per locale of other records whose attribute equals ``value``."""
        ...


class SqlTranslationStore:
    """Key-value translation storage on SQLAlchemy.

    Default-locale values are read from and written to the registered model's
    own columns; other locales go to the ``translations`` table. Every write
    passes through the write interceptor, when one is configured.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ModelRegistry,
        is_default_locale: Callable[[str], bool],
        interceptor: WriteInterceptor | None = None,
        clock: Callable[[], int] = now_revision,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._is_default_locale = is_default_locale
        self._interceptor = interceptor
        self._clock = clock

    async def _get_instance(
        self, session: AsyncSession, entry: TranslatableModel, entity_id: str
    ) -> Any:
        instance = await session.get(entry.model, entry.coerce_id(entity_id))
        if instance is None:
            raise EntityNotFoundError(entry.entity_type, entity_id)
        return instance

    async def _translation_rows(
        self,
        session: AsyncSession,
        entity_type: str,
        entity_id: str,
        locale: str,
        keys: Iterable[str],
    ) -> dict[str, Translation]:
        stmt = select(Translation).where(
            Translation.translatable_type == entity_type,
            Translation.translatable_id == entity_id,
            Translation.locale == locale,
            Translation.key.in_(list(keys)),
        )
        result = await session.execute(stmt)
        return {row.key: row for row in result.scalars().all()}

    async def load_entity(
        self, entity_type: str, entity_id: str, attributes: Iterable[str] | None = None
    ) -> EntitySnapshot | None:
        entry = self._registry.get(entity_type)
        names = list(attributes) if attributes is not None else list(entry.attributes)
        async with self._session_factory() as session:
            instance = await session.get(entry.model, entry.coerce_id(str(entity_id)))
            if instance is None:
                return None
            return EntitySnapshot(
                ref=EntityRef(entity_type, str(entity_id)),
                revision=entry.revision_of(instance),
                attributes={name: getattr(instance, name, None) for name in names},
            )

    async def read_attribute(self, entity_type: str, entity_id: str, attribute: str) -> Any:
        entry = self._registry.get(entity_type)
        async with self._session_factory() as session:
            instance = await self._get_instance(session, entry, str(entity_id))
            return getattr(instance, attribute)

    async def read_translation(
        self, entity_type: str, entity_id: str, attribute: str, locale: str
    ) -> str | None:
        """Value of one attribute in a locale, falling back to nothing."""
        if self._is_default_locale(locale):
            return await self.read_attribute(entity_type, entity_id, attribute)
        async with self._session_factory() as session:
            rows = await self._translation_rows(
                session, entity_type, str(entity_id), locale, [attribute]
            )
        row = rows.get(attribute)
        return row.value if row is not None else None

    async def apply_translations(
        self, entity_type: str, entity_id: str, locale: str, values: Mapping[str, Any]
    ) -> None:
        entry = self._registry.get(entity_type)
        unknown = sorted(set(values) - set(entry.attributes))
        if unknown:
            msg = f"{entity_type} has no translatable attributes {unknown}"
            raise ValueError(msg)

        entity_id = str(entity_id)
        pending: dict[tuple[int, str | None], Callable[[], Awaitable[None]]] = {}
        async with self._session_factory() as session:
            instance = await self._get_instance(session, entry, entity_id)
            target = WriteTarget(model=entry, instance=instance)

            if self._is_default_locale(locale):
                for attribute, value in values.items():
                    old_value = getattr(instance, attribute, None)
                    if self._interceptor is not None:
                        self._interceptor.before_write(
                            target, locale, attribute, old_value, value, pending
                        )
                    setattr(instance, attribute, value)
            else:
                now = self._clock()
                rows = await self._translation_rows(
                    session, entity_type, entity_id, locale, values.keys()
                )
                for attribute, value in values.items():
                    row = rows.get(attribute)
                    old_value = row.value if row is not None else None
                    if self._interceptor is not None:
                        self._interceptor.before_write(
                            target, locale, attribute, old_value, value, pending
                        )
                    if row is None:
                        session.add(
                            Translation(
                                translatable_type=entity_type,
                                translatable_id=entity_id,
                                key=attribute,
                                locale=locale,
                                value=value,
                                created_at=now,
                                updated_at=now,
                            )
                        )
                    else:
                        row.value = value
                        row.updated_at = now
            await session.commit()

        if self._interceptor is not None and pending:
            await self._interceptor.run_deferred(pending)

    async def find_duplicate_translations(
        self,
        entity_type: str,
        attribute: str,
        value: Any,
        *,
        exclude_id: str | None = None,
        not_before: int | None = None,
    ) -> dict[str, DuplicateTranslation]:
        entry = self._registry.get(entity_type)
        model = entry.model
        model_id = getattr(model, entry.id_attribute)
        stmt = (
            select(Translation)
            .join(model, Translation.translatable_id == cast(model_id, String))
            .where(
                Translation.translatable_type == entity_type,
                Translation.key == attribute,
                getattr(model, attribute) == value,
            )
            .order_by(Translation.locale, Translation.updated_at.desc(), Translation.id.desc())
        )
        if exclude_id is not None:
            stmt = stmt.where(Translation.translatable_id != str(exclude_id))
        if not_before is not None:
            stmt = stmt.where(Translation.updated_at >= not_before)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        duplicates: dict[str, DuplicateTranslation] = {}
        for row in rows:
            # Ordered newest first within each locale
            if row.locale in duplicates:
                continue
            duplicates[row.locale] = DuplicateTranslation(
                locale=row.locale,
                value=row.value,
                updated_at=row.updated_at,
                entity_id=row.translatable_id,
            )
        return duplicates
