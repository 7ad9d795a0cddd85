"""Reuse of existing translations for identical source values."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from tms_sync.storage import EntitySnapshot, TranslationStore

logger = logging.getLogger(__name__)


class DuplicateTranslationResolver:
    """Copies translations from records with byte-identical source values.

    A candidate translation is used only if it was updated at or after the
    copying record's own modification time, and per locale the newest one
    wins. Attributes whose every target locale was filled this way no longer
    need uploading. Lookup or write errors only cost the optimization: the
    affected attributes stay queued for upload.
    """

    def __init__(self, store: TranslationStore, target_locales: Iterable[str]) -> None:
        self.store = store
        self.target_locales = list(target_locales)

    async def find_duplicates(
        self, entity: EntitySnapshot, attributes: Mapping[str, Any]
    ) -> dict[str, dict[str, Any]]:
        """Return ``{locale: {attribute: translation}}`` for usable duplicates."""
        targets = set(self.target_locales)
        by_locale: dict[str, dict[str, Any]] = {}
        for attribute, value in attributes.items():
            if value is None or value == "":
                continue
            try:
                found = await self.store.find_duplicate_translations(
                    entity.ref.entity_type,
                    attribute,
                    value,
                    exclude_id=entity.ref.entity_id,
                    not_before=entity.revision,
                )
            except Exception:
                logger.exception(
                    "Duplicate lookup failed for %s %s.%s", *_describe(entity), attribute
                )
                continue
            for locale, duplicate in found.items():
                if locale in targets:
                    by_locale.setdefault(locale, {})[attribute] = duplicate.value
        return by_locale

    async def handle_duplicates(
        self, entity: EntitySnapshot, attributes: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Apply duplicate translations and return the attributes that still need uploading."""
        if not self.target_locales or not attributes:
            return dict(attributes)

        duplicates = await self.find_duplicates(entity, attributes)
        covered: dict[str, set[str]] = {attribute: set() for attribute in attributes}

        for locale, translations in duplicates.items():
            if not translations:
                continue
            logger.info(
                "Updating %s %s with duplicate %s translations for %s",
                *_describe(entity),
                locale,
                sorted(translations),
            )
            try:
                await self.store.apply_translations(
                    entity.ref.entity_type, entity.ref.entity_id, locale, translations
                )
            except Exception:
                logger.exception(
                    "Failed to apply duplicate %s translations to %s %s", locale, *_describe(entity)
                )
                continue
            for attribute in translations:
                covered[attribute].add(locale)

        targets = set(self.target_locales)
        return {
            attribute: value
            for attribute, value in attributes.items()
            if covered[attribute] != targets
        }


def _describe(entity: EntitySnapshot) -> tuple[str, str]:
    return entity.ref.entity_type, entity.ref.entity_id
