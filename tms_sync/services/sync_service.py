"""Translation sync: export translations, write them to storage, clean up the provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from tms_sync.exceptions import (
    ArgumentError,
    EntityNotFoundError,
    FilesError,
    OperationResult,
    ProviderError,
)
from tms_sync.services.datetime_service import parse_datetime
from tms_sync.services.failure_service import safe_file_iteration
from tms_sync.services.file_identity import EntityRef, file_base_name
from tms_sync.services.revision_service import resolve_revisions

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence

    from tms_sync.provider.base import FileMeta, TranslationProvider
    from tms_sync.storage import TranslationStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500
CONTEXT_SEPARATOR = " -> "

# entity_type -> entity_id -> attribute -> translated string
TranslationResult = dict[str, dict[str, dict[str, Any]]]
# entity_type -> entity_id -> locales written during one pass
SyncLedger = dict[str, dict[str, list[str]]]


@dataclass
class SyncFilters:
    """Restricts which remote files a pass considers."""

    directory_id: str | None = None
    updated_since: datetime | None = None

    def matches(self, meta: FileMeta) -> bool:
        if self.directory_id is not None and meta.directory_id != self.directory_id:
            return False
        if self.updated_since is not None:
            if meta.updated_at is None:
                return False
            if parse_datetime(meta.updated_at) < parse_datetime(self.updated_since):
                return False
        return True


@dataclass
class SyncReport:
    """What one sync pass did."""

    written: dict[str, int] = field(default_factory=dict)
    failures: list[Exception] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class StringContext:
    """Entity coordinates recovered from a source string's key path."""

    entity: EntityRef
    attribute: str
    revision: int | None = None
    fragment_index: int | None = None


def parse_string_context(context: str) -> StringContext:
    """Parse ``type -> id -> [revision ->] attribute [-> sentence index]``.

    The first line of the context holds the key path; anything after it is
    free-form and ignored.
    """
    path = context.strip().splitlines()[0] if context.strip() else ""
    parts = [part.strip() for part in path.split(CONTEXT_SEPARATOR)]
    if len(parts) < 3 or not all(parts):
        msg = f"Unrecognized source string context: {context!r}"
        raise ArgumentError(msg)

    entity_type, entity_id, rest = parts[0], parts[1], parts[2:]
    fragment_index: int | None = None
    if rest[-1].isdigit() and len(rest) > 1:
        fragment_index = int(rest.pop())
    attribute = rest.pop()
    if not attribute.isidentifier():
        msg = f"Unrecognized attribute {attribute!r} in context {context!r}"
        raise ArgumentError(msg)
    revision: int | None = None
    if rest:
        candidate = rest.pop()
        if rest or not candidate.isdigit():
            msg = f"Unrecognized source string context: {context!r}"
            raise ArgumentError(msg)
        revision = int(candidate)
    return StringContext(
        entity=EntityRef(entity_type, entity_id),
        attribute=attribute,
        revision=revision,
        fragment_index=fragment_index,
    )


def merge_translations(target: TranslationResult, source: TranslationResult) -> TranslationResult:
    """Merge ``source`` into ``target`` in place, per entity attribute."""
    for entity_type, by_id in source.items():
        for entity_id, values in by_id.items():
            target.setdefault(entity_type, {}).setdefault(entity_id, {}).update(values)
    return target


def record_successes(ledger: SyncLedger, written: Iterable[EntityRef], locale: str) -> SyncLedger:
    """Add ``locale`` to the ledger entry of every written entity."""
    for ref in written:
        locales = ledger.setdefault(ref.entity_type, {}).setdefault(ref.entity_id, [])
        if locale not in locales:
            locales.append(locale)
    return ledger


def fully_synced(ledger: SyncLedger, locales: Iterable[str]) -> list[EntityRef]:
    """Entities whose ledger holds exactly the full locale set, in any order."""
    required = set(locales)
    return [
        EntityRef(entity_type, entity_id)
        for entity_type, by_id in ledger.items()
        for entity_id, synced in by_id.items()
        if required and set(synced) == required
    ]


def _batches(items: Sequence[str], size: int) -> list[list[str]]:
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


class TranslationSyncService:
    """Pulls translations from the provider into storage.

    A pass walks the target locales one at a time, exporting files in
    batches, resolving revisions, writing each entity under the locale and
    recording which entities were written. In approved-only mode the files
    of entities written in every target locale are then deleted.
    """

    def __init__(
        self,
        provider: TranslationProvider,
        store: TranslationStore,
        target_locales: Iterable[str],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            msg = "batch_size must be at least 1"
            raise ValueError(msg)
        self.provider = provider
        self.store = store
        self.target_locales = list(target_locales)
        self.batch_size = batch_size

    # -- fetching ------------------------------------------------------------

    async def candidate_file_ids(
        self, locale: str, approved_only: bool, filters: SyncFilters | None = None
    ) -> list[str]:
        """File ids to export for a locale. Raises ProviderError."""
        if approved_only:
            statuses = await self.provider.language_status(locale)
            file_ids = [
                status.file_id
                for status in statuses
                if status.file_id is not None and status.fully_approved
            ]
        else:
            file_ids = [meta.id for meta in await self.provider.list_files()]
        if filters is not None:
            # The listing is cached for the rest of the pass
            metas = {meta.id: meta for meta in await self.provider.list_files()}
            file_ids = [fid for fid in file_ids if fid in metas and filters.matches(metas[fid])]
        return file_ids

    async def translations_for_file(self, file_id: str, locale: str) -> OperationResult:
        """Export and resolve one file. Failure is a FilesError naming the file."""
        translations: TranslationResult = {}
        file_id = str(file_id)

        async def export(fid: str) -> None:
            content = await self.provider.export_translated_content(fid, locale)
            merge_translations(translations, self._resolve_content(fid, content))

        failure = await safe_file_iteration([file_id], export)
        return OperationResult(success=translations, failure=failure)

    async def translations(
        self,
        locale: str,
        batch_size: int | None = None,
        filters: SyncFilters | None = None,
        *,
        approved_only: bool = False,
    ) -> AsyncIterator[OperationResult]:
        """Yield one result per batch of exported files.

        If the candidate files cannot be listed a single result carrying that
        error is yielded instead.
        """
        try:
            file_ids = await self.candidate_file_ids(locale, approved_only, filters)
        except ProviderError as exc:
            logger.error("Failed to list files for %s: %s", locale, exc)
            yield OperationResult(success={}, failure=exc)
            return

        logger.info("Exporting %d files for %s", len(file_ids), locale)
        for batch in _batches(file_ids, batch_size or self.batch_size):
            translations: TranslationResult = {}

            async def export(fid: str, into: TranslationResult = translations) -> None:
                content = await self.provider.export_translated_content(fid, locale)
                merge_translations(into, self._resolve_content(fid, content))

            failure = await safe_file_iteration(batch, export)
            yield OperationResult(success=translations, failure=failure)

    async def approved_translations(
        self, locale: str, batch_size: int | None = None, filters: SyncFilters | None = None
    ) -> AsyncIterator[OperationResult]:
        """Like ``translations`` but only for files 100% approved in ``locale``."""
        async for result in self.translations(locale, batch_size, filters, approved_only=True):
            yield result

    @staticmethod
    def _resolve_content(file_id: str, content: dict[str, Any]) -> TranslationResult:
        resolved: TranslationResult = {}
        for entity_type, by_id in content.items():
            if not isinstance(by_id, dict):
                raise ProviderError(-1, f"Unexpected content for {entity_type} in file {file_id}")
            for entity_id, payload in by_id.items():
                if not isinstance(payload, dict):
                    raise ProviderError(
                        -1, f"Unexpected content for {entity_type} {entity_id} in file {file_id}"
                    )
                resolved.setdefault(entity_type, {})[str(entity_id)] = resolve_revisions(payload)
        return resolved

    # -- writing -------------------------------------------------------------

    async def write_translations(
        self, translations: TranslationResult, locale: str
    ) -> tuple[list[EntityRef], FilesError | None]:
        """Write every entity under ``locale``; one failing write does not stop the others.

        Returns the entities written and a FilesError keyed by entity for
        those that failed.
        """
        written: list[EntityRef] = []
        failed: dict[str, str] = {}
        for entity_type, by_id in translations.items():
            for entity_id, values in by_id.items():
                if not values:
                    continue
                logger.info(
                    "Writing translations for %s %s in %s for fields %s",
                    entity_type,
                    entity_id,
                    locale,
                    sorted(values),
                )
                try:
                    ref = EntityRef(entity_type, entity_id)
                    await self.store.apply_translations(entity_type, entity_id, locale, values)
                except Exception as exc:
                    logger.exception(
                        "Failed to write %s translations for %s %s", locale, entity_type, entity_id
                    )
                    failed[f"{entity_type} {entity_id}"] = str(exc)
                    continue
                written.append(ref)
        return written, FilesError(failed) if failed else None

    async def process_translation_result(
        self, result: OperationResult, locale: str, ledger: SyncLedger, report: SyncReport
    ) -> SyncLedger:
        """Write one batch and fold its outcome into the ledger and report."""
        if result.failure is not None:
            report.failures.append(result.failure)
        written, write_failure = await self.write_translations(result.success or {}, locale)
        if write_failure is not None:
            report.failures.append(write_failure)
        report.written[locale] = report.written.get(locale, 0) + len(written)
        return record_successes(ledger, written, locale)

    # -- cleanup -------------------------------------------------------------

    async def cleanup_translations(
        self, ledger: SyncLedger, locales: Iterable[str]
    ) -> OperationResult:
        """Delete the files of entities synced in every one of ``locales``.

        Success is the list of deleted file ids; failures are aggregated.
        """
        complete = fully_synced(ledger, locales)
        if not complete:
            return OperationResult(success=[])

        failed: dict[str, str] = {}
        file_ids: list[str] = []
        for ref in complete:
            base_name = file_base_name(ref.entity_type, ref.entity_id)
            try:
                file_id = await self.provider.find_file_by_base_name(base_name)
            except ProviderError as exc:
                failed[base_name] = str(exc)
                continue
            if file_id is None:
                logger.debug("No remote file left for %s", ref)
                continue
            file_ids.append(file_id)

        deleted: list[str] = []

        async def delete(file_id: str) -> None:
            await self.provider.delete_file(file_id)
            deleted.append(file_id)

        failure = await safe_file_iteration(file_ids, delete)
        if failed:
            failure = FilesError(failed).merge(failure)
        return OperationResult(success=deleted, failure=failure)

    # -- passes --------------------------------------------------------------

    async def sync(
        self,
        approved_only: bool,
        locales: Sequence[str] | None = None,
        filters: SyncFilters | None = None,
    ) -> SyncReport:
        """Run one pass over ``locales`` (default: every target locale).

        Locales are processed strictly one after another so the ledger sees
        each locale's writes before cleanup decides what to delete. Cleanup
        runs only in approved-only mode, against the full target locale set.
        Explicit locales outside the target set are skipped.
        """
        report = SyncReport()
        ledger: SyncLedger = {}
        self.provider.clear_cache()

        if locales is None:
            locales = self.target_locales
        else:
            skipped = [locale for locale in locales if locale not in self.target_locales]
            if skipped:
                logger.warning("Skipping locales outside the target set: %s", skipped)
            locales = [locale for locale in locales if locale in self.target_locales]

        for locale in locales:
            logger.info("Fetching translations for %s", locale)
            async for result in self.translations(
                locale, self.batch_size, filters, approved_only=approved_only
            ):
                await self.process_translation_result(result, locale, ledger, report)

        if approved_only:
            logger.info("Cleaning up translations")
            cleanup = await self.cleanup_translations(ledger, self.target_locales)
            report.deleted.extend(cleanup.success or [])
            if cleanup.failure is not None:
                report.failures.append(cleanup.failure)

        for failure in report.failures:
            logger.error("Sync failure: %s", failure)
        return report

    # -- single translation units --------------------------------------------

    async def _resolve_unit(
        self, translation_id: str | None, source_string_id: str | None
    ) -> tuple[StringContext, str, str]:
        if not translation_id or not source_string_id:
            msg = "translation_id and/or source_string_id params not present"
            raise ArgumentError(msg)
        source = await self.provider.source_string(str(source_string_id))
        translation = await self.provider.translation_text(str(translation_id))
        return parse_string_context(source.context), source.text, translation

    async def translation_by_id(
        self, translation_id: str | None, source_string_id: str | None
    ) -> OperationResult:
        """Resolve one translation unit to ``{"source_text": ..., "translation": ...}``.

        Both parts are one-attribute translation results keyed by entity.
        """
        try:
            context, source_text, translation = await self._resolve_unit(
                translation_id, source_string_id
            )
        except (ArgumentError, ProviderError) as exc:
            return OperationResult(success={}, failure=exc)

        entity_type, entity_id = context.entity.entity_type, context.entity.entity_id
        return OperationResult(
            success={
                "source_text": {entity_type: {entity_id: {context.attribute: source_text}}},
                "translation": {entity_type: {entity_id: {context.attribute: translation}}},
            }
        )

    async def upsert_translation(
        self, locale: str, translation_id: str | None, source_string_id: str | None
    ) -> OperationResult:
        """Write one approved translation unit straight to storage.

        The write is skipped when the stored source value no longer matches
        the string that was translated. A unit that is one sentence of a
        split attribute cannot be written alone, so the entity's whole file
        is exported for the locale instead.
        """
        try:
            context, source_text, translation = await self._resolve_unit(
                translation_id, source_string_id
            )
        except (ArgumentError, ProviderError) as exc:
            return OperationResult(success={}, failure=exc)

        ref = context.entity
        if context.fragment_index is not None:
            return await self._upsert_entity_file(ref, locale)

        try:
            current = await self.store.read_attribute(
                ref.entity_type, ref.entity_id, context.attribute
            )
        except EntityNotFoundError as exc:
            return OperationResult(success={}, failure=exc)
        if current is not None and current != source_text:
            logger.info(
                "Skipping stale translation %s for %s.%s: source text has changed",
                translation_id,
                ref,
                context.attribute,
            )
            return OperationResult(success={})

        translations: TranslationResult = {
            ref.entity_type: {ref.entity_id: {context.attribute: translation}}
        }
        _, failure = await self.write_translations(translations, locale)
        return OperationResult(success=translations if failure is None else {}, failure=failure)

    async def _upsert_entity_file(self, ref: EntityRef, locale: str) -> OperationResult:
        base_name = file_base_name(ref.entity_type, ref.entity_id)
        try:
            file_id = await self.provider.find_file_by_base_name(base_name)
        except ProviderError as exc:
            return OperationResult(success={}, failure=exc)
        if file_id is None:
            return OperationResult(
                success={}, failure=FilesError({base_name: f"Could not find {ref}"})
            )

        result = await self.translations_for_file(file_id, locale)
        if result.failure is not None:
            return OperationResult(success={}, failure=result.failure)
        values = result.success.get(ref.entity_type, {}).get(ref.entity_id)
        if not values:
            return OperationResult(
                success={}, failure=FilesError({file_id: f"Could not find {ref}"})
            )

        translations: TranslationResult = {ref.entity_type: {ref.entity_id: values}}
        _, failure = await self.write_translations(translations, locale)
        return OperationResult(success=translations if failure is None else {}, failure=failure)
