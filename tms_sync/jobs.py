"""Job layer: the units of work an external scheduler runs.

Every job takes a pydantic payload, runs one engine operation and logs any
failure it returns. Retrying is left to the scheduler; re-running an upload
or a sync is safe because stale or equal revisions are never re-uploaded and
translation writes are idempotent.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol

from tms_sync.exceptions import EntityNotFoundError, OperationResult
from tms_sync.schemas import (
    AttributeUploadOptions,
    DeleteJobPayload,
    SyncJobPayload,
    UploadJobPayload,
    UpsertTranslationPayload,
)
from tms_sync.services.duplicate_service import DuplicateTranslationResolver
from tms_sync.services.sync_service import SyncReport, TranslationSyncService
from tms_sync.services.upload_service import SourceUploadService
from tms_sync.services.write_hooks import CallbackOnWriteHook, UploadOnWriteHook

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tms_sync.config import Settings
    from tms_sync.provider.base import TranslationProvider
    from tms_sync.registry import ModelRegistry
    from tms_sync.services.sync_service import SyncFilters
    from tms_sync.services.write_hooks import WriteInterceptor
    from tms_sync.storage import TranslationStore

logger = logging.getLogger(__name__)

UPLOAD_JOB = "upload_source_strings"
SYNC_JOB = "sync_translations"
SYNC_APPROVED_JOB = "sync_approved_translations"
UPSERT_JOB = "upsert_single_translation"
DELETE_JOB = "delete_source_strings"


class JobScheduler(Protocol):
    """Queue transport that runs jobs later, possibly in another process."""

    async def enqueue(
        self, job_name: str, payload: dict[str, Any], delay: timedelta | None = None
    ) -> None: ...


class InlineScheduler:
    """Runs jobs immediately in the current process. Delays are ignored."""

    def __init__(self, jobs: TranslationJobs) -> None:
        self._jobs = jobs

    async def enqueue(
        self, job_name: str, payload: dict[str, Any], delay: timedelta | None = None
    ) -> None:
        logger.debug("Running %s inline (requested delay %s)", job_name, delay)
        await self._jobs.run(job_name, payload)


class TranslationJobs:
    """Wires the engines together behind one object per process."""

    def __init__(
        self,
        settings: Settings,
        provider: TranslationProvider,
        store: TranslationStore,
        registry: ModelRegistry,
        scheduler: JobScheduler | None = None,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.store = store
        self.registry = registry
        self.scheduler: JobScheduler = scheduler or InlineScheduler(self)
        self.upload_service = SourceUploadService(provider)
        self.duplicate_resolver = DuplicateTranslationResolver(store, settings.target_locales)
        self.sync_service = TranslationSyncService(
            provider, store, settings.target_locales, settings.sync_batch_size
        )

    def install_write_hooks(
        self,
        interceptor: WriteInterceptor,
        on_translated: Callable[[Any, str], Awaitable[None] | None] | None = None,
    ) -> None:
        """Register the upload hook, and the translated-value callback if one is given."""
        is_source = self.settings.is_source_locale
        interceptor.register(UploadOnWriteHook(is_source, self.enqueue_upload))
        if on_translated is not None:
            interceptor.register(CallbackOnWriteHook(is_source, on_translated))

    def handle_failure(self, failure: Exception | None, context: str) -> None:
        if failure is None:
            return
        logger.error("%s failed: %s", context, failure)

    def upload_payload(
        self, entity_type: str, entity_id: str, instance: Any = None
    ) -> UploadJobPayload:
        """Build an upload payload from the registered options of ``entity_type``."""
        entry = self.registry.get(entity_type)
        return UploadJobPayload(
            entity_type=entity_type,
            entity_id=str(entity_id),
            translated_attribute_params={
                name: AttributeUploadOptions(split_into_sentences=options.split_into_sentences)
                for name, options in entry.attributes.items()
            },
            namespace=entry.namespace_of(instance) if instance is not None else None,
        )

    async def enqueue_upload(self, payload: UploadJobPayload) -> None:
        delay = timedelta(minutes=self.settings.upload_delay_minutes)
        await self.scheduler.enqueue(UPLOAD_JOB, payload.model_dump(), delay)

    async def upload_source_strings(self, payload: UploadJobPayload) -> OperationResult:
        """Upload the current default-locale values of one entity.

        The entity is loaded fresh so a delayed job uploads what is stored
        now, not what was stored when it was queued.
        """
        attribute_names = list(payload.translated_attribute_params)
        entity = await self.store.load_entity(
            payload.entity_type, payload.entity_id, attribute_names or None
        )
        if entity is None:
            failure = EntityNotFoundError(payload.entity_type, payload.entity_id)
            self.handle_failure(failure, f"Upload of {payload.entity_type} {payload.entity_id}")
            return OperationResult(failure=failure)

        attributes = entity.attributes
        if self.settings.apply_duplicate_translations_on_upload:
            attributes = await self.duplicate_resolver.handle_duplicates(entity, attributes)
            if not attributes:
                logger.info(
                    "All attributes of %s %s were filled from duplicates, nothing to upload",
                    payload.entity_type,
                    payload.entity_id,
                )
                return OperationResult()

        result = await self.upload_service.upload_attributes(
            payload.entity_type,
            payload.entity_id,
            entity.revision,
            attributes,
            payload.translated_attribute_params,
            payload.namespace,
        )
        self.handle_failure(result.failure, f"Upload of {payload.entity_type} {payload.entity_id}")
        return result

    async def sync_translations(
        self, payload: SyncJobPayload | None = None, filters: SyncFilters | None = None
    ) -> SyncReport:
        """Pull translations for the target locales; approved-only per the payload."""
        payload = payload or SyncJobPayload()
        report = await self.sync_service.sync(payload.approved_only, payload.locales, filters)
        logger.info(
            "Sync finished: written %s, deleted %d files, %d failures",
            report.written,
            len(report.deleted),
            len(report.failures),
        )
        return report

    async def sync_approved_translations(
        self, locales: list[str] | None = None, filters: SyncFilters | None = None
    ) -> SyncReport:
        return await self.sync_translations(
            SyncJobPayload(approved_only=True, locales=locales), filters
        )

    async def upsert_single_translation(self, payload: UpsertTranslationPayload) -> OperationResult:
        result = await self.sync_service.upsert_translation(
            payload.language, payload.translation_id, payload.source_string_id
        )
        self.handle_failure(
            result.failure,
            f"Upsert of translation {payload.translation_id} in {payload.language}",
        )
        return result

    async def delete_source_strings(self, payload: DeleteJobPayload) -> OperationResult:
        result = await self.upload_service.delete_source_file(
            payload.entity_type, payload.entity_id
        )
        self.handle_failure(
            result.failure, f"Deletion of {payload.entity_type} {payload.entity_id}"
        )
        return result

    async def run(self, job_name: str, payload: dict[str, Any]) -> OperationResult | SyncReport:
        """Run a job by name, validating its serialized payload."""
        if job_name == UPLOAD_JOB:
            return await self.upload_source_strings(UploadJobPayload.model_validate(payload))
        if job_name == SYNC_JOB:
            return await self.sync_translations(SyncJobPayload.model_validate(payload))
        if job_name == SYNC_APPROVED_JOB:
            return await self.sync_approved_translations(payload.get("locales"))
        if job_name == UPSERT_JOB:
            return await self.upsert_single_translation(
                UpsertTranslationPayload.model_validate(payload)
            )
        if job_name == DELETE_JOB:
            return await self.delete_source_strings(DeleteJobPayload.model_validate(payload))
        msg = f"Unknown job: {job_name!r}"
        raise ValueError(msg)
