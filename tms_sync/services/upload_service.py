"""Source upload: create or update an entity's file on the provider."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from tms_sync.exceptions import ArgumentError, FilesError, OperationResult, ProviderError
from tms_sync.services.failure_service import safe_file_iteration
from tms_sync.services.file_identity import file_base_name, file_name
from tms_sync.services.revision_service import revision_keys, wrap_snapshot
from tms_sync.services.sentence_service import split_attributes

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from tms_sync.provider.base import TranslationProvider
    from tms_sync.schemas import AttributeUploadOptions

logger = logging.getLogger(__name__)


def build_source_content(
    entity_type: str,
    entity_id: str,
    revision: int | None,
    attributes: Mapping[str, Any],
    attribute_options: Mapping[str, AttributeUploadOptions],
) -> dict[str, Any]:
    """Build the file content for one entity.

    Shape: ``{type: {id: {revision: {attribute: value}}}}``, or without the
    revision level when the entity has no modification time. Attributes
    marked for splitting are uploaded as lists of sentences.
    """
    split = {
        name: options.split_into_sentences for name, options in attribute_options.items()
    }
    values = split_attributes(attributes, split)
    return {entity_type: {entity_id: wrap_snapshot(revision, values)}}


class SourceUploadService:
    """Uploads source strings, never overwriting newer remote content."""

    def __init__(self, provider: TranslationProvider) -> None:
        self.provider = provider

    async def ensure_directory(self, namespace: Sequence[str] | None) -> str | None:
        """Find or create the nested directory for a namespace; None for the project root."""
        if not namespace:
            return None
        parent_id: str | None = None
        for segment in namespace:
            directory_id = await self.provider.find_directory_by_name(segment, parent_id)
            if directory_id is None:
                # Not atomic: two concurrent uploads may both create the directory
                directory_id = await self.provider.create_directory(segment, parent_id)
            parent_id = directory_id
        return parent_id

    async def upload_attributes(
        self,
        entity_type: str,
        entity_id: str,
        revision: int | None,
        attributes: Mapping[str, Any],
        attribute_options: Mapping[str, AttributeUploadOptions],
        namespace: Sequence[str] | None = None,
    ) -> OperationResult:
        """Upload attributes of one entity.

        Creates the entity's file when none exists. An existing file is
        replaced when the entity has no revision, or when ``revision`` is
        strictly greater than every revision stored remotely; otherwise the
        call is a no-op. Provider errors short-circuit and are returned as
        the failure.
        """
        if not attributes:
            return OperationResult()

        entity_id = str(entity_id)
        content = build_source_content(
            entity_type, entity_id, revision, attributes, attribute_options
        )
        payload = json.dumps(content)

        self.provider.clear_cache()
        try:
            file_id = await self.provider.find_file_by_base_name(
                file_base_name(entity_type, entity_id)
            )
            if file_id is None:
                directory_id = await self.ensure_directory(namespace)
                await self.provider.create_file(
                    file_name(entity_type, entity_id), payload, directory_id
                )
                logger.info("Uploaded new source file for %s %s", entity_type, entity_id)
                return OperationResult()

            if revision is None:
                await self.provider.update_file(file_id, payload)
                logger.info("Replaced source file %s for %s %s", file_id, entity_type, entity_id)
                return OperationResult()

            existing = await self.provider.download_source_content(file_id)
            by_type = existing.get(entity_type)
            stored = by_type.get(entity_id) if isinstance(by_type, dict) else None
            if not isinstance(stored, dict):
                msg = f"Could not find {entity_type} {entity_id}"
                return OperationResult(failure=FilesError({file_id: msg}))

            stored_revisions = revision_keys(stored)
            if stored_revisions and revision <= stored_revisions[-1]:
                logger.info(
                    "Skipping upload for %s %s: revision %s is not newer than %s",
                    entity_type,
                    entity_id,
                    revision,
                    stored_revisions[-1],
                )
                return OperationResult()

            await self.provider.update_file(file_id, payload)
            logger.info(
                "Updated source file %s for %s %s to revision %s",
                file_id,
                entity_type,
                entity_id,
                revision,
            )
            return OperationResult()
        except ProviderError as exc:
            return OperationResult(failure=exc)

    async def delete_source_file(
        self, entity_type: str | None, entity_id: str | None
    ) -> OperationResult:
        """Delete the remote file of one entity, if it has one."""
        if not entity_type or entity_id is None or entity_id == "":
            return OperationResult(failure=ArgumentError("Entity type and id are required"))

        self.provider.clear_cache()
        base_name = file_base_name(entity_type, str(entity_id))
        try:
            file_id = await self.provider.find_file_by_base_name(base_name)
        except ProviderError as exc:
            return OperationResult(failure=FilesError({base_name: str(exc)}))
        if file_id is None:
            logger.info("No source file to delete for %s %s", entity_type, entity_id)
            return OperationResult()
        return await self.cleanup_file(file_id)

    async def cleanup_file(self, file_id: str) -> OperationResult:
        """Delete one file by id."""
        failure = await safe_file_iteration([file_id], self.provider.delete_file)
        return OperationResult(failure=failure)
