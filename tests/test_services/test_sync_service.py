"""Tests for the translation sync engine and single-unit upserts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest

from tms_sync.exceptions import (
    ArgumentError,
    EntityNotFoundError,
    FilesError,
    OperationResult,
    ProviderError,
)
from tms_sync.provider.base import ApprovalInfo, FileMeta, SourceString
from tms_sync.services.file_identity import EntityRef
from tms_sync.services.sync_service import (
    SyncFilters,
    TranslationSyncService,
    fully_synced,
    parse_string_context,
    record_successes,
)

if TYPE_CHECKING:
    from tms_sync.services.sync_service import SyncLedger

LANGUAGE = "fr"
ERROR = ProviderError(404, "not found")

RAW_TRANSLATIONS_1 = {
    "Model": {"1": {"1000": {"field1": "val 3"}, "555": {"field1": "val 1", "field2": "val 2"}}}
}
RAW_TRANSLATIONS_2 = {
    "AnotherModel": {
        "1": {"1000": {"field1": "val 3"}, "555": {"field1": "val 1", "field2": "val 2"}}
    }
}
RAW_TRANSLATIONS_3 = {"ModelWithoutUpdated": {"1": {"field1": "val 1", "field2": "val 2"}}}
EXPECTED = {
    "Model": {"1": {"field1": "val 3", "field2": "val 2"}},
    "AnotherModel": {"1": {"field1": "val 3", "field2": "val 2"}},
    "ModelWithoutUpdated": {"1": {"field1": "val 1", "field2": "val 2"}},
}
EXPORTS: dict[str, dict[str, Any]] = {
    "1": RAW_TRANSLATIONS_1,
    "2": RAW_TRANSLATIONS_2,
    "3": RAW_TRANSLATIONS_2,
    "4": RAW_TRANSLATIONS_3,
}


def _without(key: str) -> dict[str, Any]:
    return {k: v for k, v in EXPECTED.items() if k != key}


@pytest.fixture
def store() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def service(provider: AsyncMock, store: AsyncMock) -> TranslationSyncService:
    provider.list_files.return_value = [
        FileMeta(
            id="1", name="Model-1.json", directory_id="7", updated_at="2024-01-01T00:00:00+00:00"
        ),
        FileMeta(id="2", name="AnotherModel-1.json", updated_at="2024-03-01T00:00:00+00:00"),
        FileMeta(id="3", name="AnotherModel-2.json", directory_id="7"),
        FileMeta(id="4", name="ModelWithoutUpdated-1.json", updated_at="2024-06-01T00:00:00+00:00"),
    ]
    provider.language_status.return_value = [
        ApprovalInfo(LANGUAGE, 100, 100, "1"),
        ApprovalInfo(LANGUAGE, 75, 100, "2"),
        ApprovalInfo(LANGUAGE, 100, 100, "3"),
        ApprovalInfo(LANGUAGE, 100, 100, "4"),
    ]
    provider.export_translated_content.side_effect = lambda file_id, locale: EXPORTS[file_id]
    return TranslationSyncService(provider, store, ["es", "fr"])


def _fail_file_1(file_id: str, locale: str) -> dict[str, Any]:
    if file_id == "1":
        raise ERROR
    return EXPORTS[file_id]


async def _collect(results: Any) -> list[OperationResult]:
    return [result async for result in results]


class TestTranslations:
    async def test_yields_every_file_resolved(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        results = await _collect(service.translations(LANGUAGE))

        assert len(results) == 1
        assert results[0].success == EXPECTED
        assert results[0].failure is None
        assert provider.export_translated_content.await_count == 4

    async def test_failed_export_is_reported_and_others_continue(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.export_translated_content.side_effect = _fail_file_1

        results = await _collect(service.translations(LANGUAGE))

        assert results[0].success == _without("Model")
        assert results[0].failure == FilesError({"1": str(ERROR)})

    async def test_listing_failure_yields_one_overall_failure(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.list_files.side_effect = ERROR

        results = await _collect(service.translations(LANGUAGE))

        assert results == [OperationResult(success={}, failure=ERROR)]

    async def test_batches_yield_once_per_batch(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.export_translated_content.side_effect = _fail_file_1

        results = await _collect(service.translations(LANGUAGE, 1))

        assert len(results) == 4
        successes: dict[str, Any] = {}
        for result in results:
            successes.update(result.success)
        assert successes == _without("Model")
        assert [r.failure for r in results if r.failure] == [FilesError({"1": str(ERROR)})]

    async def test_filters_by_directory_and_update_time(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        filters = SyncFilters(updated_since=datetime(2024, 2, 1, tzinfo=timezone.utc))

        await _collect(service.translations(LANGUAGE, filters=filters))

        exported = [c.args[0] for c in provider.export_translated_content.await_args_list]
        assert exported == ["2", "4"]

        provider.export_translated_content.reset_mock()
        await _collect(service.translations(LANGUAGE, filters=SyncFilters(directory_id="7")))

        exported = [c.args[0] for c in provider.export_translated_content.await_args_list]
        assert exported == ["1", "3"]


class TestApprovedTranslations:
    async def test_only_fully_approved_files_are_exported(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        results = await _collect(service.approved_translations(LANGUAGE))

        assert results[0].success == EXPECTED
        exported = [c.args[0] for c in provider.export_translated_content.await_args_list]
        assert exported == ["1", "3", "4"]
        provider.language_status.assert_awaited_once_with(LANGUAGE)

    async def test_status_failure_yields_one_overall_failure(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.language_status.side_effect = ERROR

        results = await _collect(service.approved_translations(LANGUAGE))

        assert results == [OperationResult(success={}, failure=ERROR)]

    async def test_batches_skip_unapproved_files(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.export_translated_content.side_effect = _fail_file_1

        results = await _collect(service.approved_translations(LANGUAGE, 1))

        assert len(results) == 3
        assert [r.failure for r in results if r.failure] == [FilesError({"1": str(ERROR)})]


class TestTranslationsForFile:
    async def test_resolves_one_file(self, service: TranslationSyncService) -> None:
        result = await service.translations_for_file("1", LANGUAGE)

        assert result.success == {"Model": {"1": {"field1": "val 3", "field2": "val 2"}}}
        assert result.failure is None

    async def test_export_failure(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.export_translated_content.side_effect = ERROR

        result = await service.translations_for_file("1", LANGUAGE)

        assert result.success == {}
        assert result.failure == FilesError({"1": str(ERROR)})

    async def test_malformed_content_is_a_file_failure(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.export_translated_content.side_effect = None
        provider.export_translated_content.return_value = {"Model": ["not", "a", "map"]}

        result = await service.translations_for_file("1", LANGUAGE)

        assert isinstance(result.failure, FilesError)
        assert "1" in result.failure.errors_by_file


class TestLedger:
    def test_records_each_locale_once(self) -> None:
        ledger: SyncLedger = {}
        refs = [EntityRef("Model", "1"), EntityRef("Model", "2")]

        record_successes(ledger, refs, "es")
        record_successes(ledger, refs[:1], "fr")
        record_successes(ledger, refs[:1], "fr")

        assert ledger == {"Model": {"1": ["es", "fr"], "2": ["es"]}}

    def test_fully_synced_requires_the_exact_locale_set(self) -> None:
        ledger: SyncLedger = {"Model": {"1": ["fr"], "2": ["es", "fr"], "3": ["fr", "es"]}}

        assert fully_synced(ledger, ["es", "fr"]) == [
            EntityRef("Model", "2"),
            EntityRef("Model", "3"),
        ]
        assert fully_synced(ledger, []) == []


class TestCleanupTranslations:
    SYNCED: SyncLedger = {"Model": {"1": ["fr"], "2": ["es", "fr"], "3": ["es", "fr"]}}

    async def test_deletes_files_of_fully_synced_entities_only(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.find_file_by_base_name.side_effect = {"Model-2": "2", "Model-3": "3"}.get

        result = await service.cleanup_translations(self.SYNCED, ["es", "fr"])

        assert result.failure is None
        assert result.success == ["2", "3"]
        assert [c.args[0] for c in provider.find_file_by_base_name.await_args_list] == [
            "Model-2",
            "Model-3",
        ]
        assert [c.args[0] for c in provider.delete_file.await_args_list] == ["2", "3"]

    async def test_failed_deletion_is_reported(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.find_file_by_base_name.side_effect = {"Model-2": "2", "Model-3": "3"}.get
        provider.delete_file.side_effect = [None, ERROR]

        result = await service.cleanup_translations(self.SYNCED, ["es", "fr"])

        assert result.success == ["2"]
        assert result.failure == FilesError({"3": str(ERROR)})

    async def test_failed_lookup_is_keyed_by_base_name(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.find_file_by_base_name.side_effect = [ERROR, "3"]

        result = await service.cleanup_translations(self.SYNCED, ["es", "fr"])

        assert result.failure == FilesError({"Model-2": str(ERROR)})
        provider.delete_file.assert_awaited_once_with("3")

    async def test_lookup_and_delete_failures_are_combined(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.find_file_by_base_name.side_effect = [ERROR, "3"]
        provider.delete_file.side_effect = ERROR

        result = await service.cleanup_translations(self.SYNCED, ["es", "fr"])

        assert result.success == []
        assert result.failure == FilesError({"Model-2": str(ERROR), "3": str(ERROR)})

    async def test_empty_ledger_does_nothing(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        result = await service.cleanup_translations({}, ["es", "fr"])

        assert result.failure is None
        provider.find_file_by_base_name.assert_not_awaited()
        provider.delete_file.assert_not_awaited()


class TestSync:
    async def test_writes_every_entity_for_every_locale(
        self, service: TranslationSyncService, provider: AsyncMock, store: AsyncMock
    ) -> None:
        report = await service.sync(approved_only=False)

        assert report.ok
        assert report.written == {"es": 3, "fr": 3}
        assert report.deleted == []
        store.apply_translations.assert_any_await(
            "Model", "1", "fr", {"field1": "val 3", "field2": "val 2"}
        )
        provider.delete_file.assert_not_awaited()
        provider.clear_cache.assert_called()

    async def test_approved_pass_deletes_entities_synced_everywhere(
        self, service: TranslationSyncService, provider: AsyncMock, store: AsyncMock
    ) -> None:
        provider.find_file_by_base_name.side_effect = {
            "Model-1": "1",
            "AnotherModel-1": "3",
            "ModelWithoutUpdated-1": "4",
        }.get

        report = await service.sync(approved_only=True)

        assert report.ok
        assert sorted(report.deleted) == ["1", "3", "4"]

    async def test_failed_write_keeps_entity_out_of_cleanup(
        self, service: TranslationSyncService, provider: AsyncMock, store: AsyncMock
    ) -> None:
        async def apply(entity_type: str, entity_id: str, locale: str, values: Any) -> None:
            if entity_type == "Model" and locale == "es":
                raise EntityNotFoundError(entity_type, entity_id)

        store.apply_translations.side_effect = apply
        provider.find_file_by_base_name.side_effect = {
            "Model-1": "1",
            "AnotherModel-1": "3",
            "ModelWithoutUpdated-1": "4",
        }.get

        report = await service.sync(approved_only=True)

        assert report.failures == [FilesError({"Model 1": "Could not find Model 1"})]
        assert sorted(report.deleted) == ["3", "4"]

    async def test_partial_locale_pass_never_deletes(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.find_file_by_base_name.side_effect = {"Model-1": "1"}.get

        report = await service.sync(approved_only=True, locales=["fr"])

        assert report.deleted == []
        provider.delete_file.assert_not_awaited()

    async def test_listing_failure_for_one_locale_does_not_stop_the_next(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.language_status.side_effect = [ERROR, provider.language_status.return_value]

        report = await service.sync(approved_only=True)

        assert report.failures == [ERROR]
        assert report.written == {"es": 0, "fr": 3}
        provider.delete_file.assert_not_awaited()

    async def test_unnameable_entity_does_not_stop_its_siblings(
        self, service: TranslationSyncService, provider: AsyncMock, store: AsyncMock
    ) -> None:
        exports = {
            **EXPORTS,
            "1": {"legacy-type": {"1": {"field1": "x"}}, "Model": {"2": {"field1": "y"}}},
        }
        provider.export_translated_content.side_effect = lambda file_id, locale: exports[file_id]

        report = await service.sync(approved_only=False)

        assert report.written == {"es": 3, "fr": 3}
        assert len(report.failures) == 2
        assert all(
            isinstance(f, FilesError) and list(f.errors_by_file) == ["legacy-type 1"]
            for f in report.failures
        )
        store.apply_translations.assert_any_await("Model", "2", "es", {"field1": "y"})
        store.apply_translations.assert_any_await("Model", "2", "fr", {"field1": "y"})

    async def test_explicit_locales_outside_the_target_set_are_skipped(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        report = await service.sync(approved_only=False, locales=["en", "fr"])

        assert report.written == {"fr": 3}
        locales = {c.args[1] for c in provider.export_translated_content.await_args_list}
        assert locales == {"fr"}


class TestParseStringContext:
    def test_with_revision(self) -> None:
        context = parse_string_context("Model -> 123 -> 1111 -> field")

        assert context.entity == EntityRef("Model", "123")
        assert context.attribute == "field"
        assert context.revision == 1111
        assert context.fragment_index is None

    def test_without_revision(self) -> None:
        context = parse_string_context("Model -> 123 -> field")

        assert context.revision is None
        assert context.attribute == "field"

    def test_sentence_fragment(self) -> None:
        context = parse_string_context("blog.Post -> 5 -> 1111 -> content -> 2")

        assert context.entity == EntityRef("blog.Post", "5")
        assert context.attribute == "content"
        assert context.fragment_index == 2

    def test_ignores_lines_after_the_key_path(self) -> None:
        context = parse_string_context("Model -> 1 -> title\nSome note for translators")

        assert context.attribute == "title"

    @pytest.mark.parametrize(
        "context", ["", "Model -> 1", "Model -> 1 -> not an attribute", "A -> 1 -> x -> y -> z"]
    )
    def test_rejects_unrecognized_contexts(self, context: str) -> None:
        with pytest.raises(ArgumentError):
            parse_string_context(context)


class TestTranslationById:
    @pytest.fixture(autouse=True)
    def _strings(self, provider: AsyncMock) -> None:
        provider.source_string.return_value = SourceString(
            id="222", text="source text", context="Model -> 123 -> 1111 -> field"
        )
        provider.translation_text.return_value = "dummy translation"

    @pytest.mark.parametrize(("translation_id", "source_string_id"), [(None, "222"), ("333", None)])
    async def test_missing_ids_are_an_argument_error(
        self,
        service: TranslationSyncService,
        translation_id: str | None,
        source_string_id: str | None,
    ) -> None:
        result = await service.translation_by_id(translation_id, source_string_id)

        assert result.success == {}
        assert isinstance(result.failure, ArgumentError)
        assert str(result.failure) == "translation_id and/or source_string_id params not present"

    async def test_resolves_source_and_translation(self, service: TranslationSyncService) -> None:
        result = await service.translation_by_id("333", "222")

        assert result.success == {
            "source_text": {"Model": {"123": {"field": "source text"}}},
            "translation": {"Model": {"123": {"field": "dummy translation"}}},
        }
        assert result.failure is None

    async def test_provider_failure(
        self, service: TranslationSyncService, provider: AsyncMock
    ) -> None:
        provider.source_string.side_effect = ERROR

        result = await service.translation_by_id("333", "222")

        assert result.success == {}
        assert result.failure == ERROR


class TestUpsertTranslation:
    @pytest.fixture(autouse=True)
    def _strings(self, provider: AsyncMock) -> None:
        provider.source_string.return_value = SourceString(
            id="222", text="source text", context="Model -> 123 -> 1111 -> field"
        )
        provider.translation_text.return_value = "texte"

    async def test_writes_when_source_is_unchanged(
        self, service: TranslationSyncService, store: AsyncMock
    ) -> None:
        store.read_attribute.return_value = "source text"

        result = await service.upsert_translation("fr", "333", "222")

        assert result.failure is None
        store.apply_translations.assert_awaited_once_with("Model", "123", "fr", {"field": "texte"})

    async def test_skips_stale_translation(
        self, service: TranslationSyncService, store: AsyncMock
    ) -> None:
        store.read_attribute.return_value = "edited since"

        result = await service.upsert_translation("fr", "333", "222")

        assert result.failure is None
        store.apply_translations.assert_not_awaited()

    async def test_missing_entity_is_returned(
        self, service: TranslationSyncService, store: AsyncMock
    ) -> None:
        store.read_attribute.side_effect = EntityNotFoundError("Model", "123")

        result = await service.upsert_translation("fr", "333", "222")

        assert isinstance(result.failure, EntityNotFoundError)
        store.apply_translations.assert_not_awaited()

    async def test_sentence_fragment_exports_the_whole_entity(
        self, service: TranslationSyncService, provider: AsyncMock, store: AsyncMock
    ) -> None:
        provider.source_string.return_value = SourceString(
            id="222", text="One.", context="Model -> 1 -> 1000 -> field1 -> 0"
        )
        provider.find_file_by_base_name.return_value = "1"

        result = await service.upsert_translation("fr", "333", "222")

        assert result.failure is None
        provider.export_translated_content.assert_awaited_once_with("1", "fr")
        store.read_attribute.assert_not_awaited()
        store.apply_translations.assert_awaited_once_with(
            "Model", "1", "fr", {"field1": "val 3", "field2": "val 2"}
        )

    async def test_sentence_fragment_without_file(
        self, service: TranslationSyncService, provider: AsyncMock, store: AsyncMock
    ) -> None:
        provider.source_string.return_value = SourceString(
            id="222", text="One.", context="Model -> 1 -> 1000 -> field1 -> 0"
        )
        provider.find_file_by_base_name.return_value = None

        result = await service.upsert_translation("fr", "333", "222")

        assert result.failure == FilesError({"Model-1": "Could not find Model 1"})
        store.apply_translations.assert_not_awaited()
