"""Tests for write-path hooks."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from tms_sync.config import Settings
from tms_sync.registry import AttributeOptions, ModelRegistry, TranslatableModel
from tms_sync.schemas import AttributeUploadOptions, UploadJobPayload
from tms_sync.services.write_hooks import (
    CallbackOnWriteHook,
    UploadOnWriteHook,
    WriteInterceptor,
    WriteTarget,
)


class Article:
    def __init__(self, id: int | None = 1, published: bool = True, section: str = "news") -> None:
        self.id = id
        self.published = published
        self.section = section


@pytest.fixture
def article_model() -> TranslatableModel:
    return ModelRegistry().register(
        Article,
        {
            "title": AttributeOptions(),
            "body": AttributeOptions(
                split_into_sentences=True, predicate=lambda article: article.section != "draft"
            ),
        },
        entity_type="news.Article",
        namespace=lambda article: [article.section],
        allowed=lambda article: article.published,
    )


@pytest.fixture
def is_source() -> Any:
    return Settings(default_locale="en").is_source_locale


def _target(model: TranslatableModel, **kwargs: Any) -> WriteTarget:
    return WriteTarget(model=model, instance=Article(**kwargs))


class TestUploadOnWriteHook:
    async def test_default_locale_change_enqueues_upload(
        self, article_model: TranslatableModel, is_source: Any
    ) -> None:
        enqueue = AsyncMock()
        hook = UploadOnWriteHook(is_source, enqueue)

        action = hook.before_write(_target(article_model), "en", "title", "Old", "New")
        assert action is not None
        enqueue.assert_not_awaited()

        await action()

        enqueue.assert_awaited_once_with(
            UploadJobPayload(
                entity_type="news.Article",
                entity_id="1",
                translated_attribute_params={
                    "title": AttributeUploadOptions(split_into_sentences=False),
                    "body": AttributeUploadOptions(split_into_sentences=True),
                },
                namespace=["news"],
            )
        )

    @pytest.mark.parametrize(
        ("kwargs", "locale", "attribute", "old", "new"),
        [
            ({}, "fr", "title", "Old", "New"),
            ({}, "en-GB", "title", "Old", "New"),
            ({}, "en", "title", "Same", "Same"),
            ({"id": None}, "en", "title", "Old", "New"),
            ({}, "en", "unregistered", "Old", "New"),
            ({"section": "draft"}, "en", "body", "Old", "New"),
            ({"published": False}, "en", "title", "Old", "New"),
        ],
        ids=[
            "other-locale",
            "regional-default",
            "unchanged",
            "no-id",
            "unregistered",
            "predicate",
            "not-allowed",
        ],
    )
    def test_skips_writes_that_need_no_upload(
        self,
        article_model: TranslatableModel,
        is_source: Any,
        kwargs: dict[str, Any],
        locale: str,
        attribute: str,
        old: str,
        new: str,
    ) -> None:
        hook = UploadOnWriteHook(is_source, AsyncMock())

        target = _target(article_model, **kwargs)
        assert hook.before_write(target, locale, attribute, old, new) is None


class TestCallbackOnWriteHook:
    async def test_calls_back_for_translated_values(
        self, article_model: TranslatableModel, is_source: Any
    ) -> None:
        callback = MagicMock(return_value=None)
        hook = CallbackOnWriteHook(is_source, callback)
        target = _target(article_model)

        action = hook.before_write(target, "fr", "title", None, "Titre")
        assert action is not None
        await action()

        callback.assert_called_once_with(target.instance, "fr")

    async def test_awaits_async_callbacks(
        self, article_model: TranslatableModel, is_source: Any
    ) -> None:
        callback = AsyncMock()
        hook = CallbackOnWriteHook(is_source, callback)

        action = hook.before_write(_target(article_model), "es", "title", None, "Titulo")
        assert action is not None
        await action()

        callback.assert_awaited_once()

    def test_ignores_default_locale_and_unchanged_values(
        self, article_model: TranslatableModel, is_source: Any
    ) -> None:
        hook = CallbackOnWriteHook(is_source, MagicMock())

        assert hook.before_write(_target(article_model), "en", "title", "a", "b") is None
        assert hook.before_write(_target(article_model), "fr", "title", "a", "a") is None


class TestWriteInterceptor:
    async def test_one_action_per_hook_and_record(self, article_model: TranslatableModel) -> None:
        first = AsyncMock()
        hook = MagicMock()
        hook.before_write.return_value = first
        interceptor = WriteInterceptor()
        interceptor.register(hook)
        pending: dict[Any, Any] = {}
        target = _target(article_model)

        interceptor.before_write(target, "en", "title", "a", "b", pending)
        interceptor.before_write(target, "en", "body", "c", "d", pending)
        await interceptor.run_deferred(pending)

        assert hook.before_write.call_count == 1
        first.assert_awaited_once()

    async def test_failing_action_does_not_stop_others(
        self, article_model: TranslatableModel
    ) -> None:
        failing = MagicMock()
        failing.before_write.return_value = AsyncMock(side_effect=RuntimeError("queue down"))
        working_action = AsyncMock()
        working = MagicMock()
        working.before_write.return_value = working_action
        interceptor = WriteInterceptor()
        interceptor.register(failing)
        interceptor.register(working)
        pending: dict[Any, Any] = {}

        interceptor.before_write(_target(article_model), "en", "title", "a", "b", pending)
        await interceptor.run_deferred(pending)

        working_action.assert_awaited_once()
        assert interceptor.hooks == [failing, working]
