"""Shared test fixtures for tms_sync."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Mapped, mapped_column

from tms_sync.config import Settings
from tms_sync.models.base import Base
from tms_sync.provider.base import TranslationProvider
from tms_sync.registry import AttributeOptions, ModelRegistry
from tms_sync.storage import SqlTranslationStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from pathlib import Path

POST_TYPE = "blog.Post"
PAGE_TYPE = "cms.Page"


class Post(Base):
    """Application record used by the storage tests."""

    __tablename__ = "test_posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    published: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Page(Base):
    """Record without a modification time."""

    __tablename__ = "test_pages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        crowdin_api_token="test-token",
        crowdin_project_id="42",
        database_url=f"sqlite+aiosqlite:///{db_path}",
        default_locale="en",
        languages_to_translate=["en", "es", "fr"],
        upload_delay_minutes=5,
    )


@pytest.fixture
def registry() -> ModelRegistry:
    models = ModelRegistry()
    models.register(
        Post,
        {
            "title": AttributeOptions(),
            "content": AttributeOptions(split_into_sentences=True),
        },
        entity_type=POST_TYPE,
        namespace=lambda post: ["posts"],
        allowed=lambda post: post.published,
    )
    models.register(Page, ["body"], entity_type=PAGE_TYPE, revision_attribute=None)
    return models


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with every table in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
def store(
    session_factory: async_sessionmaker[AsyncSession],
    registry: ModelRegistry,
    test_settings: Settings,
) -> SqlTranslationStore:
    return SqlTranslationStore(
        session_factory, registry, test_settings.is_default_locale, clock=lambda: 5000
    )


@pytest.fixture
def add_record(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[Base], Awaitable[None]]:
    """Persist a record in its own session."""

    async def _add(record: Base) -> None:
        async with session_factory() as session:
            session.add(record)
            await session.commit()

    return _add


@pytest.fixture
def provider() -> AsyncMock:
    """Provider fake. Every coroutine method is an AsyncMock."""
    mock = AsyncMock(spec=TranslationProvider)
    mock.clear_cache = MagicMock()
    return mock
