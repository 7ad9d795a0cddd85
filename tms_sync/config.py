"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def locale_without_region(locale: str) -> str:
    """Return the language part of a locale, e.g. ``"en"`` for ``"en-GB"``."""
    return locale.replace("_", "-").split("-")[0].lower()


class Settings(BaseSettings):
    """Translation sync settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Translation management service
    crowdin_api_token: str = ""
    crowdin_project_id: str = ""
    crowdin_base_url: str = "https://api.crowdin.com/api/v2"
    crowdin_timeout_seconds: float = Field(default=60.0, gt=0)

    # Storage
    database_url: str = "sqlite+aiosqlite:///data/db/tms_sync.db"

    # Locales
    default_locale: str = "en"
    languages_to_translate: list[str] = Field(default_factory=list)

    # Sync behaviour
    apply_duplicate_translations_on_upload: bool = False
    sync_batch_size: int = Field(default=500, ge=1)
    upload_delay_minutes: int = Field(default=5, ge=0)

    # Application models registered for translation, as "module:Class"
    translatable_models: list[str] = Field(default_factory=list)

    @property
    def target_locales(self) -> list[str]:
        """Locales to translate into.

        Regional variants of the default locale are dropped too: storage writes
        them to the source columns, so syncing them would overwrite the source.
        """
        seen: set[str] = set()
        locales: list[str] = []
        for locale in self.languages_to_translate:
            if self.is_default_locale(locale) or locale in seen:
                continue
            seen.add(locale)
            locales.append(locale)
        return locales

    def is_default_locale(self, locale: str) -> bool:
        """Region-insensitive comparison against the default locale."""
        return locale_without_region(locale) == locale_without_region(self.default_locale)

    def is_source_locale(self, locale: str) -> bool:
        """Exact comparison against the default locale, used to trigger uploads."""
        return locale == self.default_locale

    def validate_runtime(self) -> None:
        """Validate settings required to talk to the provider."""
        if self.debug:
            return

        violations: list[str] = []
        if not self.crowdin_api_token:
            violations.append("CROWDIN_API_TOKEN must be set")
        if not self.crowdin_project_id:
            violations.append("CROWDIN_PROJECT_ID must be set")
        if not self.target_locales:
            violations.append("LANGUAGES_TO_TRANSLATE must name at least one non-default locale")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid configuration: {joined}")
