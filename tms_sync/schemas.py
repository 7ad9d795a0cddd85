"""Job payload schemas.

Payloads are plain pydantic models so any queue transport can serialize them
with ``model_dump()`` and rebuild them with ``model_validate()``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class AttributeUploadOptions(BaseModel):
    """Serializable upload options for one attribute."""

    split_into_sentences: bool = False


class UploadJobPayload(BaseModel):
    """Request to upload an entity's source strings."""

    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    translated_attribute_params: dict[str, AttributeUploadOptions] = Field(default_factory=dict)
    namespace: list[str] | None = Field(
        default=None, description="Directory path segments to create the file under"
    )

    @field_validator("entity_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class UpsertTranslationPayload(BaseModel):
    """Request to write one approved translation unit."""

    language: str = Field(min_length=1)
    translation_id: str = Field(min_length=1)
    source_string_id: str = Field(min_length=1)

    @field_validator("translation_id", "source_string_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class SyncJobPayload(BaseModel):
    """Request to run a sync pass."""

    approved_only: bool = False
    locales: list[str] | None = None


class DeleteJobPayload(BaseModel):
    """Request to delete an entity's remote file."""

    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)

    @field_validator("entity_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value
