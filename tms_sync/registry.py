"""Registry of application models whose attributes are sent for translation."""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tms_sync.services.datetime_service import to_revision

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping

logger = logging.getLogger(__name__)


@dataclass
class AttributeOptions:
    """How one translatable attribute is uploaded."""

    split_into_sentences: bool = False
    predicate: Callable[[Any], bool] | None = None


@dataclass
class TranslatableModel:
    """A registered model class and its translation settings."""

    model: type
    entity_type: str
    attributes: dict[str, AttributeOptions] = field(default_factory=dict)
    namespace: Callable[[Any], list[str] | None] | None = None
    allowed: Callable[[Any], bool] | None = None
    revision_attribute: str | None = "updated_at"
    id_attribute: str = "id"

    def entity_id(self, instance: Any) -> str | None:
        value = getattr(instance, self.id_attribute, None)
        return None if value is None else str(value)

    def revision_of(self, instance: Any) -> int | None:
        """Revision key of an instance, or None if the model has no modification time."""
        if self.revision_attribute is None:
            return None
        return to_revision(getattr(instance, self.revision_attribute, None))

    def namespace_of(self, instance: Any) -> list[str] | None:
        if self.namespace is None:
            return None
        return self.namespace(instance)

    def allowed_for_translation(self, instance: Any) -> bool:
        return self.allowed is None or bool(self.allowed(instance))

    def coerce_id(self, entity_id: str) -> Any:
        """Convert a string id to the model's primary key type where it is known."""
        table = getattr(self.model, "__table__", None)
        if table is None or self.id_attribute not in table.c:
            return entity_id
        try:
            python_type = table.c[self.id_attribute].type.python_type
        except NotImplementedError:
            return entity_id
        if python_type is int:
            try:
                return int(entity_id)
            except ValueError:
                return entity_id
        return entity_id


def _normalize_attributes(
    attributes: Mapping[str, AttributeOptions | Mapping[str, Any] | None] | Iterable[str],
) -> dict[str, AttributeOptions]:
    if not hasattr(attributes, "items"):
        return {name: AttributeOptions() for name in attributes}
    normalized: dict[str, AttributeOptions] = {}
    for name, options in attributes.items():  # type: ignore[union-attr]
        if options is None:
            normalized[name] = AttributeOptions()
        elif isinstance(options, AttributeOptions):
            normalized[name] = options
        else:
            normalized[name] = AttributeOptions(**dict(options))
    return normalized


class ModelRegistry:
    """Maps entity type names to registered models."""

    def __init__(self) -> None:
        self._models: dict[str, TranslatableModel] = {}

    def register(
        self,
        model: type,
        attributes: Mapping[str, AttributeOptions | Mapping[str, Any] | None] | Iterable[str],
        *,
        entity_type: str | None = None,
        namespace: Callable[[Any], list[str] | None] | None = None,
        allowed: Callable[[Any], bool] | None = None,
        revision_attribute: str | None = "updated_at",
        id_attribute: str = "id",
    ) -> TranslatableModel:
        """Register a model. The entity type defaults to the class's qualified name."""
        name = entity_type or f"{model.__module__}.{model.__qualname__}"
        if name in self._models:
            msg = f"Model already registered as {name!r}"
            raise ValueError(msg)
        entry = TranslatableModel(
            model=model,
            entity_type=name,
            attributes=_normalize_attributes(attributes),
            namespace=namespace,
            allowed=allowed,
            revision_attribute=revision_attribute,
            id_attribute=id_attribute,
        )
        self._models[name] = entry
        logger.debug("Registered %s with attributes %s", name, list(entry.attributes))
        return entry

    def get(self, entity_type: str) -> TranslatableModel:
        entry = self._models.get(entity_type)
        if entry is None:
            msg = f"Unknown entity type: {entity_type!r}. Registered: {list(self._models)}"
            raise LookupError(msg)
        return entry

    def for_instance(self, instance: Any) -> TranslatableModel:
        for entry in self._models.values():
            if type(instance) is entry.model:
                return entry
        msg = f"{type(instance).__qualname__} is not registered for translation"
        raise LookupError(msg)

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._models

    def __iter__(self) -> Iterator[TranslatableModel]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)


def import_models(paths: Iterable[str], registry: ModelRegistry) -> None:
    """Import ``module:Class`` paths and register each class.

    A class declares its translatable attributes in ``translatable_attributes``
    (a list of names or a mapping of name to options) and may define
    ``namespace_for_translation()`` and ``allowed_for_translation()``.
    """
    for path in paths:
        module_name, sep, class_name = path.partition(":")
        if not sep or not module_name or not class_name:
            msg = f"Model path must look like 'package.module:Class', got {path!r}"
            raise ValueError(msg)
        model = getattr(importlib.import_module(module_name), class_name)
        attributes = getattr(model, "translatable_attributes", None)
        if not attributes:
            msg = f"{path} does not declare translatable_attributes"
            raise ValueError(msg)
        registry.register(
            model,
            attributes,
            namespace=(
                (lambda instance: instance.namespace_for_translation())
                if hasattr(model, "namespace_for_translation")
                else None
            ),
            allowed=(
                (lambda instance: instance.allowed_for_translation())
                if hasattr(model, "allowed_for_translation")
                else None
            ),
            revision_attribute=getattr(model, "translation_revision_attribute", "updated_at"),
        )
