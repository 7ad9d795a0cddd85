"""Write-path hooks: react to attribute writes before they are committed.

Storage calls ``WriteInterceptor.before_write`` for every attribute it is
about to change. Each registered hook may return a deferred action, which
the interceptor runs once the write has been committed. Hooks are registered
explicitly and receive their collaborators at construction time.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from tms_sync.schemas import AttributeUploadOptions, UploadJobPayload

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tms_sync.registry import TranslatableModel

logger = logging.getLogger(__name__)


@dataclass
class WriteTarget:
    """The record being written and its registration."""

    model: TranslatableModel
    instance: Any

    @property
    def entity_id(self) -> str | None:
        return self.model.entity_id(self.instance)


class WriteHook(Protocol):
    """Extension point called before an attribute write is committed."""

    def before_write(
        self,
        target: WriteTarget,
        locale: str,
        attribute: str,
        old_value: Any,
        new_value: Any,
    ) -> Callable[[], Awaitable[None]] | None:
        """Return an action to run after commit, or None to do nothing."""
        ...


class WriteInterceptor:
    """Dispatches writes to registered hooks and runs their deferred actions."""

    def __init__(self) -> None:
        self._hooks: list[WriteHook] = []

    def register(self, hook: WriteHook) -> None:
        self._hooks.append(hook)

    @property
    def hooks(self) -> list[WriteHook]:
        return list(self._hooks)

    def before_write(
        self,
        target: WriteTarget,
        locale: str,
        attribute: str,
        old_value: Any,
        new_value: Any,
        pending: dict[tuple[int, str | None], Callable[[], Awaitable[None]]],
    ) -> None:
        """Collect deferred actions into ``pending``, at most one per hook and record."""
        for hook in self._hooks:
            key = (id(hook), target.entity_id)
            if key in pending:
                continue
            action = hook.before_write(target, locale, attribute, old_value, new_value)
            if action is not None:
                pending[key] = action

    async def run_deferred(
        self, pending: dict[tuple[int, str | None], Callable[[], Awaitable[None]]]
    ) -> None:
        """Run deferred actions; a failing action is logged and does not stop the rest."""
        for action in pending.values():
            try:
                await action()
            except Exception:
                logger.exception("Deferred write hook action failed")


class UploadOnWriteHook:
    """Queue an upload of source strings when a default-locale value changes.

    Uploads only when the record has an id, the value actually changed, the
    attribute's predicate (if any) accepts the record and the model allows
    translation for it.
    """

    def __init__(
        self,
        is_source_locale: Callable[[str], bool],
        enqueue_upload: Callable[[UploadJobPayload], Awaitable[None]],
    ) -> None:
        self._is_source_locale = is_source_locale
        self._enqueue_upload = enqueue_upload

    def should_upload(
        self, target: WriteTarget, locale: str, attribute: str, old_value: Any, new_value: Any
    ) -> bool:
        if not self._is_source_locale(locale):
            return False
        if new_value == old_value:
            return False
        if target.entity_id is None:
            return False
        options = target.model.attributes.get(attribute)
        if options is None:
            return False
        if options.predicate is not None and not options.predicate(target.instance):
            return False
        return target.model.allowed_for_translation(target.instance)

    def before_write(
        self,
        target: WriteTarget,
        locale: str,
        attribute: str,
        old_value: Any,
        new_value: Any,
    ) -> Callable[[], Awaitable[None]] | None:
        if not self.should_upload(target, locale, attribute, old_value, new_value):
            return None

        payload = UploadJobPayload(
            entity_type=target.model.entity_type,
            entity_id=str(target.entity_id),
            translated_attribute_params={
                name: AttributeUploadOptions(split_into_sentences=options.split_into_sentences)
                for name, options in target.model.attributes.items()
            },
            namespace=target.model.namespace_of(target.instance),
        )

        async def enqueue() -> None:
            logger.info(
                "Queueing upload for %s %s after write to %s",
                payload.entity_type,
                payload.entity_id,
                attribute,
            )
            await self._enqueue_upload(payload)

        return enqueue


class CallbackOnWriteHook:
    """Call a handler after a translated (non-default-locale) value changes."""

    def __init__(
        self,
        is_source_locale: Callable[[str], bool],
        callback: Callable[[Any, str], Awaitable[None] | None],
    ) -> None:
        self._is_source_locale = is_source_locale
        self._callback = callback

    def before_write(
        self,
        target: WriteTarget,
        locale: str,
        attribute: str,
        old_value: Any,
        new_value: Any,
    ) -> Callable[[], Awaitable[None]] | None:
        if self._is_source_locale(locale) or new_value == old_value:
            return None

        async def notify() -> None:
            result = self._callback(target.instance, locale)
            if inspect.isawaitable(result):
                await result

        return notify
