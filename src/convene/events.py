"""Typed publish/subscribe used by every component.

Each component owns one ``EventEmitter`` parameterised by its own ``Enum`` of
event kinds, so observers can only subscribe to kinds that exist and each
kind has a single documented payload type.
"""
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Enum)

Handler = Callable[[Any], None]
WildcardHandler = Callable[[Enum, Any], None]


class EventEmitter(Generic[K]):
    """Fan-out of events to observers that cannot affect the publisher.

    Handler exceptions are logged and swallowed here so a broken UI or
    logging collaborator never changes the outcome of the work it watches.
    """

    def __init__(self, kinds: type[K]):
        self._kinds = kinds
        self._handlers: dict[K, list[Handler]] = {}
        self._wildcard: list[WildcardHandler] = []

    @property
    def kinds(self) -> type[K]:
        return self._kinds

    def subscribe(self, kind: K, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``kind``; returns an unsubscribe callable."""
        if not isinstance(kind, self._kinds):
            raise TypeError(f"{kind!r} is not a {self._kinds.__name__}")
        self._handlers.setdefault(kind, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(kind, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: WildcardHandler) -> Callable[[], None]:
        """Register ``handler(kind, payload)`` for every kind."""
        self._wildcard.append(handler)

        def unsubscribe() -> None:
            if handler in self._wildcard:
                self._wildcard.remove(handler)

        return unsubscribe

    def emit(self, kind: K, payload: Any) -> None:
        if not isinstance(kind, self._kinds):
            raise TypeError(f"{kind!r} is not a {self._kinds.__name__}")
        for handler in list(self._handlers.get(kind, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("Event handler for %s failed", kind.value)
        for wildcard in list(self._wildcard):
            try:
                wildcard(kind, payload)
            except Exception:
                logger.exception("Wildcard event handler for %s failed", kind.value)

    def clear(self) -> None:
        self._handlers.clear()
        self._wildcard.clear()
