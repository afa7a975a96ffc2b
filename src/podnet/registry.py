"""Handler registry fanning watch events out to interested parties."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Union

from .events import KindScopeUpsert, ObjectDelete, ObjectUpsert

Event = Union[ObjectUpsert, ObjectDelete, KindScopeUpsert]


class EventHandler(ABC):
    """Base class for consumers registered with :class:`HandlerRegistry`."""

    @abstractmethod
    def on_upsert(self, event: ObjectUpsert) -> None:
        """Apply the full object carried by ``event``."""

    @abstractmethod
    def on_delete(self, event: ObjectDelete) -> None:
        """Drop any state associated with the deleted object."""

    def on_kind_scope(self, event: KindScopeUpsert) -> None:
        """Record the scope of a kind. Most handlers do not care."""


class HandlerRegistry:
    """Dispatch watch events to registered handlers in registration order."""

    def __init__(self) -> None:
        self._handlers: Dict[str, EventHandler] = {}

    def register(self, name: str, handler: EventHandler) -> None:
        if name in self._handlers:
            raise ValueError(f"handler '{name}' already registered")
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    def handle(self, event: Event) -> None:
        if isinstance(event, ObjectUpsert):
            for handler in list(self._handlers.values()):
                handler.on_upsert(event)
        elif isinstance(event, ObjectDelete):
            for handler in list(self._handlers.values()):
                handler.on_delete(event)
        elif isinstance(event, KindScopeUpsert):
            for handler in list(self._handlers.values()):
                handler.on_kind_scope(event)
        else:
            raise TypeError(f"Unsupported event type: {type(event)!r}")
