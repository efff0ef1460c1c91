"""Explicit listener registries with unsubscribe handles."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[T], None]


class Subscription:
    """
    Handle returned by :meth:`ListenerRegistry.subscribe`.

    Calling it (or :meth:`unsubscribe`) removes the listener; repeated calls
    are no-ops. Also usable as a context manager for scoped subscriptions.
    """

    __slots__ = ("_remove", "_lock")

    def __init__(self, remove: Callable[[], None]) -> None:
        self._remove: Optional[Callable[[], None]] = remove
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._remove is not None

    def unsubscribe(self) -> None:
        with self._lock:
            remove, self._remove = self._remove, None
        if remove is not None:
            remove()

    __call__ = unsubscribe

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class ListenerRegistry(Generic[T]):
    """
    Ordered set of listeners for one event type.

    ``dispatch`` calls listeners synchronously in registration order over a
    snapshot taken when the pass starts, so (un)subscribing from inside a
    listener only affects later passes. Passes are serialised, which keeps a
    listener from running concurrently with itself.
    """

    def __init__(self, name: str = "event") -> None:
        self._name = name
        self._listeners: List[Listener[T]] = []
        self._lock = threading.Lock()
        self._dispatch_lock = threading.RLock()

    def subscribe(self, listener: Listener[T]) -> Subscription:
        if not callable(listener):
            raise TypeError("listener must be callable")
        # Wrap so the same function can be registered twice and removed independently.
        entry: Listener[T] = lambda value: listener(value)  # noqa: E731

        with self._lock:
            self._listeners.append(entry)

        def _remove() -> None:
            with self._lock:
                try:
                    self._listeners.remove(entry)
                except ValueError:
                    pass

        return Subscription(_remove)

    def dispatch(self, value: T) -> None:
        with self._dispatch_lock:
            with self._lock:
                listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(value)
                except Exception:
                    logger.exception("Error in %s listener", self._name)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)


__all__ = ["ListenerRegistry", "Subscription", "Listener"]
