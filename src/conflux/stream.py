"""Push-based event stream — the emitter every other module builds on.

Subscribers are plain callables. emit() walks a snapshot of the subscriber
list, so callbacks may subscribe or unsubscribe while an emission is in
flight; changes apply from the next emission on. dispose() tears the stream
down for good.
"""

from __future__ import annotations

from typing import Callable

Callback = Callable[..., None]
Disposer = Callable[[], None]

# (callback as registered, callable actually invoked on emit)
_Entry = tuple[Callback, Callback]


def _noop() -> None:
    pass


class EventStream:
    """Push-based event stream with by-reference unsubscription."""

    def __init__(self) -> None:
        self._subscribers: list[_Entry] = []
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def has_subscriber(self, callback: Callback) -> bool:
        return any(cb == callback for cb, _ in self._subscribers)

    def emit(self, *args) -> None:
        """Push args to all subscribers."""
        if self._disposed:
            return
        for _, invoke in list(self._subscribers):
            invoke(*args)

    def subscribe(self, callback: Callback) -> Disposer:
        """Register a callback. Returns a function that removes it."""
        return self._add((callback, callback))

    def subscribe_once(self, callback: Callback) -> Disposer:
        """Register a callback that is removed before its first call.

        unsubscribe(callback) removes it like any other subscriber.
        """
        entry = None

        def _once(*args) -> None:
            if self._remove(entry):
                callback(*args)

        entry = (callback, _once)
        return self._add(entry)

    def ensure_subscribed(self, callback: Callback) -> bool:
        """Subscribe callback unless it already is. Returns True if added."""
        if self._disposed or self.has_subscriber(callback):
            return False
        self._subscribers.append((callback, callback))
        return True

    def unsubscribe(self, callback: Callback) -> None:
        """Remove the earliest subscription of callback, once or not."""
        for entry in self._subscribers:
            if entry[0] == callback:
                self._remove(entry)
                return

    def dispose(self) -> None:
        """Drop every subscriber. Later emits and subscribes are no-ops."""
        self._disposed = True
        self._subscribers.clear()

    def _add(self, entry: _Entry) -> Disposer:
        if self._disposed:
            return _noop
        self._subscribers.append(entry)

        def _unsubscribe() -> None:
            self._remove(entry)

        return _unsubscribe

    def _remove(self, entry: _Entry) -> bool:
        for i, existing in enumerate(self._subscribers):
            if existing is entry:
                del self._subscribers[i]
                return True
        return False  # already removed

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else f"{len(self._subscribers)} subscribers"
        return f"EventStream({state})"
