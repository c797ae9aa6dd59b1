"""Combinations — one update event for an AND/OR chain of sources.

A Combination watches several sources that share one root dispatcher. During
a round every source that fires gets its flag raised. When the root fires,
the flags are folded strictly left to right through the operators:

    ((s0 OP0 s1) OP1 s2) OP2 s3 ...

There is no precedence between ``and`` and ``or``. If the fold is true the
combination emits a zero-argument update. Flags are cleared before that
emission, so the next round always starts clean.

Nothing is attached to the sources or the root until the combination gets its
first subscriber. A combination that is built but never observed costs its
sources nothing.

A failed append releases the whole combination before raising. Once released,
every operation is a no-op.
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import partial
from typing import Any, NoReturn, Protocol, Sequence, runtime_checkable

from conflux.stream import Callback, Disposer, EventStream

logger = logging.getLogger("conflux.combination")


class CombinationError(ValueError):
    """Raised for a malformed combination expression."""


class Operator(str, Enum):
    AND = "and"
    OR = "or"


@runtime_checkable
class Source(Protocol):
    """Anything a combination can watch.

    ``root`` is the dispatcher that fires once per round, after every source
    that fired in the round has notified its own subscribers.
    """

    root: Any

    def subscribe(self, callback: Callback) -> Disposer: ...

    def unsubscribe(self, callback: Callback) -> None: ...


def fold(flags: Sequence[bool], operators: Sequence[Operator]) -> bool:
    """Left-to-right fold of flags through operators.

    ``operators[i]`` joins the running result with ``flags[i + 1]``.
    """
    result = bool(flags[0])
    for op, flag in zip(operators, flags[1:]):
        if op is Operator.OR:
            result = result or bool(flag)
        else:
            result = result and bool(flag)
    return result


_MISSING = object()


def _noop() -> None:
    pass


def _operator(value) -> Operator:
    try:
        return Operator(value)
    except ValueError:
        raise CombinationError(f"invalid operator: {value!r}") from None


class Combination:
    """Fires when an AND/OR chain of source updates holds for a round.

    Usage:
        tree = Tree({"a": 0, "b": 0, "c": 0})
        a, b, c = tree.select("a"), tree.select("b"), tree.select("c")

        both = Combination("and", a, b).or_(c)   # (a and b) or c
        both.subscribe(lambda: print("fired"))

        with tree.transaction():
            tree.set("a", 1)
            tree.set("b", 1)
        # prints "fired" once
    """

    def __init__(self, operator=_MISSING, *sources) -> None:
        self._sources: list | None = None
        self._operators: list[Operator] | None = None
        self._flags: list[bool] | None = None
        self._listeners: list[Callback] | None = None
        self._root = None
        self._bound = False
        self._released = False
        self._updates = EventStream()

        if operator is _MISSING or not sources:
            raise CombinationError("not enough arguments")

        first, rest = sources[0], sources[1:]
        if isinstance(first, (list, tuple)):
            if not first:
                raise CombinationError("not enough arguments")
            first, rest = first[0], tuple(first[1:])

        if not isinstance(first, Source):
            raise CombinationError(f"argument should be a source, got {first!r}")

        operator = _operator(operator)

        self._sources = [first]
        self._operators = []
        self._flags = [False]
        self._listeners = [partial(self._mark, 0)]
        self._root = first.root

        for source in rest:
            self._append(operator, source)

    # --- Introspection ---

    @property
    def sources(self) -> tuple:
        return tuple(self._sources) if self._sources is not None else ()

    @property
    def operators(self) -> tuple[Operator, ...]:
        return tuple(self._operators) if self._operators is not None else ()

    @property
    def bound(self) -> bool:
        return self._bound

    @property
    def released(self) -> bool:
        return self._released

    # --- Building ---

    def and_(self, source) -> Combination:
        """Append source joined with ``and``. Returns self."""
        return self._append(Operator.AND, source)

    def or_(self, source) -> Combination:
        """Append source joined with ``or``. Returns self."""
        return self._append(Operator.OR, source)

    def _append(self, operator: Operator, source) -> Combination:
        if self._released:
            return self

        if not isinstance(source, Source):
            self._fail(f"{operator.value}: argument should be a source, got {source!r}")
        if any(s is source for s in self._sources):
            self._fail(f"{operator.value}: {source!r} already in combination")
        if source.root is not self._root:
            self._fail(f"{operator.value}: {source!r} does not share the combination's root")

        index = len(self._sources)
        self._sources.append(source)
        self._operators.append(operator)
        self._flags.append(False)
        self._listeners.append(partial(self._mark, index))

        if self._bound:
            self._bind_source(index)
        return self

    def _fail(self, message: str) -> NoReturn:
        logger.warning("Releasing combination after invalid append: %s", message)
        self.release()
        raise CombinationError(message)

    # --- Subscribing ---

    def subscribe(self, callback: Callback) -> Disposer:
        """Register a zero-argument callback. The first call binds the sources."""
        if self._released:
            return _noop
        self._bind()
        return self._updates.subscribe(callback)

    def subscribe_once(self, callback: Callback) -> Disposer:
        if self._released:
            return _noop
        self._bind()
        return self._updates.subscribe_once(callback)

    def unsubscribe(self, callback: Callback) -> None:
        self._updates.unsubscribe(callback)

    def _bind(self) -> None:
        if self._bound:
            return
        self._bound = True
        for index in range(len(self._sources)):
            self._bind_source(index)
        logger.debug("Bound combination to %d source(s)", len(self._sources))

    def _bind_source(self, index: int) -> None:
        self._sources[index].subscribe(self._listeners[index])
        self._root.ensure_subscribed(self._on_root)

    # --- Rounds ---

    def _mark(self, index: int, *args) -> None:
        if self._released:
            return
        self._flags[index] = True

    def _on_root(self, *args) -> None:
        if self._released:
            return
        should_fire = fold(self._flags, self._operators)
        # Waiting for next round
        self._flags = [False] * len(self._sources)
        if should_fire:
            self._updates.emit()

    # --- Teardown ---

    def release(self) -> None:
        """Detach every listener and drop all references. Idempotent."""
        if self._released:
            return
        self._released = True

        if self._bound:
            for source, listener in zip(self._sources, self._listeners):
                source.unsubscribe(listener)
            self._root.unsubscribe(self._on_root)

        self._sources = None
        self._operators = None
        self._flags = None
        self._listeners = None
        self._root = None

        self._updates.dispose()
        logger.debug("Released combination")

    def __repr__(self) -> str:
        if self._released:
            return "Combination(released)"
        parts = [repr(self._sources[0])]
        for op, source in zip(self._operators, self._sources[1:]):
            parts.append(f"{op.value} {source!r}")
        state = "bound" if self._bound else "unbound"
        return f"Combination({' '.join(parts)}, {state})"
