"""Tree and Cursor — the data that combinations watch.

A Tree holds nested dict/list data and a single ``root`` stream. Cursors are
handles on a path inside the tree; each has its own update stream.

Every effective write belongs to a round. When the round commits, each cursor
whose path is related to a changed path (ancestor, descendant or the path
itself) emits first, then ``root`` emits exactly once with the changed paths.
Combinations rely on that order: source flags are in place before the root
signal asks for evaluation.

Writes outside a transaction commit immediately. Inside ``tree.transaction()``
they accumulate and commit once, when the outermost scope exits.

Thread safety: call set_scheduler() once from the owning thread. After that,
any write from a background thread is auto-marshaled. Owning-thread writes
remain synchronous.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from conflux.combination import Combination, Operator
from conflux.stream import Callback, Disposer, EventStream

logger = logging.getLogger("conflux.tree")

Path = tuple

_MISSING = object()

# ─── Auto-marshal ────────────────────────────────────────────────────────────
_scheduler = None
_scheduler_thread = None


def set_scheduler(scheduler) -> None:
    """Set the global thread scheduler for cross-thread tree writes.

    Call once from the main/UI thread:
        conflux.set_scheduler(app.call_from_thread)

    After this, any Tree.set() or Tree.unset() from a background thread is
    marshaled through ``scheduler``. Main-thread writes remain synchronous.
    """
    global _scheduler, _scheduler_thread
    _scheduler = scheduler
    _scheduler_thread = threading.current_thread()


def _marshal(fn: Callable[[], None]) -> None:
    if _scheduler is not None and threading.current_thread() != _scheduler_thread:
        _scheduler(fn)
    else:
        fn()


def _as_path(path) -> Path:
    if isinstance(path, (tuple, list)):
        return tuple(path)
    return (path,)


def _related(a: Path, b: Path) -> bool:
    """True when one path is a prefix of the other."""
    n = min(len(a), len(b))
    return a[:n] == b[:n]


def _lookup(node, key):
    if isinstance(node, dict):
        return node.get(key, _MISSING)
    if isinstance(node, list):
        try:
            return node[key]
        except IndexError:
            return _MISSING
    raise TypeError(f"cannot address {key!r} inside {type(node).__name__}")


def _assign(node, key, value) -> None:
    if isinstance(node, list) and key == len(node):
        node.append(value)
    elif isinstance(node, (dict, list)):
        node[key] = value
    else:
        raise TypeError(f"cannot assign {key!r} inside {type(node).__name__}")


class Tree:
    """Nested data with a root dispatcher that fires once per round."""

    def __init__(self, data: Any = None) -> None:
        self._data = {} if data is None else data
        self._root = EventStream()
        self._cursors: dict[Path, Cursor] = {}
        self._batch_depth = 0
        self._pending: list[Path] = []
        self._committing = False

    @property
    def root(self) -> EventStream:
        """Fires once per round, after every affected cursor has fired."""
        return self._root

    # --- Reads ---

    def get(self, path=()) -> Any:
        node = self._data
        for key in _as_path(path):
            node = node[key]
        return node

    def select(self, *path) -> Cursor:
        """Return the cursor for path, creating it on first use.

        Accepts either discrete keys (``select("a", 0)``) or a single
        tuple/list (``select(("a", 0))``).
        """
        if len(path) == 1 and isinstance(path[0], (tuple, list)):
            path = tuple(path[0])
        cursor = self._cursors.get(path)
        if cursor is None:
            cursor = Cursor(self, path)
            self._cursors[path] = cursor
        return cursor

    # --- Writes ---

    def set(self, path, value: Any) -> None:
        """Write value at path. Auto-marshals from background threads."""
        _marshal(lambda p=path, v=value: self._set_direct(_as_path(p), v))

    def unset(self, path) -> None:
        """Remove the value at path. Missing paths are ignored."""
        _marshal(lambda p=path: self._unset_direct(_as_path(p)))

    def _set_direct(self, path: Path, value: Any) -> None:
        if not path:
            old = self._data
            if old is value or old == value:
                return
            self._data = value
        else:
            parent = self._walk(path[:-1])
            old = _lookup(parent, path[-1])
            if old is not _MISSING and (old is value or old == value):
                return
            _assign(parent, path[-1], value)
        self._changed(path)

    def _unset_direct(self, path: Path) -> None:
        if not path:
            raise ValueError("cannot unset the tree root")
        try:
            parent = self.get(path[:-1])
        except (KeyError, IndexError):
            return
        if _lookup(parent, path[-1]) is _MISSING:
            return
        del parent[path[-1]]
        self._changed(path)

    def _walk(self, path: Path):
        """Descend to path, creating missing dict levels on the way."""
        node = self._data
        for key in path:
            child = _lookup(node, key)
            if child is _MISSING:
                if not isinstance(node, dict):
                    raise IndexError(f"list index {key!r} out of range")
                child = node[key] = {}
            node = child
        return node

    # --- Rounds ---

    @contextmanager
    def transaction(self) -> Iterator[Tree]:
        """Batch writes into one round. Nested transactions are supported.

        Usage:
            with tree.transaction():
                tree.set("a", 1)
                tree.set("b", 2)
                # cursors and root fire here, once
        """
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and not self._committing:
                self._commit()

    def _changed(self, path: Path) -> None:
        if path not in self._pending:
            self._pending.append(path)
        if self._batch_depth == 0 and not self._committing:
            self._commit()

    def _commit(self) -> None:
        """Run rounds until no writes are pending.

        Writes made by listeners during a round are queued for the next one.
        A round is always closed by ``root``, even when a cursor listener
        raises, so flags gathered in it never leak into the next round.
        """
        self._committing = True
        try:
            while self._pending:
                # Listeners may write during the round.
                paths = tuple(self._pending)
                self._pending.clear()
                logger.debug("Committing round: %r", paths)
                try:
                    for cursor in list(self._cursors.values()):
                        if any(_related(cursor.path, p) for p in paths):
                            cursor._updates.emit()
                finally:
                    self._root.emit(paths)
        finally:
            self._committing = False

    def __repr__(self) -> str:
        return f"Tree({self._data!r})"


class Cursor:
    """A handle on one path of a Tree. Emits when that path is affected."""

    __slots__ = ("_tree", "_path", "_updates")

    def __init__(self, tree: Tree, path: Path) -> None:
        self._tree = tree
        self._path = path
        self._updates = EventStream()

    @property
    def tree(self) -> Tree:
        return self._tree

    @property
    def path(self) -> Path:
        return self._path

    @property
    def root(self) -> EventStream:
        return self._tree.root

    def get(self) -> Any:
        return self._tree.get(self._path)

    def set(self, value: Any) -> None:
        self._tree.set(self._path, value)

    def unset(self) -> None:
        self._tree.unset(self._path)

    def select(self, *subpath) -> Cursor:
        if len(subpath) == 1 and isinstance(subpath[0], (tuple, list)):
            subpath = tuple(subpath[0])
        return self._tree.select(self._path + tuple(subpath))

    # --- Source capability ---

    def subscribe(self, callback: Callback) -> Disposer:
        return self._updates.subscribe(callback)

    def subscribe_once(self, callback: Callback) -> Disposer:
        return self._updates.subscribe_once(callback)

    def unsubscribe(self, callback: Callback) -> None:
        self._updates.unsubscribe(callback)

    # --- Combinations ---

    def and_(self, other) -> Combination:
        """Combination firing when this cursor and other update in one round."""
        return Combination(Operator.AND, self, other)

    def or_(self, other) -> Combination:
        """Combination firing when this cursor or other updates in a round."""
        return Combination(Operator.OR, self, other)

    def release(self) -> None:
        """Forget this cursor. The tree hands out a fresh one on next select()."""
        if self._tree._cursors.get(self._path) is self:
            del self._tree._cursors[self._path]
        self._updates.dispose()

    def __repr__(self) -> str:
        return f"Cursor({self._path!r})"
