"""Textual integration for conflux. Opt-in — requires textual.

Delivers cursor or combination updates to a Textual app. Updates are skipped
while the app is not running or while its widget tree is being replaced,
NoMatches from widget queries is swallowed, and calls arriving on another
thread are marshaled through call_from_thread. The pause state is owned by
this module and keyed by id(app); nothing is set on the app itself.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

# Module-owned pause state — keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded handlers during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def subscribe(app, source, handler):
    """Subscribe handler to a cursor or combination, guarded for Textual.

    Returns the disposer from ``source.subscribe``.

    Usage:
        ready = tree.select("config").and_(tree.select("session"))
        stx.subscribe(app, ready, lambda: app.query_one(StatusBar).refresh())
    """
    _main = threading.get_ident()

    def _guarded(*args):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, *args)
        else:
            _safe(*args)

    def _safe(*args):
        try:
            handler(*args)
        except NoMatches:
            pass

    return source.subscribe(_guarded)
