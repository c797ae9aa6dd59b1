"""Tests for conflux.textual — Textual integration layer."""

import threading

import pytest
from textual.css.query import NoMatches

from conflux import Tree
from conflux import textual as stx


class _MockApp:
    """Minimal mock matching the Textual App interface stx needs."""

    def __init__(self, *, is_running=True):
        self.is_running = is_running
        self._call_from_thread_log = []

    def call_from_thread(self, fn, *args):
        self._call_from_thread_log.append((fn, args))
        fn(*args)


def _combination():
    tree = Tree({"a": 0, "b": 0})
    return tree, tree.select("a").or_(tree.select("b"))


class TestSubscribe:
    def test_skips_when_not_running(self):
        app = _MockApp(is_running=False)
        tree, comb = _combination()
        log = []
        stx.subscribe(app, comb, lambda: log.append(True))
        tree.set("a", 1)
        assert log == []

    def test_skips_during_pause(self):
        app = _MockApp()
        tree, comb = _combination()
        log = []
        stx.subscribe(app, comb, lambda: log.append(True))
        with stx.pause(app):
            tree.set("a", 1)
        assert log == []

    def test_fires_when_safe(self):
        app = _MockApp()
        tree, comb = _combination()
        log = []
        stx.subscribe(app, comb, lambda: log.append(True))
        tree.set("b", 1)
        assert log == [True]

    def test_works_with_cursor(self):
        app = _MockApp()
        tree = Tree({"a": 0})
        log = []
        stx.subscribe(app, tree.select("a"), lambda: log.append(True))
        tree.set("a", 1)
        assert log == [True]

    def test_catches_nomatch(self):
        """NoMatches from widget queries are silently swallowed."""
        app = _MockApp()
        tree, comb = _combination()

        def _raise_nomatch():
            raise NoMatches("StatusFooter")

        # Should not raise
        stx.subscribe(app, comb, _raise_nomatch)
        tree.set("a", 1)

    def test_propagates_real_errors(self):
        """Non-NoMatches exceptions propagate normally."""
        app = _MockApp()
        tree, comb = _combination()

        def _raise_value_error():
            raise ValueError("boom")

        stx.subscribe(app, comb, _raise_value_error)
        with pytest.raises(ValueError, match="boom"):
            tree.set("a", 1)

    def test_disposer_stops_delivery(self):
        app = _MockApp()
        tree, comb = _combination()
        log = []
        unsub = stx.subscribe(app, comb, lambda: log.append(True))
        tree.set("a", 1)
        unsub()
        tree.set("a", 2)
        assert log == [True]

    def test_thread_marshal(self):
        """Updates from a background thread use call_from_thread."""
        app = _MockApp()
        tree, comb = _combination()
        log = []
        stx.subscribe(app, comb, lambda: log.append(True))

        t = threading.Thread(target=lambda: tree.set("a", 1))
        t.start()
        t.join()

        assert log == [True]
        assert len(app._call_from_thread_log) == 1


class TestPause:
    def test_pause_restores_on_exception(self):
        app = _MockApp()
        assert stx.is_safe(app)

        with pytest.raises(RuntimeError):
            with stx.pause(app):
                assert not stx.is_safe(app)
                raise RuntimeError("oops")

        # Restored despite exception
        assert stx.is_safe(app)

    def test_pause_does_not_mutate_app(self):
        app = _MockApp()
        attrs_before = set(vars(app))
        with stx.pause(app):
            attrs_during = set(vars(app))
        assert attrs_before == attrs_during == set(vars(app))

    def test_multiple_apps_independent(self):
        """Pausing one app does not affect another."""
        app_a = _MockApp()
        app_b = _MockApp()
        with stx.pause(app_a):
            assert not stx.is_safe(app_a)
            assert stx.is_safe(app_b)
