"""Textual integration for keyflow. Opt-in — requires textual.

TextualHost carries out reconciliation operations on a Textual container
widget, so a keyed region can render straight into a widget tree.
``effect`` is an effect that is safe to point at widgets: it sits out while
the app is not running or is mid-rebuild, ignores widgets that are gone, and
hops to the app thread when notified from elsewhere.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, Hashable

from textual.css.query import NoMatches
from textual.widget import Widget

from keyflow._tracking import Runtime
from keyflow.effect import ReactiveEffect, Scheduler

# Module-owned pause state — keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded effects during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def effect(rt: Runtime, app, fn: Callable[[], Any], *, scheduler: Scheduler | None = None) -> ReactiveEffect:
    """rt.effect() that safely bridges to Textual widgets.

    Guards against running during pause/not-running, catches NoMatches
    from widget queries, and marshals cross-thread runs via call_from_thread.
    A marshaled run re-runs the whole effect on the app thread, so ``fn``
    is tracked again there. A run skipped by the guard tracks nothing, so
    the effect only wakes up again once something it read before the skip
    changes.
    """
    _main = threading.get_ident()
    marshaled = False

    def _on_app_thread():
        nonlocal marshaled
        if not runner.active:
            return
        # call_from_thread may invoke this before returning, on the caller's thread.
        marshaled = True
        try:
            runner.run()
        finally:
            marshaled = False

    def _guarded():
        if not is_safe(app):
            return
        if threading.get_ident() != _main and not marshaled:
            app.call_from_thread(_on_app_thread)
            return
        try:
            fn()
        except NoMatches:
            pass

    runner = rt.effect(_guarded, scheduler=scheduler)
    return runner


class TextualHost:
    """Applies reconciliation operations to the children of a Textual container.

    ``create(item)`` builds the widget for a newly inserted item;
    ``update(widget, item)``, if given, refreshes a widget whose item was
    patched. Widgets are tracked by item key.
    """

    def __init__(
        self,
        container: Widget,
        create: Callable[[Any], Widget],
        update: Callable[[Widget, Any], None] | None = None,
    ) -> None:
        self.container = container
        self._create = create
        self._update = update
        self.widgets: dict[Hashable, Widget] = {}

    def _anchor(self, anchor: Any) -> Widget | None:
        return None if anchor is None else self.widgets[anchor.key]

    def patch(self, old: Any, new: Any) -> None:
        if self._update is not None:
            self._update(self.widgets[new.key], new)

    def insert(self, item: Any, anchor: Any) -> None:
        widget = self._create(item)
        self.widgets[item.key] = widget
        before = self._anchor(anchor)
        if before is None:
            self.container.mount(widget)
        else:
            self.container.mount(widget, before=before)

    def move(self, item: Any, anchor: Any) -> None:
        widget = self.widgets[item.key]
        before = self._anchor(anchor)
        if before is not None:
            self.container.move_child(widget, before=before)
            return
        last = self.container.children[-1]
        if last is not widget:
            self.container.move_child(widget, after=last)

    def remove(self, item: Any) -> None:
        self.widgets.pop(item.key).remove()
