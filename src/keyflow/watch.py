"""watch() — run a side-effect callback with the previous and next value.

The watched source is a getter, a ref/computed, or a whole reactive
container (traversed deeply, so any nested mutation counts). The callback
receives ``(new, old, on_invalidate)``. Registering an invalidation callback
through ``on_invalidate`` lets asynchronous work started by one run find out
it was superseded: the callback fires right before the next run's callback.

Returns a WatchHandle for cleanup via .stop().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from keyflow.computed import Computed
from keyflow.effect import ReactiveEffect
from keyflow.reactive import ReactiveBase, own_keys, to_raw
from keyflow.refs import FieldRef, Ref

if TYPE_CHECKING:
    from keyflow._tracking import Runtime

Invalidate = Callable[[], Any]
WatchCallback = Callable[[Any, Any, Callable[[Invalidate], None]], Any]

FLUSH_MODES = ("sync", "pre", "post")


def traverse(value: Any, seen: set[int] | None = None) -> Any:
    """Read every nested field of a reactive value, so a running effect depends on all of it.

    Each container is visited once (by raw identity), which also makes
    reference cycles safe. Non-container values are returned untouched.
    """
    if seen is None:
        seen = set()
    if not isinstance(value, ReactiveBase):
        return value
    raw_id = id(to_raw(value))
    if raw_id in seen:
        return value
    seen.add(raw_id)
    raw = to_raw(value)
    if isinstance(raw, list):
        for item in value:
            traverse(item, seen)
    elif isinstance(raw, set):
        for item in value:
            traverse(item, seen)
    elif isinstance(raw, dict):
        for _key, item in value.items():
            traverse(item, seen)
    else:
        for key in own_keys(value):
            traverse(getattr(value, key), seen)
    return value


class WatchHandle:
    """Disposable handle for a watcher."""

    __slots__ = ("_effect",)

    def __init__(self, effect: ReactiveEffect) -> None:
        self._effect = effect

    @property
    def stopped(self) -> bool:
        return not self._effect.active

    def stop(self) -> None:
        """Detach the watcher. Pending invalidation callbacks are not called."""
        self._effect.stop()

    __call__ = stop


def watch(
    rt: Runtime,
    source: Any,
    callback: WatchCallback,
    *,
    immediate: bool = False,
    flush: str = "sync",
) -> WatchHandle:
    """Call ``callback(new, old, on_invalidate)`` whenever ``source`` changes.

    flush:
        "sync" — run at the moment of the write.
        "pre"  — queue on the runtime's job queue (once per flush).
        "post" — queue after every pre-flush job of the same flush.

    Usage:
        state = rt.reactive({"query": ""})

        def search(new, old, on_invalidate):
            expired = False

            def invalidate():
                nonlocal expired
                expired = True

            on_invalidate(invalidate)
            start_request(new, done=lambda rows: None if expired else show(rows))

        handle = rt.watch(lambda: state["query"], search)
    """
    if flush not in FLUSH_MODES:
        raise ValueError(f"flush must be one of {FLUSH_MODES}, got {flush!r}")

    if isinstance(source, (Ref, FieldRef, Computed)):
        def getter() -> Any:
            return source.value
    elif isinstance(source, ReactiveBase):
        def getter() -> Any:
            return traverse(source)
    elif callable(source):
        getter = source
    else:
        raise TypeError(
            f"watch() source must be a getter, a ref or a reactive container, "
            f"not {type(source).__name__}"
        )

    old_value: Any = None
    # Exactly one invalidation callback is pending at a time; the last one registered wins.
    cleanup: Invalidate | None = None

    def on_invalidate(fn: Invalidate) -> None:
        nonlocal cleanup
        cleanup = fn

    def job() -> None:
        nonlocal old_value, cleanup
        if not runner.active:
            return
        new_value = runner.run()
        if cleanup is not None:
            pending, cleanup = cleanup, None
            pending()
        callback(new_value, old_value, on_invalidate)
        old_value = new_value

    def scheduler(_effect: ReactiveEffect) -> None:
        if flush == "sync":
            job()
        elif flush == "pre":
            rt.queue_job(job)
        else:
            rt.queue_post_flush(job)

    runner = ReactiveEffect(rt, getter, scheduler=scheduler)

    if immediate:
        job()
    else:
        old_value = runner.run()

    return WatchHandle(runner)
