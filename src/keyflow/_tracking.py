"""Dependency tracking engine — the heart of keyflow.

A Runtime owns everything the engine mutates: the dependency store, the stack
of currently running effects, the tracking switch, the wrapper caches and the
job queues. Nothing is module-global; every entry point receives the runtime
it operates on, so two runtimes never see each other's subscribers.

Tracking: while an effect runs it sits on top of the stack, and every read of
a reactive source registers it against ``(source, key)``. Writes look up those
registrations and hand each effect to its scheduler, or run it in place.

Batching: ``queue_job`` is the deduplicating scheduler. Jobs queued during one
synchronous turn run once each, in first-queued order, when ``flush()`` is
pumped, either by the host or through the ``defer`` hook given at
construction (for asyncio: ``Runtime(defer=loop.call_soon)``).
"""

from __future__ import annotations

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Hashable, Iterator

from keyflow._store import (
    ITERATE_KEY,
    LENGTH,
    MAP_KEY_ITERATE_KEY,
    DependencyStore,
    TriggerKind,
)
from keyflow import reactive as _reactive
from keyflow.computed import Computed
from keyflow.effect import ReactiveEffect, effect as _effect
from keyflow.refs import ProxyRefs, Ref, to_ref as _to_ref, to_refs as _to_refs
from keyflow.region import keyed_region as _keyed_region
from keyflow.watch import WatchHandle, watch as _watch

if TYPE_CHECKING:
    from keyflow.reconcile import Host

logger = logging.getLogger("keyflow.tracking")

Job = Callable[[], Any]

# A flush that keeps re-queueing work past this many rounds is an update cycle.
MAX_FLUSH_ITERATIONS = 100


def _requeue_front(queue: dict[Job, None], jobs: list[Job]) -> None:
    pending = dict.fromkeys(jobs)
    pending.update(queue)
    queue.clear()
    queue.update(pending)


class Runtime:
    """Owner of all reactive state for one logical UI thread."""

    def __init__(
        self,
        store: DependencyStore | None = None,
        *,
        defer: Callable[[Job], Any] | None = None,
    ) -> None:
        self.store = store if store is not None else DependencyStore()
        self._defer = defer
        self._stack: list[ReactiveEffect] = []
        self._should_track = True

        # Insertion-ordered dedup sets (dict keys).
        self._queue: dict[Job, None] = {}
        self._post_queue: dict[Job, None] = {}
        self._flush_pending = False
        self._flushing = False

        # One wrapper per raw object and mode: id(raw) -> wrapper.
        self._caches: dict[tuple[bool, bool], weakref.WeakValueDictionary] = {
            (shallow, readonly): weakref.WeakValueDictionary()
            for shallow in (False, True)
            for readonly in (False, True)
        }

        self._owner_thread = threading.current_thread()
        self._thread_scheduler: Callable[[Job], Any] | None = None

    # ─── Tracking ────────────────────────────────────────────────────────

    @property
    def active_effect(self) -> ReactiveEffect | None:
        """The effect currently executing, if any."""
        return self._stack[-1] if self._stack else None

    @property
    def should_track(self) -> bool:
        return self._should_track

    def track(self, target: object, key: Hashable) -> None:
        """Register the running effect as a reader of ``(target, key)``."""
        if not self._stack or not self._should_track:
            return
        effect = self._stack[-1]
        dep = self.store.get_or_create(target, key)
        if effect not in dep:
            dep[effect] = None
            effect.deps.append(dep)

    def trigger(
        self,
        target: object,
        key: Hashable,
        kind: TriggerKind = TriggerKind.SET,
        new_value: Any = None,
    ) -> None:
        """Notify every effect that depends on ``(target, key)`` for this kind of write."""
        if (
            self._thread_scheduler is not None
            and threading.current_thread() is not self._owner_thread
        ):
            self._thread_scheduler(lambda: self.trigger(target, key, kind, new_value))
            return

        deps_map = self.store.deps_for(target)
        if deps_map is None:
            return

        active = self.active_effect
        to_run: dict[ReactiveEffect, None] = {}

        def collect(dep_key: Hashable) -> None:
            dep = deps_map.get(dep_key)
            if not dep:
                return
            for effect in dep:
                if effect is not active:
                    to_run[effect] = None

        is_map = isinstance(target, dict)
        is_list = isinstance(target, list)

        if kind is TriggerKind.CLEAR:
            for dep_key in list(deps_map):
                collect(dep_key)
        else:
            collect(key)
            if kind in (TriggerKind.ADD, TriggerKind.DELETE) or (
                kind is TriggerKind.SET and is_map
            ):
                collect(ITERATE_KEY)
            if kind in (TriggerKind.ADD, TriggerKind.DELETE) and is_map:
                collect(MAP_KEY_ITERATE_KEY)
            if is_list and kind is TriggerKind.ADD:
                collect(LENGTH)
            if is_list and key == LENGTH:
                for dep_key in list(deps_map):
                    if isinstance(dep_key, int) and dep_key >= new_value:
                        collect(dep_key)

        for effect in to_run:
            # An earlier subscriber may have stopped this one.
            if not effect.active:
                continue
            if effect.scheduler is not None:
                effect.scheduler(effect)
            else:
                effect.run()

    @contextmanager
    def pause_tracking(self) -> Iterator[None]:
        """Suspend dependency registration for the enclosed reads."""
        previous = self._should_track
        self._should_track = False
        try:
            yield
        finally:
            self._should_track = previous

    @contextmanager
    def _running(self, effect: ReactiveEffect) -> Iterator[None]:
        """Make ``effect`` the current reader (nested runs restore the outer one)."""
        previous = self._should_track
        self._should_track = True
        self._stack.append(effect)
        try:
            yield
        finally:
            self._stack.pop()
            self._should_track = previous

    # ─── Scheduling ──────────────────────────────────────────────────────

    def queue_job(self, job: Job) -> None:
        """Batching scheduler: run ``job`` once, at the next flush.

        Usable directly as an effect scheduler: ``rt.effect(fn, scheduler=rt.queue_job)``.
        """
        self._queue[job] = None
        self._request_flush()

    def queue_post_flush(self, job: Job) -> None:
        """Like queue_job, but runs after every pre-flush job of the same flush."""
        self._post_queue[job] = None
        self._request_flush()

    def _request_flush(self) -> None:
        if self._flush_pending or self._flushing:
            return
        self._flush_pending = True
        if self._defer is not None:
            self._defer(self.flush)

    @property
    def has_pending_jobs(self) -> bool:
        return bool(self._queue or self._post_queue)

    def get_pending_count(self) -> int:
        """Number of jobs waiting for the next flush. Useful for testing."""
        return len(self._queue) + len(self._post_queue)

    def flush(self) -> None:
        """Drain the job queues. The one pump call per turn."""
        if self._flushing:
            return
        self._flushing = True
        self._flush_pending = False
        try:
            iterations = 0
            while self._queue or self._post_queue:
                if iterations >= MAX_FLUSH_ITERATIONS:
                    self._queue.clear()
                    self._post_queue.clear()
                    raise RuntimeError(
                        f"Jobs were re-queued for more than {MAX_FLUSH_ITERATIONS} "
                        "rounds in one flush. There is likely an update cycle: an "
                        "effect writes state that re-triggers itself through another effect."
                    )
                iterations += 1
                # Pre-flush jobs first; post-flush jobs only once those settle.
                # Snapshot and clear: jobs may queue new ones while running.
                queue = self._queue if self._queue else self._post_queue
                batch = list(queue)
                queue.clear()
                for position, job in enumerate(batch):
                    try:
                        if getattr(job, "active", True):
                            job()
                    except BaseException:
                        # Jobs behind the failing one still owe their run.
                        _requeue_front(queue, batch[position + 1:])
                        raise
            if iterations > 1:
                logger.debug("flush settled after %d rounds", iterations)
        finally:
            self._flushing = False
            if self._queue or self._post_queue:
                self._request_flush()

    def set_thread_scheduler(self, scheduler: Callable[[Job], Any] | None) -> None:
        """Marshal notifications raised on foreign threads through ``scheduler``.

        Call once from the thread that owns this runtime:
            rt.set_thread_scheduler(app.call_from_thread)

        After this, a write made on another thread still mutates its container
        in place, but the effects it notifies run on the owner thread.
        """
        self._thread_scheduler = scheduler
        self._owner_thread = threading.current_thread()

    # ─── Factories ───────────────────────────────────────────────────────

    def _cached_wrap(self, value: Any, shallow: bool, readonly: bool) -> Any:
        if isinstance(value, _reactive.ReactiveBase):
            # Already wrapped: a readonly request still gets a readonly view.
            if not readonly or _reactive.is_readonly(value):
                return value
            value = _reactive.to_raw(value)
        cache = self._caches[(shallow, readonly)]
        existing = cache.get(id(value))
        if existing is not None and existing._raw is value:
            return existing
        wrapper = _reactive.create_wrapper(self, value, shallow=shallow, readonly=readonly)
        cache[id(value)] = wrapper
        return wrapper

    def reactive(self, value: Any) -> Any:
        """Deeply tracked wrapper for a dict, list, set or record."""
        return self._cached_wrap(value, False, False)

    def shallow_reactive(self, value: Any) -> Any:
        """Tracked wrapper whose nested values are returned unwrapped."""
        return self._cached_wrap(value, True, False)

    def readonly(self, value: Any) -> Any:
        """Deeply read-only wrapper; writes are refused with a warning."""
        return self._cached_wrap(value, False, True)

    def shallow_readonly(self, value: Any) -> Any:
        return self._cached_wrap(value, True, True)

    def effect(
        self,
        fn: Callable[[], Any],
        *,
        scheduler: Callable[[ReactiveEffect], Any] | None = None,
        lazy: bool = False,
    ) -> ReactiveEffect:
        return _effect(self, fn, scheduler=scheduler, lazy=lazy)

    def computed(self, getter: Callable[[], Any]) -> Computed:
        return Computed(self, getter)

    def watch(
        self,
        source: Any,
        callback: Callable[..., Any],
        *,
        immediate: bool = False,
        flush: str = "sync",
    ) -> WatchHandle:
        return _watch(self, source, callback, immediate=immediate, flush=flush)

    def ref(self, value: Any = None) -> Ref:
        return Ref(self, value)

    def shallow_ref(self, value: Any = None) -> Ref:
        return Ref(self, value, shallow=True)

    def to_ref(self, source: Any, key: Hashable) -> Any:
        return _to_ref(source, key)

    def to_refs(self, source: Any) -> dict:
        return _to_refs(source)

    def proxy_refs(self, mapping: Any) -> Any:
        return ProxyRefs(mapping)

    def keyed_region(
        self,
        render: Callable[[], Any],
        host: Host,
        *,
        scheduler: Callable[[ReactiveEffect], Any] | None = None,
    ) -> ReactiveEffect:
        return _keyed_region(self, render, host, scheduler=scheduler)

    def __repr__(self) -> str:
        return (
            f"Runtime(sources={len(self.store)}, active={len(self._stack)}, "
            f"pending={self.get_pending_count()})"
        )
