"""Effects — computations that re-run when what they read changes.

An effect is the unit of dependency tracking. While it runs, it is the
runtime's current reader: every reactive read registers it as a dependent.
Before each run it detaches from everything it read last time, so a branch
that is no longer taken stops re-triggering it.

A scheduler decides *when* a notified effect runs. Without one it runs
synchronously inside the write that notified it; with ``rt.queue_job`` it
runs once at the next flush no matter how often it was notified.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, TypeVar

if TYPE_CHECKING:
    from keyflow._store import Dep
    from keyflow._tracking import Runtime

T = TypeVar("T")

Scheduler = Callable[["ReactiveEffect"], Any]


class ReactiveEffect:
    """A re-runnable computation with its current dependency memberships."""

    __slots__ = ("fn", "scheduler", "deps", "active", "_rt", "__weakref__")

    __keyflow_skip__ = True

    def __init__(
        self,
        rt: Runtime,
        fn: Callable[[], T],
        scheduler: Scheduler | None = None,
    ) -> None:
        self._rt = rt
        self.fn = fn
        self.scheduler = scheduler
        # Every Dep this effect joined during its last run, for O(k) cleanup.
        self.deps: list[Dep] = []
        self.active = True

    def run(self) -> Any:
        """Re-run the body, re-tracking its dependencies from scratch."""
        if not self.active:
            return self.fn()
        self._cleanup()
        with self._rt._running(self):
            return self.fn()

    __call__ = run

    def _cleanup(self) -> None:
        store = self._rt.store
        for dep in self.deps:
            store.detach(dep, self)
        self.deps.clear()

    def stop(self) -> None:
        """Detach from every dependency. The effect never re-runs on its own again."""
        if self.active:
            self._cleanup()
            self.active = False

    def __repr__(self) -> str:
        state = "active" if self.active else "stopped"
        name = getattr(self.fn, "__name__", repr(self.fn))
        return f"ReactiveEffect({name}, {state}, deps={len(self.deps)})"


def effect(
    rt: Runtime,
    fn: Callable[[], Any],
    *,
    scheduler: Scheduler | None = None,
    lazy: bool = False,
) -> ReactiveEffect:
    """Create an effect and, unless ``lazy``, run it once to collect dependencies.

    Returns the effect (call .stop() to detach, or call it to re-run by hand).

    Usage:
        state = rt.reactive({"count": 0})
        log = []

        runner = rt.effect(lambda: log.append(state["count"]))
        # log == [0] — ran immediately

        state["count"] = 1
        # log == [0, 1] — re-ran because count changed

        runner.stop()
        state["count"] = 2
        # log == [0, 1] — stopped
    """
    runner = ReactiveEffect(rt, fn, scheduler)
    if not lazy:
        runner.run()
    return runner
