"""Computed values — derived state with automatic dependency tracking.

A Computed wraps a getter in a lazy effect. When read, it runs the getter
(tracking what it reads) and caches the result. When any dependency changes,
its scheduler only marks it dirty and notifies whoever read ``.value``;
recomputation waits until the next read.

A computed is itself a source: readers of ``.value`` depend on it exactly as
they would on a reactive field named ``"value"``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from keyflow._store import TriggerKind
from keyflow.effect import ReactiveEffect

if TYPE_CHECKING:
    from keyflow._tracking import Runtime

T = TypeVar("T")

_UNSET = object()


class Computed(Generic[T]):
    """A derived value that auto-tracks dependencies and caches the result."""

    __slots__ = ("_rt", "_effect", "_value", "_dirty", "__weakref__")

    __keyflow_skip__ = True

    def __init__(self, rt: Runtime, getter: Callable[[], T]) -> None:
        self._rt = rt
        self._value = _UNSET
        self._dirty = True
        self._effect = ReactiveEffect(rt, getter, scheduler=self._invalidate)

    @property
    def value(self) -> T:
        """Read the computed value. Recomputes if dirty.

        A getter that raises propagates to the reader and leaves the value
        dirty, so the next read retries.
        """
        if self._dirty:
            self._value = self._effect.run()
            self._dirty = False
        self._rt.track(self, "value")
        return self._value

    def get(self) -> T:
        return self.value

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def effect(self) -> ReactiveEffect:
        return self._effect

    def _invalidate(self, _effect: ReactiveEffect) -> None:
        """Scheduler: a dependency changed. Mark dirty and notify readers; don't recompute."""
        if not self._dirty:
            self._dirty = True
            self._rt.trigger(self, "value", TriggerKind.SET)

    def stop(self) -> None:
        """Disconnect from all dependencies. The next read re-evaluates untracked."""
        self._effect.stop()
        self._dirty = True
        self._value = _UNSET

    def __repr__(self) -> str:
        state = "dirty" if self._dirty else f"cached={self._value!r}"
        name = getattr(self._effect.fn, "__name__", "getter")
        return f"Computed({name}, {state})"
