"""Dependency store — plain Python structures that hold who-reads-what.

Maps a source's identity to a mapping from field key to the set of effects
currently reading that field. Pure bookkeeping: the runtime decides when to
register and whom to notify.

Sources are keyed by ``id()`` because the builtin containers we track
(dict, list, set) cannot be weakly referenced. Each entry pins its source, so
an id can never be reused while it is still a key; entries are pruned as soon
as their last subscriber detaches.
"""

from __future__ import annotations

import enum
import math
from typing import TYPE_CHECKING, Hashable, Iterator

if TYPE_CHECKING:
    from keyflow.effect import ReactiveEffect


class _Marker:
    """Structural dependency key that no real field can collide with."""

    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


# "The set of keys changed" — iteration, len(), own_keys().
ITERATE_KEY = _Marker("ITERATE_KEY")
# "The set of mapping keys changed" — dict.keys() / iterating a dict.
MAP_KEY_ITERATE_KEY = _Marker("MAP_KEY_ITERATE_KEY")
# Lists track their size under a plain string key.
LENGTH = "length"


class TriggerKind(enum.Enum):
    SET = "set"
    ADD = "add"
    DELETE = "delete"
    CLEAR = "clear"


_SCALARS = (int, float, complex, str, bytes, bool, tuple, frozenset, type(None))


def has_changed(old: object, new: object) -> bool:
    """Whether writing ``new`` over ``old`` counts as a change.

    Mutable values compare by identity: swapping in an equal-but-distinct
    container must still notify, because readers track the old container.
    """
    if old is new:
        return False
    if isinstance(old, float) and isinstance(new, float) and math.isnan(old) and math.isnan(new):
        return False
    if isinstance(old, _SCALARS) and type(old) is type(new):
        return old != new
    return True


class Dep(dict):
    """Subscriber set for one ``(source, key)`` pair, in subscription order.

    Keys are the subscribed effects (values unused). Remembers where it
    lives so an effect can detach from it directly and the store can prune
    it once empty.
    """

    __slots__ = ("target_id", "key")

    def __init__(self, target_id: int, key: Hashable) -> None:
        super().__init__()
        self.target_id = target_id
        self.key = key

    def __repr__(self) -> str:
        return f"Dep({self.key!r}, subscribers={len(self)})"


class DependencyStore:
    """``id(source) -> {key -> Dep}`` plus the pinned source objects."""

    def __init__(self) -> None:
        self._deps: dict[int, dict[Hashable, Dep]] = {}
        self._targets: dict[int, object] = {}

    def deps_for(self, target: object) -> dict[Hashable, Dep] | None:
        """All deps registered against ``target``, or None."""
        return self._deps.get(id(target))

    def get(self, target: object, key: Hashable) -> Dep | None:
        deps_map = self._deps.get(id(target))
        if deps_map is None:
            return None
        return deps_map.get(key)

    def get_or_create(self, target: object, key: Hashable) -> Dep:
        target_id = id(target)
        deps_map = self._deps.get(target_id)
        if deps_map is None:
            deps_map = self._deps[target_id] = {}
            self._targets[target_id] = target
        dep = deps_map.get(key)
        if dep is None:
            dep = deps_map[key] = Dep(target_id, key)
        return dep

    def detach(self, dep: Dep, effect: ReactiveEffect) -> None:
        """Remove ``effect`` from ``dep``; prune the dep (and source) if now empty."""
        dep.pop(effect, None)
        if dep:
            return
        deps_map = self._deps.get(dep.target_id)
        if deps_map is None or deps_map.get(dep.key) is not dep:
            return
        del deps_map[dep.key]
        if not deps_map:
            del self._deps[dep.target_id]
            del self._targets[dep.target_id]

    def __contains__(self, target: object) -> bool:
        return id(target) in self._deps

    def __len__(self) -> int:
        return len(self._deps)

    def __iter__(self) -> Iterator[object]:
        return iter(list(self._targets.values()))
