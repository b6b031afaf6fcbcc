"""Refs — single reactive slots, and views that turn fields into slots.

A Ref holds one value behind ``.value``: reading tracks it, writing a
changed value notifies. ``to_ref``/``to_refs`` expose fields of a reactive
container as refs without copying them, so a field can be passed around on
its own and stay connected to its container. ``ProxyRefs`` does the reverse
and lets a mapping of refs be used as if it held plain values.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from typing import TYPE_CHECKING, Any, Generic, Hashable, Iterator, TypeVar

from keyflow._store import TriggerKind, has_changed
from keyflow.computed import Computed
from keyflow.reactive import ReactiveBase, is_wrappable, own_keys, to_raw

if TYPE_CHECKING:
    from keyflow._tracking import Runtime

T = TypeVar("T")


class Ref(Generic[T]):
    """One observable value. Container values are wrapped deeply unless ``shallow``."""

    __slots__ = ("_rt", "_raw_value", "_shallow", "__weakref__")

    __keyflow_skip__ = True

    def __init__(self, rt: Runtime, value: T = None, *, shallow: bool = False) -> None:
        self._rt = rt
        self._shallow = shallow
        self._raw_value = value if shallow else to_raw(value)

    @property
    def value(self) -> T:
        self._rt.track(self, "value")
        value = self._raw_value
        if not self._shallow and is_wrappable(value):
            return self._rt.reactive(value)
        return value

    @value.setter
    def value(self, new_value: T) -> None:
        if not self._shallow:
            new_value = to_raw(new_value)
        if has_changed(self._raw_value, new_value):
            self._raw_value = new_value
            self._rt.trigger(self, "value", TriggerKind.SET, new_value)

    def trigger(self) -> None:
        """Notify readers by hand, e.g. after mutating a shallow ref's value in place."""
        self._rt.trigger(self, "value", TriggerKind.SET, self._raw_value)

    def __repr__(self) -> str:
        return f"Ref({self._raw_value!r})"


class FieldRef:
    """A ref view of one key (or attribute) of a reactive container."""

    __slots__ = ("_source", "_key")

    __keyflow_skip__ = True

    def __init__(self, source: Any, key: Hashable) -> None:
        self._source = source
        self._key = key

    @property
    def value(self) -> Any:
        if isinstance(self._source, Mapping):
            return self._source.get(self._key)
        return getattr(self._source, self._key)

    @value.setter
    def value(self, new_value: Any) -> None:
        if isinstance(self._source, MutableMapping):
            self._source[self._key] = new_value
        else:
            setattr(self._source, self._key, new_value)

    def __repr__(self) -> str:
        return f"FieldRef({self._key!r})"


def is_ref(value: Any) -> bool:
    return isinstance(value, (Ref, FieldRef, Computed))


def unref(value: Any) -> Any:
    """``value.value`` for refs, the value itself otherwise."""
    return value.value if is_ref(value) else value


def to_ref(source: Any, key: Hashable) -> Any:
    """Ref view of ``source[key]`` (or ``source.key`` for records).

    A field that already holds a ref is returned as that ref.
    """
    raw = to_raw(source)
    existing = raw.get(key) if isinstance(raw, Mapping) else getattr(raw, key, None)
    if is_ref(existing):
        return existing
    return FieldRef(source, key)


def to_refs(source: Any) -> dict[Hashable, Any]:
    """A plain dict of ref views, one per key of a reactive container."""
    if not isinstance(source, ReactiveBase):
        raise TypeError("to_refs() expects a reactive container")
    if isinstance(to_raw(source), (list, set)):
        raise TypeError("to_refs() expects a dict or record, not a list or set")
    return {key: to_ref(source, key) for key in own_keys(source)}


class ProxyRefs(MutableMapping):
    """Mapping view that unwraps refs on read and writes through to them.

    Usage:
        state = rt.proxy_refs({"count": rt.ref(0), "label": "clicks"})
        state["count"]       # 0, not the Ref
        state["count"] = 5   # sets the ref's .value
    """

    __slots__ = ("_target",)

    def __init__(self, target: MutableMapping) -> None:
        self._target = target

    def __getitem__(self, key: Hashable) -> Any:
        return unref(self._target[key])

    def __setitem__(self, key: Hashable, value: Any) -> None:
        current = self._target.get(key)
        if is_ref(current) and not is_ref(value):
            current.value = value
        else:
            self._target[key] = value

    def __delitem__(self, key: Hashable) -> None:
        del self._target[key]

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._target)

    def __len__(self) -> int:
        return len(self._target)

    def __repr__(self) -> str:
        return f"ProxyRefs({self._target!r})"
