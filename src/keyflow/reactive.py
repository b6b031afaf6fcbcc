"""Reactive wrappers — containers that track their readers.

Each wrapper sits in front of a raw container (record, list, dict or set).
Reads register the running effect against the field they touched; writes
mutate the raw container and notify exactly the effects that read what
changed. Nested containers are wrapped lazily on the way out, so deep
mutation is tracked without wrapping a whole tree up front.

Wrappers are created through a Runtime (``rt.reactive(obj)`` and friends),
which caches them so one raw object always yields the same wrapper.
"""

from __future__ import annotations

import logging
import types
from collections.abc import MutableMapping, MutableSequence, MutableSet
from typing import TYPE_CHECKING, Any, Hashable, Iterable, Iterator

from keyflow._store import (
    ITERATE_KEY,
    LENGTH,
    MAP_KEY_ITERATE_KEY,
    TriggerKind,
    has_changed,
)

if TYPE_CHECKING:
    from keyflow._tracking import Runtime

logger = logging.getLogger("keyflow.reactive")


def to_raw(value: Any) -> Any:
    """The raw object behind a wrapper; anything else is returned as is."""
    while isinstance(value, ReactiveBase):
        value = object.__getattribute__(value, "_raw")
    return value


def is_reactive(value: Any) -> bool:
    return isinstance(value, ReactiveBase)


def is_readonly(value: Any) -> bool:
    return isinstance(value, ReactiveBase) and object.__getattribute__(value, "_readonly")


def is_shallow(value: Any) -> bool:
    return isinstance(value, ReactiveBase) and object.__getattribute__(value, "_shallow")


def own_keys(value: Any) -> list:
    """Keys of a reactive container, tracking its key set (not its values).

    Lists track ``length``; every other kind tracks the iteration marker, so
    adding or removing a key re-runs the reader but overwriting one does not
    (except for dicts, whose SET also counts as an iteration change).
    """
    if not isinstance(value, ReactiveBase):
        raw = value
        return list(range(len(raw))) if isinstance(raw, list) else list(_raw_keys(raw))
    raw = object.__getattribute__(value, "_raw")
    rt = object.__getattribute__(value, "_rt")
    if not object.__getattribute__(value, "_readonly"):
        rt.track(raw, LENGTH if isinstance(raw, list) else ITERATE_KEY)
    if isinstance(raw, list):
        return list(range(len(raw)))
    return list(_raw_keys(raw))


def _raw_keys(raw: Any) -> Iterable:
    if isinstance(raw, (dict, set)):
        return raw
    return vars(raw).keys()


def is_wrappable(value: Any) -> bool:
    """Containers and plain records can be wrapped; scalars, callables and marked types cannot."""
    if isinstance(value, ReactiveBase):
        return True
    if isinstance(value, (dict, list, set)):
        return True
    if isinstance(value, (str, bytes, tuple, frozenset, int, float, complex, bool, type(None))):
        return False
    if isinstance(value, (type, types.ModuleType)) or callable(value):
        return False
    if getattr(type(value), "__keyflow_skip__", False):
        return False
    return hasattr(value, "__dict__")


def create_wrapper(rt: Runtime, value: Any, *, shallow: bool, readonly: bool) -> ReactiveBase:
    """Build a fresh wrapper of the matching kind. Callers go through the runtime cache."""
    if isinstance(value, dict):
        cls = ReactiveDict
    elif isinstance(value, list):
        cls = ReactiveList
    elif isinstance(value, set):
        cls = ReactiveSet
    elif is_wrappable(value):
        cls = ReactiveObject
    else:
        raise TypeError(f"cannot make a {type(value).__name__} reactive")
    return cls(rt, value, shallow, readonly)


class ReactiveBase:
    """State and plumbing shared by every wrapper kind."""

    __slots__ = ("_raw", "_rt", "_shallow", "_readonly", "__weakref__")

    def __init__(self, rt: Runtime, raw: Any, shallow: bool, readonly: bool) -> None:
        object.__setattr__(self, "_raw", raw)
        object.__setattr__(self, "_rt", rt)
        object.__setattr__(self, "_shallow", shallow)
        object.__setattr__(self, "_readonly", readonly)

    def _track(self, key: Hashable) -> None:
        # Nothing can change through a readonly view, so tracking it is wasted work.
        if not self._readonly:
            self._rt.track(self._raw, key)

    def _trigger(self, key: Hashable, kind: TriggerKind, new_value: Any = None) -> None:
        self._rt.trigger(self._raw, key, kind, new_value)

    def _wrap(self, value: Any) -> Any:
        if self._shallow or not is_wrappable(value):
            return value
        if self._readonly:
            return self._rt.readonly(value)
        return self._rt.reactive(value)

    def _refuse(self, action: str, key: Any) -> bool:
        if self._readonly:
            logger.warning("Refused to %s %r: target is readonly", action, key)
        return self._readonly

    def _kind_name(self) -> str:
        name = type(self).__name__
        if self._readonly:
            name = "Readonly" + name.removeprefix("Reactive")
        return ("Shallow" + name) if self._shallow else name

    def __repr__(self) -> str:
        return f"{self._kind_name()}({self._raw!r})"


class ReactiveObject(ReactiveBase):
    """Wrapper for a record: any object whose fields are attributes."""

    __slots__ = ()

    def __getattr__(self, name: str) -> Any:
        if name in ReactiveBase.__slots__:
            # Slot not initialised yet (copy, unpickling); never look it up on the raw object.
            raise AttributeError(name)
        raw = self._raw
        self._track(name)
        value = getattr(raw, name)
        if isinstance(value, types.MethodType) and value.__self__ is raw:
            # Rebind so writes made inside the method go through the wrapper.
            return types.MethodType(value.__func__, self)
        return self._wrap(value)

    def __setattr__(self, name: str, value: Any) -> None:
        if self._refuse("set", name):
            return
        raw = self._raw
        fields = getattr(raw, "__dict__", None)
        had_key = name in fields if fields is not None else hasattr(raw, name)
        old = getattr(raw, name, None)
        setattr(raw, name, to_raw(value))
        if not had_key:
            self._trigger(name, TriggerKind.ADD, value)
        elif has_changed(old, to_raw(value)):
            self._trigger(name, TriggerKind.SET, value)

    def __delattr__(self, name: str) -> None:
        if self._refuse("delete", name):
            return
        delattr(self._raw, name)
        self._trigger(name, TriggerKind.DELETE)

    def __eq__(self, other: object) -> bool:
        return self._raw is to_raw(other)

    def __hash__(self) -> int:
        return hash(self._raw)


class ReactiveDict(ReactiveBase, MutableMapping):
    """Wrapper for a dict, with key-value map semantics.

    Iterating keys tracks the key set only; values(), items() and len()
    track any change, since overwriting a value changes what they yield.
    """

    __slots__ = ()

    # --- Read operations (track) ---

    def __getitem__(self, key: Hashable) -> Any:
        self._track(key)
        return self._wrap(self._raw[key])

    def get(self, key: Hashable, default: Any = None) -> Any:
        self._track(key)
        if key in self._raw:
            return self._wrap(self._raw[key])
        return default

    def __contains__(self, key: object) -> bool:
        self._track(key)
        return key in self._raw

    def __len__(self) -> int:
        self._track(ITERATE_KEY)
        return len(self._raw)

    def __iter__(self) -> Iterator[Hashable]:
        self._track(MAP_KEY_ITERATE_KEY)
        return iter(list(self._raw))

    def keys(self):
        self._track(MAP_KEY_ITERATE_KEY)
        return list(self._raw)

    def values(self):
        self._track(ITERATE_KEY)
        return [self._wrap(v) for v in self._raw.values()]

    def items(self):
        self._track(ITERATE_KEY)
        return [(k, self._wrap(v)) for k, v in self._raw.items()]

    def __eq__(self, other: object) -> bool:
        self._track(ITERATE_KEY)
        return self._raw == to_raw(other)

    __hash__ = None

    # --- Write operations (notify) ---

    def __setitem__(self, key: Hashable, value: Any) -> None:
        if self._refuse("set", key):
            return
        raw = self._raw
        had_key = key in raw
        old = raw.get(key)
        raw[key] = to_raw(value)
        if not had_key:
            self._trigger(key, TriggerKind.ADD, value)
        elif has_changed(old, raw[key]):
            self._trigger(key, TriggerKind.SET, value)

    def __delitem__(self, key: Hashable) -> None:
        if self._refuse("delete", key):
            return
        del self._raw[key]
        self._trigger(key, TriggerKind.DELETE)

    _MISSING = object()

    def pop(self, key: Hashable, default: Any = _MISSING) -> Any:
        if self._refuse("pop", key):
            return self._raw.get(key, None if default is self._MISSING else default)
        if key not in self._raw:
            if default is self._MISSING:
                raise KeyError(key)
            return default
        value = self._raw.pop(key)
        self._trigger(key, TriggerKind.DELETE)
        return value

    def setdefault(self, key: Hashable, default: Any = None) -> Any:
        if key not in self._raw:
            if self._refuse("set", key):
                return default
            with self._rt.pause_tracking():
                self[key] = default
        return self[key]

    def update(self, other: Any = (), /, **kwargs: Any) -> None:
        if hasattr(other, "keys"):
            pairs = [(k, other[k]) for k in other.keys()]
        else:
            pairs = list(other)
        pairs.extend(kwargs.items())
        with self._rt.pause_tracking():
            for key, value in pairs:
                self[key] = value

    def clear(self) -> None:
        if self._refuse("clear", ITERATE_KEY):
            return
        if not self._raw:
            return
        self._raw.clear()
        self._trigger(ITERATE_KEY, TriggerKind.CLEAR)


class ReactiveList(ReactiveBase, MutableSequence):
    """Wrapper for a list.

    Each index is tracked separately and the size under ``length``.
    Mutators run with tracking paused and then notify per changed index,
    plus ``length`` when the size changed, so an effect that appends to one
    list while reading another cannot ping-pong with its mirror image.
    """

    __slots__ = ()

    def _index(self, index: int) -> int:
        if index < 0:
            # A negative index depends on the size too.
            self._track(LENGTH)
            index += len(self._raw)
        return index

    # --- Read operations (track) ---

    def __getitem__(self, index: int | slice) -> Any:
        if isinstance(index, slice):
            self._track(LENGTH)
            positions = range(len(self._raw))[index]
            for i in positions:
                self._track(i)
            return [self._wrap(self._raw[i]) for i in positions]
        position = self._index(index)
        self._track(position)
        return self._wrap(self._raw[index])

    def __len__(self) -> int:
        self._track(LENGTH)
        return len(self._raw)

    def __iter__(self) -> Iterator[Any]:
        self._track(LENGTH)
        i = 0
        # Re-check the size each step, like list iteration does.
        while i < len(self._raw):
            self._track(i)
            yield self._wrap(self._raw[i])
            i += 1

    def _track_all(self) -> None:
        self._track(LENGTH)
        for i in range(len(self._raw)):
            self._track(i)

    def __contains__(self, value: object) -> bool:
        self._track_all()
        return to_raw(value) in self._raw

    def index(self, value: Any, start: int = 0, stop: int | None = None) -> int:
        self._track_all()
        if stop is None:
            return self._raw.index(to_raw(value), start)
        return self._raw.index(to_raw(value), start, stop)

    def count(self, value: Any) -> int:
        self._track_all()
        return self._raw.count(to_raw(value))

    def __eq__(self, other: object) -> bool:
        self._track_all()
        return self._raw == to_raw(other)

    __hash__ = None

    # --- Write operations (notify) ---

    def _mutate(self, action: str, operation, *args: Any) -> Any:
        """Apply ``operation(raw, *args)`` and notify whatever it changed."""
        if self._refuse(action, LENGTH):
            return None
        raw = self._raw
        before = list(raw)
        with self._rt.pause_tracking():
            result = operation(raw, *args)
            self._notify_changes(before)
        return result

    def _notify_changes(self, before: list) -> None:
        after = list(self._raw)
        old_len, new_len = len(before), len(after)
        for i in range(min(old_len, new_len)):
            if has_changed(before[i], after[i]):
                self._trigger(i, TriggerKind.SET, after[i])
        for i in range(old_len, new_len):
            self._trigger(i, TriggerKind.ADD, after[i])
        if new_len < old_len:
            # Truncation: readers of indices past the new end are notified too.
            self._trigger(LENGTH, TriggerKind.SET, new_len)

    def __setitem__(self, index: int | slice, value: Any) -> None:
        if isinstance(index, slice):
            items = [to_raw(v) for v in value]
            self._mutate("set", _assign, index, items)
            return
        if self._refuse("set", index):
            return
        raw = self._raw
        old = raw[index]
        raw[index] = to_raw(value)
        if has_changed(old, raw[index]):
            self._trigger(index % len(raw), TriggerKind.SET, value)

    def __delitem__(self, index: int | slice) -> None:
        self._mutate("delete", _delete, index)

    def insert(self, index: int, value: Any) -> None:
        self._mutate("insert", list.insert, index, to_raw(value))

    def append(self, value: Any) -> None:
        if self._refuse("append", LENGTH):
            return
        raw = self._raw
        raw.append(to_raw(value))
        self._trigger(len(raw) - 1, TriggerKind.ADD, value)

    def extend(self, values: Iterable[Any]) -> None:
        items = [to_raw(v) for v in values]
        self._mutate("extend", list.extend, items)

    def __iadd__(self, values: Iterable[Any]) -> ReactiveList:
        self.extend(values)
        return self

    def pop(self, index: int = -1) -> Any:
        return self._mutate("pop", list.pop, index)

    def remove(self, value: Any) -> None:
        self._mutate("remove", list.remove, to_raw(value))

    def clear(self) -> None:
        self._mutate("clear", list.clear)

    def reverse(self) -> None:
        self._mutate("reverse", list.reverse)

    def sort(self, *, key=None, reverse: bool = False) -> None:
        self._mutate("sort", _sort, key, reverse)


def _assign(raw: list, index: slice, items: list) -> None:
    raw[index] = items


def _delete(raw: list, index: int | slice) -> None:
    del raw[index]


def _sort(raw: list, key, reverse: bool) -> None:
    raw.sort(key=key, reverse=reverse)


class ReactiveSet(ReactiveBase, MutableSet):
    """Wrapper for a set: membership tracks the element, size and iteration the key set."""

    __slots__ = ()

    # --- Read operations (track) ---

    def __contains__(self, value: object) -> bool:
        value = to_raw(value)
        self._track(value)
        return value in self._raw

    def __len__(self) -> int:
        self._track(ITERATE_KEY)
        return len(self._raw)

    def __iter__(self) -> Iterator[Any]:
        self._track(ITERATE_KEY)
        return iter([self._wrap(v) for v in self._raw])

    def __eq__(self, other: object) -> bool:
        self._track(ITERATE_KEY)
        return self._raw == to_raw(other)

    __hash__ = None

    @classmethod
    def _from_iterable(cls, it: Iterable[Any]) -> set:
        # Set algebra (a | b, a - b, ...) produces plain sets.
        return set(it)

    # --- Write operations (notify) ---

    def add(self, value: Any) -> None:
        value = to_raw(value)
        if self._refuse("add", value):
            return
        if value not in self._raw:
            self._raw.add(value)
            self._trigger(value, TriggerKind.ADD, value)

    def discard(self, value: Any) -> None:
        value = to_raw(value)
        if self._refuse("discard", value):
            return
        if value in self._raw:
            self._raw.discard(value)
            self._trigger(value, TriggerKind.DELETE)

    def remove(self, value: Any) -> None:
        if to_raw(value) not in self._raw:
            raise KeyError(value)
        self.discard(value)

    def clear(self) -> None:
        if self._refuse("clear", ITERATE_KEY):
            return
        if not self._raw:
            return
        self._raw.clear()
        self._trigger(ITERATE_KEY, TriggerKind.CLEAR)

    def update(self, *others: Iterable[Any]) -> None:
        with self._rt.pause_tracking():
            for other in others:
                for value in list(other):
                    self.add(value)
