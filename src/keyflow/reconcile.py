"""Keyed reconciliation — the fewest moves that turn one keyed list into another.

``reconcile(old, new)`` compares two sequences of keyed items and returns the
operations a host must apply to its rendered children: patch in place,
insert before an anchor, move before an anchor, remove. It never touches a
host itself; ``apply`` / ``patch_children`` feed the operations to one.

The algorithm trims the common prefix and suffix, which settles the usual
append/prepend/remove-one cases without any lookups. Only the span in between
needs a key map, and only when items there changed relative order does it
compute a longest increasing subsequence: items on it stay put, everything
else is moved around them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Hashable, NamedTuple, Protocol, Sequence, Union


class KeyedItem(NamedTuple):
    """An item with a stable identity key distinct from its position."""

    key: Hashable
    payload: Any = None


@dataclass(frozen=True)
class Patch:
    """``old`` and ``new`` share a key: update the rendered node in place."""

    old: Any
    new: Any


@dataclass(frozen=True)
class Insert:
    """Create a node for ``item`` before ``anchor`` (``None`` = at the end)."""

    item: Any
    anchor: Any = None


@dataclass(frozen=True)
class Move:
    """Relocate the existing node of ``item`` before ``anchor`` (``None`` = at the end)."""

    item: Any
    anchor: Any = None


@dataclass(frozen=True)
class Remove:
    """Destroy the node of ``item``; its key is gone from the new sequence."""

    item: Any


Operation = Union[Patch, Insert, Move, Remove]


class DuplicateKeyError(ValueError):
    """Two items of one sequence share a key."""


class Host(Protocol):
    """Host-specific primitives that carry out reconciliation operations."""

    def patch(self, old: Any, new: Any) -> None: ...

    def insert(self, item: Any, anchor: Any | None) -> None: ...

    def move(self, item: Any, anchor: Any | None) -> None: ...

    def remove(self, item: Any) -> None: ...


def longest_increasing_subsequence(seq: Sequence[int]) -> list[int]:
    """Indices of one longest strictly increasing subsequence of ``seq``.

    ``-1`` marks an unfilled slot and never takes part. Runs in O(n log n):
    patience sorting keeps, for each length, the index of the smallest tail
    seen so far, plus a predecessor link per element. The tails array is
    overwritten while scanning, so it ends up mixing several candidate runs;
    walking the predecessor links back from the last tail rebuilds one
    consistent subsequence.

    Ties go to the earliest-ending candidate, which leaves earlier items
    unmoved when the result drives reconciliation.
    """
    tails: list[int] = []  # tails[k] = index ending the best run of length k + 1
    prev: list[int] = [-1] * len(seq)
    for i, value in enumerate(seq):
        if value == -1:
            continue
        if tails and seq[tails[-1]] < value:
            prev[i] = tails[-1]
            tails.append(i)
            continue
        # Binary search for the first tail whose value is >= value.
        lo, hi = 0, len(tails)
        while lo < hi:
            mid = (lo + hi) // 2
            if seq[tails[mid]] < value:
                lo = mid + 1
            else:
                hi = mid
        if lo > 0:
            prev[i] = tails[lo - 1]
        if lo == len(tails):
            tails.append(i)
        else:
            tails[lo] = i

    # Backtrace: correct each tail to the predecessor chain of the final one.
    k = len(tails)
    index = tails[-1] if tails else -1
    while k > 0:
        k -= 1
        tails[k] = index
        index = prev[index]
    return tails


def _check_unique(items: Sequence[Any], label: str) -> None:
    seen: set[Hashable] = set()
    for item in items:
        if item.key in seen:
            raise DuplicateKeyError(f"duplicate key {item.key!r} in {label} sequence")
        seen.add(item.key)


def reconcile(old: Sequence[Any], new: Sequence[Any]) -> list[Operation]:
    """Operations that turn the rendering of ``old`` into that of ``new``.

    Items are anything with a ``.key`` (see KeyedItem). Anchors in the result
    are items of ``new`` whose nodes are already in place when the operation
    runs, so applying the list front to back is always valid.

    Duplicate keys are a caller error: they raise DuplicateKeyError unless
    Python runs with -O, in which case the first occurrence wins.
    """
    if __debug__:
        _check_unique(old, "old")
        _check_unique(new, "new")

    ops: list[Operation] = []
    new_len = len(new)
    start = 0
    old_end = len(old) - 1
    new_end = new_len - 1

    # 1. Common prefix.
    while start <= old_end and start <= new_end and old[start].key == new[start].key:
        ops.append(Patch(old[start], new[start]))
        start += 1

    # 2. Common suffix.
    while start <= old_end and start <= new_end and old[old_end].key == new[new_end].key:
        ops.append(Patch(old[old_end], new[new_end]))
        old_end -= 1
        new_end -= 1

    def anchor_after(position: int) -> Any:
        return new[position + 1] if position + 1 < new_len else None

    # 3. Only insertions left.
    if start > old_end:
        anchor = anchor_after(new_end)
        for i in range(start, new_end + 1):
            ops.append(Insert(new[i], anchor))
        return ops

    # 4. Only removals left.
    if start > new_end:
        for i in range(start, old_end + 1):
            ops.append(Remove(old[i]))
        return ops

    # 5. Both spans non-empty: match old items to new positions by key.
    count = new_end - start + 1
    key_to_new_index: dict[Hashable, int] = {}
    for i in range(start, new_end + 1):
        key_to_new_index.setdefault(new[i].key, i)

    # source[k] = position in old of the item now at new[start + k], or -1.
    source = [-1] * count
    moved = False
    max_new_index = 0
    patched = 0
    for i in range(start, old_end + 1):
        old_item = old[i]
        if patched >= count:
            # Every new slot is already matched; the rest are surplus.
            ops.append(Remove(old_item))
            continue
        k = key_to_new_index.get(old_item.key)
        if k is None or source[k - start] != -1:
            ops.append(Remove(old_item))
            continue
        ops.append(Patch(old_item, new[k]))
        source[k - start] = i
        patched += 1
        if k < max_new_index:
            moved = True
        else:
            max_new_index = k

    # 6./7. Right to left, so each anchor is already in its final place.
    stable = longest_increasing_subsequence(source) if moved else []
    s = len(stable) - 1
    for offset in range(count - 1, -1, -1):
        position = start + offset
        if source[offset] == -1:
            ops.append(Insert(new[position], anchor_after(position)))
        elif moved:
            if s < 0 or offset != stable[s]:
                ops.append(Move(new[position], anchor_after(position)))
            else:
                s -= 1
    return ops


def apply(ops: Sequence[Operation], host: Host) -> None:
    """Carry out reconciliation operations through host primitives, in order."""
    for op in ops:
        if isinstance(op, Patch):
            host.patch(op.old, op.new)
        elif isinstance(op, Insert):
            host.insert(op.item, op.anchor)
        elif isinstance(op, Move):
            host.move(op.item, op.anchor)
        elif isinstance(op, Remove):
            host.remove(op.item)
        else:
            raise TypeError(f"unknown reconciliation operation: {op!r}")


def patch_children(old: Sequence[Any], new: Sequence[Any], host: Host) -> list[Operation]:
    """Reconcile and apply in one step. Returns the operations applied."""
    ops = reconcile(old, new)
    apply(ops, host)
    return ops
