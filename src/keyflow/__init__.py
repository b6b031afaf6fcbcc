"""keyflow: fine-grained reactive state and keyed list reconciliation for Python UIs."""

from importlib.metadata import version as _version

__version__ = _version("keyflow")

from keyflow._store import ITERATE_KEY, MAP_KEY_ITERATE_KEY, DependencyStore, TriggerKind, has_changed
from keyflow._tracking import Runtime
from keyflow.reactive import (
    ReactiveDict,
    ReactiveList,
    ReactiveObject,
    ReactiveSet,
    is_reactive,
    is_readonly,
    is_shallow,
    own_keys,
    to_raw,
)
from keyflow.effect import ReactiveEffect, effect
from keyflow.computed import Computed
from keyflow.refs import FieldRef, ProxyRefs, Ref, is_ref, to_ref, to_refs, unref
from keyflow.watch import WatchHandle, traverse, watch
from keyflow.reconcile import (
    DuplicateKeyError,
    Insert,
    KeyedItem,
    Move,
    Patch,
    Remove,
    apply,
    longest_increasing_subsequence,
    patch_children,
    reconcile,
)
from keyflow.region import keyed_region
# textual NOT auto-imported — opt-in only

__all__ = [
    "Runtime",
    "DependencyStore",
    "TriggerKind",
    "ITERATE_KEY",
    "MAP_KEY_ITERATE_KEY",
    "has_changed",
    "ReactiveObject",
    "ReactiveList",
    "ReactiveDict",
    "ReactiveSet",
    "is_reactive",
    "is_readonly",
    "is_shallow",
    "own_keys",
    "to_raw",
    "ReactiveEffect",
    "effect",
    "Computed",
    "Ref",
    "FieldRef",
    "ProxyRefs",
    "is_ref",
    "to_ref",
    "to_refs",
    "unref",
    "watch",
    "WatchHandle",
    "traverse",
    "KeyedItem",
    "Patch",
    "Insert",
    "Move",
    "Remove",
    "DuplicateKeyError",
    "reconcile",
    "apply",
    "patch_children",
    "longest_increasing_subsequence",
    "keyed_region",
]
