"""Tests for reactive wrappers: records, lists, dicts and sets."""

import logging
import math

import pytest

from keyflow import (
    ReactiveDict,
    ReactiveList,
    ReactiveObject,
    ReactiveSet,
    Runtime,
    is_reactive,
    is_readonly,
    is_shallow,
    own_keys,
    to_raw,
)


class Point:
    def __init__(self, x, y):
        self.x = x
        self.y = y

    def move(self, dx):
        self.x += dx


class TestWrapping:
    def test_kind_per_container(self):
        rt = Runtime()
        assert isinstance(rt.reactive({}), ReactiveDict)
        assert isinstance(rt.reactive([]), ReactiveList)
        assert isinstance(rt.reactive(set()), ReactiveSet)
        assert isinstance(rt.reactive(Point(1, 2)), ReactiveObject)

    def test_same_raw_same_wrapper(self):
        rt = Runtime()
        raw = {"a": 1}
        assert rt.reactive(raw) is rt.reactive(raw)

    def test_rewrapping_returns_existing(self):
        rt = Runtime()
        state = rt.reactive({"a": 1})
        assert rt.reactive(state) is state
        assert to_raw(state) == {"a": 1}

    def test_modes_are_cached_separately(self):
        rt = Runtime()
        raw = {"a": 1}
        assert rt.readonly(raw) is rt.readonly(raw)
        assert rt.readonly(raw) is not rt.reactive(raw)
        assert is_readonly(rt.readonly(rt.reactive(raw)))

    def test_nested_values_wrapped_lazily_and_stably(self):
        rt = Runtime()
        state = rt.reactive({"inner": {"n": 1}})
        assert is_reactive(state["inner"])
        assert state["inner"] is state["inner"]

    def test_shallow_returns_raw_nested(self):
        rt = Runtime()
        state = rt.shallow_reactive({"inner": {"n": 1}})
        assert not is_reactive(state["inner"])

    def test_scalar_rejected(self):
        rt = Runtime()
        with pytest.raises(TypeError):
            rt.reactive(42)

    def test_writes_store_raw_values(self):
        rt = Runtime()
        inner = rt.reactive({"n": 1})
        outer = rt.reactive({})
        outer["inner"] = inner
        assert to_raw(outer)["inner"] is to_raw(inner)

    def test_repr(self):
        rt = Runtime()
        assert repr(rt.reactive([1])) == "ReactiveList([1])"
        assert repr(rt.readonly({"a": 1})) == "ReadonlyDict({'a': 1})"


class TestDependencyPrecision:
    def test_unread_source_does_not_rerun(self):
        rt = Runtime()
        a = rt.reactive({"n": 1})
        b = rt.reactive({"n": 1})
        log = []
        rt.effect(lambda: log.append(a["n"]))
        b["n"] = 2
        assert log == [1]

    def test_unread_field_does_not_rerun(self):
        rt = Runtime()
        state = rt.reactive({"a": 1, "b": 2})
        log = []
        rt.effect(lambda: log.append(state["a"]))
        state["b"] = 3
        assert log == [1]
        state["a"] = 5
        assert log == [1, 5]

    def test_unchanged_value_does_not_notify(self):
        rt = Runtime()
        state = rt.reactive({"n": 1})
        log = []
        rt.effect(lambda: log.append(state["n"]))
        state["n"] = 1
        assert log == [1]

    def test_nan_to_nan_does_not_notify(self):
        rt = Runtime()
        state = rt.reactive({"n": math.nan})
        log = []
        rt.effect(lambda: log.append(state["n"]))
        state["n"] = float("nan")
        assert len(log) == 1

    def test_equal_but_distinct_container_notifies(self):
        rt = Runtime()
        state = rt.reactive({"items": [1]})
        log = []
        rt.effect(lambda: log.append(list(state["items"])))
        state["items"] = [1]
        assert log == [[1], [1]]

    def test_deep_mutation_tracked(self):
        rt = Runtime()
        state = rt.reactive({"user": {"name": "ada"}})
        log = []
        rt.effect(lambda: log.append(state["user"]["name"]))
        state["user"]["name"] = "grace"
        assert log == ["ada", "grace"]


class TestRecord:
    def test_attribute_tracking(self):
        rt = Runtime()
        p = rt.reactive(Point(1, 2))
        log = []
        rt.effect(lambda: log.append(p.x))
        p.y = 10
        p.x = 5
        assert log == [1, 5]

    def test_methods_write_through_wrapper(self):
        rt = Runtime()
        p = rt.reactive(Point(1, 2))
        log = []
        rt.effect(lambda: log.append(p.x))
        p.move(3)
        assert log == [1, 4]

    def test_new_attribute_notifies_key_set_readers(self):
        rt = Runtime()
        p = rt.reactive(Point(1, 2))
        log = []
        rt.effect(lambda: log.append(own_keys(p)))
        p.z = 3
        assert log == [["x", "y"], ["x", "y", "z"]]

    def test_missing_attribute_read_then_added(self):
        rt = Runtime()
        p = rt.reactive(Point(1, 2))
        log = []
        rt.effect(lambda: log.append(getattr(p, "label", None)))
        p.label = "origin"
        assert log == [None, "origin"]

    def test_delete_attribute(self):
        rt = Runtime()
        p = rt.reactive(Point(1, 2))
        log = []
        rt.effect(lambda: log.append(hasattr(p, "y")))
        del p.y
        assert log == [True, False]


class TestList:
    def test_append_notifies_length_readers(self):
        rt = Runtime()
        lst = rt.reactive([1, 2])
        log = []
        rt.effect(lambda: log.append(len(lst)))
        lst.append(3)
        assert log == [2, 3]

    def test_iteration_tracks_every_index(self):
        rt = Runtime()
        lst = rt.reactive([1, 2])
        log = []
        rt.effect(lambda: log.append(list(lst)))
        lst[1] = 20
        assert log == [[1, 2], [1, 20]]

    def test_index_read_ignores_other_indices(self):
        rt = Runtime()
        lst = rt.reactive([1, 2, 3])
        log = []
        rt.effect(lambda: log.append(lst[0]))
        lst[2] = 30
        assert log == [1]

    def test_truncation_notifies_readers_past_new_end(self):
        rt = Runtime()
        lst = rt.reactive([1, 2, 3, 4])
        log = []
        rt.effect(lambda: log.append(lst[3] if len(to_raw(lst)) > 3 else None))
        del lst[2:]
        assert log == [4, None]

    def test_truncation_skips_readers_before_new_end(self):
        rt = Runtime()
        lst = rt.reactive([1, 2, 3, 4])
        log = []
        rt.effect(lambda: log.append(lst[0]))
        del lst[2:]
        assert log == [1]

    def test_mutators(self):
        rt = Runtime()
        lst = rt.reactive([3, 1, 2])
        lst.insert(0, 9)
        assert to_raw(lst) == [9, 3, 1, 2]
        lst.remove(9)
        lst.sort()
        assert to_raw(lst) == [1, 2, 3]
        lst.reverse()
        assert lst.pop() == 1
        lst.extend([7, 8])
        assert to_raw(lst) == [3, 2, 7, 8]
        lst.clear()
        assert to_raw(lst) == []

    def test_iteration_stops_when_list_shrinks(self):
        rt = Runtime()
        items = rt.reactive([1, 2, 3])
        plain = [1, 2, 3]
        seen = []
        for value in items:
            seen.append(value)
            items.pop()
        expected = []
        for value in plain:
            expected.append(value)
            plain.pop()
        assert seen == expected == [1, 2]

    def test_sort_notifies_moved_indices(self):
        rt = Runtime()
        lst = rt.reactive([2, 1])
        log = []
        rt.effect(lambda: log.append(lst[0]))
        lst.sort()
        assert log == [2, 1]

    def test_search_finds_raw_element_by_wrapper(self):
        rt = Runtime()
        a = {"id": 1}
        lst = rt.reactive([a])
        wrapped = lst[0]
        assert wrapped in lst
        assert lst.index(wrapped) == 0
        assert lst.count(wrapped) == 1

    def test_two_effects_pushing_to_two_lists_do_not_loop(self):
        rt = Runtime()
        a = rt.reactive([])
        b = rt.reactive([])
        rt.effect(lambda: a.append(1))
        rt.effect(lambda: b.append(1))
        rt.effect(lambda: a.append(2))
        assert to_raw(a) == [1, 2]
        assert to_raw(b) == [1]

    def test_mutation_inside_effect_is_not_a_dependency(self):
        rt = Runtime()
        lst = rt.reactive([])
        runs = []

        def push():
            runs.append(1)
            lst.append(len(runs))

        rt.effect(push)
        lst.append(99)
        assert runs == [1]


class TestDict:
    def test_add_notifies_iteration_and_key_readers(self):
        rt = Runtime()
        d = rt.reactive({"a": 1})
        keys, sizes = [], []
        rt.effect(lambda: keys.append(list(d)))
        rt.effect(lambda: sizes.append(len(d)))
        d["b"] = 2
        assert keys == [["a"], ["a", "b"]]
        assert sizes == [1, 2]

    def test_overwrite_notifies_values_but_not_keys(self):
        rt = Runtime()
        d = rt.reactive({"a": 1})
        keys, values = [], []
        rt.effect(lambda: keys.append(d.keys()))
        rt.effect(lambda: values.append(d.values()))
        d["a"] = 5
        assert keys == [["a"]]
        assert values == [[1], [5]]

    def test_membership_tracks_key(self):
        rt = Runtime()
        d = rt.reactive({})
        log = []
        rt.effect(lambda: log.append("x" in d))
        d["y"] = 1
        d["x"] = 1
        assert log == [False, True]

    def test_pop_update_setdefault(self):
        rt = Runtime()
        d = rt.reactive({"a": 1})
        assert d.pop("a") == 1
        assert d.pop("missing", 0) == 0
        with pytest.raises(KeyError):
            d.pop("missing")
        d.update({"b": 2}, c=3)
        assert d.setdefault("b", 99) == 2
        assert d.setdefault("d", 4) == 4
        assert to_raw(d) == {"b": 2, "c": 3, "d": 4}

    def test_clear_notifies_once(self):
        rt = Runtime()
        d = rt.reactive({"a": 1, "b": 2})
        log = []
        rt.effect(lambda: log.append((d.get("a"), d.get("b"))))
        d.clear()
        assert log == [(1, 2), (None, None)]


class TestSet:
    def test_add_and_discard(self):
        rt = Runtime()
        s = rt.reactive({1})
        sizes, has_two = [], []
        rt.effect(lambda: sizes.append(len(s)))
        rt.effect(lambda: has_two.append(2 in s))
        s.add(2)
        s.add(2)
        s.discard(1)
        assert sizes == [1, 2, 1]
        assert has_two == [False, True]

    def test_remove_missing_raises(self):
        rt = Runtime()
        s = rt.reactive(set())
        with pytest.raises(KeyError):
            s.remove(1)

    def test_set_algebra_returns_plain_sets(self):
        rt = Runtime()
        s = rt.reactive({1, 2})
        assert (s | {3}) == {1, 2, 3}
        assert s == {1, 2}


class TestReadonly:
    def test_write_refused_with_warning(self, caplog):
        rt = Runtime()
        raw = {"a": 1}
        view = rt.readonly(raw)
        with caplog.at_level(logging.WARNING, logger="keyflow.reactive"):
            view["a"] = 2
            del view["a"]
        assert raw == {"a": 1}
        assert len(caplog.records) == 2

    def test_nested_values_are_readonly(self):
        rt = Runtime()
        view = rt.readonly({"inner": [1]})
        assert is_readonly(view["inner"])
        view["inner"].append(2)
        assert to_raw(view)["inner"] == [1]

    def test_readonly_reads_are_not_tracked(self):
        rt = Runtime()
        raw = {"a": 1}
        view = rt.readonly(raw)
        runner = rt.effect(lambda: view["a"])
        assert runner.deps == []

    def test_setdefault_on_missing_key_is_refused_without_error(self, caplog):
        rt = Runtime()
        raw = {"a": 1}
        view = rt.readonly(raw)
        with caplog.at_level(logging.WARNING, logger="keyflow.reactive"):
            assert view.setdefault("b", 2) == 2
            assert view.setdefault("a", 5) == 1
        assert raw == {"a": 1}
        assert len(caplog.records) == 1


class TestShallowReadonly:
    def test_writes_refused(self, caplog):
        rt = Runtime()
        raw = {"a": 1, "inner": {"n": 1}}
        view = rt.shallow_readonly(raw)
        with caplog.at_level(logging.WARNING, logger="keyflow.reactive"):
            view["a"] = 2
        assert raw["a"] == 1
        assert len(caplog.records) == 1
        assert is_readonly(view)
        assert is_shallow(view)

    def test_nested_values_come_back_raw(self):
        rt = Runtime()
        inner = {"n": 1}
        view = rt.shallow_readonly({"inner": inner})
        assert view["inner"] is inner
        assert not is_reactive(view["inner"])
        # Only the top level is guarded.
        view["inner"]["n"] = 2
        assert inner["n"] == 2

    def test_cached_separately_from_other_modes(self):
        rt = Runtime()
        raw = {"a": 1}
        view = rt.shallow_readonly(raw)
        assert rt.shallow_readonly(raw) is view
        assert view is not rt.readonly(raw)
        assert view is not rt.shallow_reactive(raw)
        assert repr(view) == "ShallowReadonlyDict({'a': 1})"

    def test_is_shallow_only_for_shallow_modes(self):
        rt = Runtime()
        assert is_shallow(rt.shallow_reactive([1]))
        assert not is_shallow(rt.reactive([1]))
        assert not is_shallow(rt.readonly([1]))
        assert not is_shallow([1])
