#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Tests for merge strategies.

Run with: pytest tests/test_merge.py -v
"""

import copy

from coach_state.merge import (
    default_merge,
    field_merge,
    item_identity,
    merge_lww,
    merge_max,
    merge_min,
    resolve_merge,
    union_by_key,
)
from coach_state.models import UNSET


# =============================================================================
# Tests: Array union
# =============================================================================


class TestUnionByKey:
    """Test keyed array union."""

    def test_keeps_disk_order_and_appends_local_only(self):
        local = [{"id": "a"}, {"id": "c"}]
        remote = [{"id": "a"}, {"id": "b"}]
        merged = union_by_key(local, remote)
        assert [item["id"] for item in merged] == ["a", "b", "c"]

    def test_local_wins_shared_key(self):
        local = [{"id": "a", "v": "local"}]
        remote = [{"id": "a", "v": "remote"}, {"id": "b", "v": "remote"}]
        merged = union_by_key(local, remote)
        assert merged == [{"id": "a", "v": "local"}, {"id": "b", "v": "remote"}]

    def test_custom_unique_key(self):
        local = [{"name": "x", "n": 1}]
        remote = [{"name": "x", "n": 0}, {"name": "y"}]
        merged = union_by_key(local, remote, unique_key="name")
        assert merged == [{"name": "x", "n": 1}, {"name": "y"}]

    def test_items_without_key_dedup_by_value(self):
        merged = union_by_key(["a", {"k": 1}, 3], [3, "b", {"k": 1}])
        assert merged == [3, "b", {"k": 1}, "a"]

    def test_key_and_value_identities_do_not_collide(self):
        """An item with id "x" and the bare string "x" are different items."""
        merged = union_by_key([{"id": "x"}], ["x"])
        assert len(merged) == 2

    def test_inputs_not_mutated(self):
        local = [{"id": "a", "tags": ["l"]}]
        remote = [{"id": "b", "tags": ["r"]}]
        local_before = copy.deepcopy(local)
        merged = union_by_key(local, remote)
        merged[0]["tags"].append("changed")
        assert local == local_before
        assert remote == [{"id": "b", "tags": ["r"]}]

    def test_item_identity(self):
        assert item_identity({"id": 1}) == item_identity({"id": 1, "extra": True})
        assert item_identity({"id": None, "a": 1}) == item_identity({"a": 1, "id": None})


# =============================================================================
# Tests: Default merge
# =============================================================================


class TestDefaultMerge:
    """Test payload-level merge."""

    def test_concrete_two_writer_scenario(self):
        """Both appended entries survive; the later writer's scalar wins."""
        disk = {"entries": [{"id": "a"}], "count": 2}
        local = {"entries": [{"id": "b"}], "count": 2}
        merged = default_merge(local, disk, array_keys=["entries"])
        assert [e["id"] for e in merged["entries"]] == ["a", "b"]
        assert merged["count"] == 2

    def test_local_scalar_wins(self):
        merged = default_merge({"phase": "BUILD"}, {"phase": "PLAN"})
        assert merged["phase"] == "BUILD"

    def test_absent_key_keeps_disk_value(self):
        merged = default_merge({"a": 1}, {"a": 0, "b": 2})
        assert merged == {"a": 1, "b": 2}

    def test_unset_keeps_disk_value(self):
        merged = default_merge({"a": UNSET, "b": 5}, {"a": "disk", "b": 0})
        assert merged == {"a": "disk", "b": 5}

    def test_non_array_keys_are_replaced_not_unioned(self):
        merged = default_merge({"items": [1]}, {"items": [2]})
        assert merged["items"] == [1]

    def test_array_key_with_non_list_side_local_wins(self):
        merged = default_merge({"items": "broken"}, {"items": [1]}, array_keys=["items"])
        assert merged["items"] == "broken"

    def test_reserved_keys_never_merged(self):
        merged = default_merge({"_version": 1, "a": 1}, {"_version": 7, "_processId": "w"})
        assert merged == {"a": 1}


# =============================================================================
# Tests: Field resolvers
# =============================================================================


class TestFieldMerge:
    def test_per_field_resolvers(self):
        merge = field_merge({"best": merge_max, "lowest": merge_min}, array_keys=["log"])
        merged = merge(
            {"best": 3, "lowest": 9, "log": [{"id": 2}]},
            {"best": 7, "lowest": 1, "log": [{"id": 1}]},
        )
        assert merged["best"] == 7
        assert merged["lowest"] == 1
        assert [e["id"] for e in merged["log"]] == [1, 2]

    def test_resolver_skipped_when_one_side_missing(self):
        merge = field_merge({"best": merge_max})
        assert merge({"best": 3}, {})["best"] == 3
        assert merge({}, {"best": 4})["best"] == 4

    def test_resolver_skipped_for_unset(self):
        merge = field_merge({"best": merge_max})
        assert merge({"best": UNSET}, {"best": 4})["best"] == 4


class TestResolvers:
    def test_merge_max_min(self):
        assert merge_max(1, 5) == 5
        assert merge_min(1, 5) == 1

    def test_non_numeric_sides(self):
        assert merge_max("x", 5) == 5
        assert merge_max(5, None) == 5
        assert merge_max("x", "y") == "x"

    def test_bools_are_not_numbers(self):
        assert merge_max(True, 3) == 3

    def test_merge_lww(self):
        assert merge_lww("local", "remote") == "local"
        assert merge_lww(None, "remote") == "remote"


class TestResolveMerge:
    def test_strategy_names(self):
        assert resolve_merge(lambda l, r: l, ()) == "custom"
        assert resolve_merge(None, ["a"]) == "array_union"
        assert resolve_merge(None, ()) is None
