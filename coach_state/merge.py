#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Merge strategies for conflicting writes.

When a writer finds that someone else wrote since it read, its intended
payload ("local") is reconciled with what is on disk ("remote"):

- array fields: union by a unique key; local copy of a shared key wins, no
  item from either side is dropped
- everything else: local value wins; fields the local payload does not carry
  (absent or UNSET) keep the disk value
- envelope keys are never merged, the store re-stamps them

All functions here are pure: inputs are deep-copied, never mutated.
"""

import copy
import json
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Sequence, Tuple

from coach_state.models import DEFAULT_UNIQUE_KEY, RESERVED_KEYS, UNSET, MergeFn, Payload


FieldResolver = Callable[[Any, Any], Any]


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def item_identity(item: Any, unique_key: str = DEFAULT_UNIQUE_KEY) -> Tuple[str, Hashable]:
    """Dedup identity of an array item.

    The item's ``unique_key`` value when it has one; otherwise its canonical
    JSON serialization. The tag keeps the two spaces apart.
    """
    if isinstance(item, Mapping):
        key_value = item.get(unique_key)
        if key_value is not None:
            return ("key", _canonical(key_value))
    return ("value", _canonical(item))


def union_by_key(
    local_items: Sequence[Any],
    remote_items: Sequence[Any],
    unique_key: str = DEFAULT_UNIQUE_KEY,
) -> List[Any]:
    """Union two arrays, deduplicating by key.

    Disk (remote) order is kept; a key present on both sides takes the local
    item in the remote position; local-only items are appended in order.
    """
    seen: "OrderedDict[Tuple[str, Hashable], Any]" = OrderedDict()
    for item in remote_items:
        seen[item_identity(item, unique_key)] = item
    for item in local_items:
        seen[item_identity(item, unique_key)] = item
    return [copy.deepcopy(item) for item in seen.values()]


def default_merge(
    local: Payload,
    remote: Payload,
    array_keys: Sequence[str] = (),
    unique_key: str = DEFAULT_UNIQUE_KEY,
) -> Payload:
    """Merge a writer's payload into the payload currently on disk."""
    result: Dict[str, Any] = {
        key: copy.deepcopy(value) for key, value in remote.items() if key not in RESERVED_KEYS
    }
    array_fields = set(array_keys)

    for key, local_value in local.items():
        if key in RESERVED_KEYS or local_value is UNSET:
            continue
        remote_value = remote.get(key)
        if key in array_fields and isinstance(local_value, list) and isinstance(remote_value, list):
            result[key] = union_by_key(local_value, remote_value, unique_key)
        else:
            result[key] = copy.deepcopy(local_value)

    return result


def field_merge(
    resolvers: Mapping[str, FieldResolver],
    array_keys: Sequence[str] = (),
    unique_key: str = DEFAULT_UNIQUE_KEY,
) -> MergeFn:
    """Build a merge function with per-field resolvers.

    Runs default_merge, then for each field named in ``resolvers`` present on
    both sides replaces the value with ``resolver(local_value, remote_value)``.

    Example:
        merge = field_merge({"sessions": merge_max}, array_keys=["history"])
    """

    def merge(local: Payload, remote: Payload) -> Payload:
        merged = default_merge(local, remote, array_keys, unique_key)
        for name, resolver in resolvers.items():
            if name not in local or name not in remote or local[name] is UNSET:
                continue
            merged[name] = resolver(copy.deepcopy(local[name]), copy.deepcopy(remote[name]))
        return merged

    return merge


def resolve_merge(options_merge: Optional[MergeFn], array_keys: Sequence[str]) -> Optional[str]:
    """Name of the strategy a conflict will be resolved with, or None."""
    if options_merge is not None:
        return "custom"
    if array_keys:
        return "array_union"
    return None


# =============================================================================
# Field resolvers
# =============================================================================


def merge_max(local: Any, remote: Any) -> Any:
    """High-water mark: the larger value wins."""
    return _pick_numeric(local, remote, max)


def merge_min(local: Any, remote: Any) -> Any:
    """Low-water mark: the smaller value wins."""
    return _pick_numeric(local, remote, min)


def merge_lww(local: Any, remote: Any) -> Any:
    """Last writer wins: the local value, unless it is None."""
    return remote if local is None else local


def _pick_numeric(local: Any, remote: Any, pick: Callable[[Any, Any], Any]) -> Any:
    local_ok = isinstance(local, (int, float)) and not isinstance(local, bool)
    remote_ok = isinstance(remote, (int, float)) and not isinstance(remote, bool)
    if local_ok and remote_ok:
        return pick(local, remote)
    if local_ok:
        return local
    if remote_ok:
        return remote
    return local
