#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
coach-state - versioned, conflict-resolving JSON state files.

Several independent processes (CLI sessions, watchers, dashboards) can share
one state file without locks: every write is atomic, every record carries a
version, and concurrent writes are merged instead of lost.

Usage:
    from coach_state import AtomicStateStore

    store = AtomicStateStore()
    result = store.update(
        ".midas/state.json",
        lambda: {"history": []},
        lambda state: state["history"].append({"id": "h1"}),
        store.options(array_keys=["history"]),
    )
    result.result.final_version  # 1
"""

# Main class
from coach_state.store import AtomicStateStore

# Data models - Constants
from coach_state.models import (
    VERSION_KEY,
    LAST_MODIFIED_KEY,
    WRITER_ID_KEY,
    RESERVED_KEYS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_UNIQUE_KEY,
    UNSET,
)

# Data models - Enums
from coach_state.models import (
    CorruptionPolicy,
    LoadStatus,
)

# Data models - Dataclasses
from coach_state.models import (
    WriterIdentity,
    VersionedRecord,
    LoadOutcome,
    PersistResult,
    DiskSnapshot,
    ConflictCheck,
    UpdateOptions,
    WriteResult,
    UpdateResult,
)

# Exceptions
from coach_state.errors import CoachStateError, StateCorruptedError, StateWriteError

# Building blocks
from coach_state.atomic_write import atomic_write_json
from coach_state.record_io import load_record
from coach_state.conflict import detect_conflict, peek_disk
from coach_state.merge import (
    default_merge,
    field_merge,
    union_by_key,
    merge_max,
    merge_min,
    merge_lww,
)

# Configuration
from coach_state.config import StoreConfig, get_project_root, get_state_dir

# Domain state
from coach_state.phase import PhaseTracker
from coach_state.error_memory import ErrorMemory

# CLI entry point
from coach_state.cli import main

__version__ = "0.1.0"

__all__ = [
    # Main class
    "AtomicStateStore",
    # Constants
    "VERSION_KEY",
    "LAST_MODIFIED_KEY",
    "WRITER_ID_KEY",
    "RESERVED_KEYS",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_UNIQUE_KEY",
    "UNSET",
    # Enums
    "CorruptionPolicy",
    "LoadStatus",
    # Dataclasses
    "WriterIdentity",
    "VersionedRecord",
    "LoadOutcome",
    "PersistResult",
    "DiskSnapshot",
    "ConflictCheck",
    "UpdateOptions",
    "WriteResult",
    "UpdateResult",
    # Exceptions
    "CoachStateError",
    "StateCorruptedError",
    "StateWriteError",
    # Building blocks
    "atomic_write_json",
    "load_record",
    "detect_conflict",
    "peek_disk",
    "default_merge",
    "field_merge",
    "union_by_key",
    "merge_max",
    "merge_min",
    "merge_lww",
    # Configuration
    "StoreConfig",
    "get_project_root",
    "get_state_dir",
    # Domain state
    "PhaseTracker",
    "ErrorMemory",
    # CLI
    "main",
]
