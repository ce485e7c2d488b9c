#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Error memory: which errors were seen and what was tried against them.

Stored under ``errorMemory`` in <project>/.midas/tracker.json. Entries are
keyed by id and union-merged on conflict, so two sessions recording errors
at the same time both keep theirs.
"""

import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from coach_state.config import TRACKER_STATE_FILE, project_state_path
from coach_state.debug_logger import trace_call
from coach_state.models import Payload, UpdateResult
from coach_state.store import AtomicStateStore


ERROR_MEMORY_KEY = "errorMemory"
ERROR_MEMORY_CAP = 50
STUCK_ATTEMPTS = 2


def _now_ms() -> int:
    return int(time.time() * 1000)


def default_tracker_state() -> Payload:
    return {ERROR_MEMORY_KEY: []}


def _entries(payload: Payload) -> List[Dict[str, Any]]:
    entries = payload.get(ERROR_MEMORY_KEY)
    if not isinstance(entries, list):
        return []
    return [entry for entry in entries if isinstance(entry, dict) and isinstance(entry.get("id"), str)]


class ErrorMemory:
    """Per-project error memory backed by the atomic state store."""

    def __init__(self, project_root: Path, store: Optional[AtomicStateStore] = None):
        self.project_root = Path(project_root)
        self.state_file = project_state_path(self.project_root, TRACKER_STATE_FILE)
        self.store = store or AtomicStateStore()

    def _update(self, modifier) -> UpdateResult:
        return self.store.update(
            self.state_file,
            default_tracker_state,
            modifier,
            self.store.options(array_keys=[ERROR_MEMORY_KEY]),
        )

    def list_errors(self) -> List[Dict[str, Any]]:
        record = self.store.read(self.state_file, default_tracker_state)
        return _entries(record.payload)

    @trace_call
    def record_error(
        self,
        error: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Record an error occurrence.

        An unresolved entry with the same message and file is bumped instead
        of duplicated. New entries go first; the list keeps the newest
        ERROR_MEMORY_CAP entries.

        Returns:
            The new or updated entry
        """
        if not error or not error.strip():
            raise ValueError("Error message cannot be empty")

        now = _now_ms()
        new_entry = {
            "id": f"err-{now}-{uuid.uuid4().hex[:8]}",
            "error": error,
            "file": file,
            "line": line,
            "firstSeen": now,
            "lastSeen": now,
            "fixAttempts": [],
            "resolved": False,
        }
        recorded: Dict[str, Any] = {}

        def modifier(payload: Payload) -> Payload:
            entries = _entries(payload)
            for entry in entries:
                if entry.get("error") == error and entry.get("file") == file and not entry.get("resolved"):
                    entry["lastSeen"] = now
                    recorded.clear()
                    recorded.update(entry)
                    break
            else:
                entries = [dict(new_entry)] + entries[: ERROR_MEMORY_CAP - 1]
                recorded.clear()
                recorded.update(new_entry)
            payload[ERROR_MEMORY_KEY] = entries
            return payload

        result = self._update(modifier)
        if not result.success:
            raise OSError(f"Failed to save error memory: {result.result.error}")
        self.store.logger.mutation("record_error", recorded["id"], {"file": file})
        return recorded

    @trace_call
    def record_fix_attempt(self, error_id: str, approach: str, worked: bool) -> Dict[str, Any]:
        """Append a fix attempt; a working fix resolves the error.

        Raises:
            ValueError: If no error has this id
        """
        found: Dict[str, Any] = {}

        def modifier(payload: Payload) -> Payload:
            entries = _entries(payload)
            found.clear()
            for entry in entries:
                if entry["id"] == error_id:
                    attempts = entry.get("fixAttempts")
                    if not isinstance(attempts, list):
                        attempts = []
                    attempts.append({"approach": approach, "timestamp": _now_ms(), "worked": bool(worked)})
                    entry["fixAttempts"] = attempts
                    if worked:
                        entry["resolved"] = True
                    found.update(entry)
                    break
            else:
                raise ValueError(f"Error {error_id} not found")
            payload[ERROR_MEMORY_KEY] = entries
            return payload

        if not any(entry["id"] == error_id for entry in self.list_errors()):
            raise ValueError(f"Error {error_id} not found")

        result = self._update(modifier)
        if not found:
            # removed by another writer after the check above; nothing was saved
            raise ValueError(f"Error {error_id} not found")
        if not result.success:
            raise OSError(f"Failed to save error memory: {result.result.error}")
        self.store.logger.mutation("record_fix_attempt", error_id, {"worked": bool(worked)})
        return found

    def get_unresolved_errors(self) -> List[Dict[str, Any]]:
        return [entry for entry in self.list_errors() if not entry.get("resolved")]

    def get_stuck_errors(self) -> List[Dict[str, Any]]:
        """Unresolved errors with at least STUCK_ATTEMPTS failed fixes."""
        return [
            entry
            for entry in self.get_unresolved_errors()
            if len(entry.get("fixAttempts") or []) >= STUCK_ATTEMPTS
        ]
