#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Phase tracking on top of the atomic state store.

The project's lifecycle phase lives in <project>/.midas/state.json:

    {"_version": 3, ..., "current": {"phase": "BUILD", "step": "TEST"},
     "history": [{"id": "...", "phase": {...}, "timestamp": "..."}],
     "startedAt": "...", "docs": {"brainlift": false, "prd": true, "gameplan": false}}

History entries carry unique ids so concurrent transitions union-merge
instead of overwriting each other.
"""

import hashlib
import json
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from coach_state.config import PHASE_STATE_FILE, project_state_path
from coach_state.debug_logger import trace_call
from coach_state.merge import default_merge
from coach_state.models import Payload, UpdateResult, utc_now_iso
from coach_state.store import AtomicStateStore


# =============================================================================
# Constants
# =============================================================================

PHASE_STEPS: Dict[str, List[str]] = {
    "IDLE": [],
    "PLAN": ["IDEA", "RESEARCH", "BRAINLIFT", "PRD", "GAMEPLAN"],
    "BUILD": ["RULES", "INDEX", "READ", "RESEARCH", "IMPLEMENT", "TEST", "DEBUG"],
    "SHIP": ["REVIEW", "DEPLOY", "MONITOR"],
    "GROW": ["DONE"],
}
DOC_FLAGS = ("brainlift", "prd", "gameplan")
HISTORY_KEY = "history"


def default_phase_state() -> Payload:
    """Fresh phase state for a project that has none."""
    return {
        "current": {"phase": "IDLE"},
        HISTORY_KEY: [],
        "startedAt": utc_now_iso(),
        "docs": {name: False for name in DOC_FLAGS},
    }


def make_phase(phase: str, step: Optional[str] = None) -> Dict[str, str]:
    """Validate and build a phase value.

    Raises:
        ValueError: If the phase or step is unknown
    """
    phase = phase.upper()
    if phase not in PHASE_STEPS:
        raise ValueError(f"Unknown phase: {phase} (expected one of {', '.join(PHASE_STEPS)})")

    steps = PHASE_STEPS[phase]
    if not steps:
        if step:
            raise ValueError(f"Phase {phase} has no steps")
        return {"phase": phase}

    step = (step or steps[0]).upper()
    if step not in steps:
        raise ValueError(f"Unknown step {step} for phase {phase} (expected one of {', '.join(steps)})")
    return {"phase": phase, "step": step}


def create_history_entry(phase: Dict[str, Any]) -> Dict[str, Any]:
    """History entry with an id unique across processes."""
    return {
        "id": f"{int(time.time() * 1000)}-{os.getpid()}-{uuid.uuid4().hex[:6]}",
        "phase": dict(phase),
        "timestamp": utc_now_iso(),
    }


def _content_id(entry: Dict[str, Any]) -> str:
    """Stable id for a history entry stored without one."""
    digest = hashlib.sha1(json.dumps(entry, sort_keys=True, default=str).encode("utf-8"))
    return f"h-{digest.hexdigest()[:12]}"


def sanitize_phase_state(raw: Any) -> Payload:
    """Coerce a loaded payload into a valid phase state.

    Wrong types fall back to defaults, non-object history entries are dropped
    and entries missing an id get one derived from their content.
    """
    defaults = default_phase_state()
    if not isinstance(raw, dict):
        return defaults

    current = defaults["current"]
    raw_current = raw.get("current")
    if isinstance(raw_current, dict) and isinstance(raw_current.get("phase"), str):
        current = raw_current

    history = []
    raw_history = raw.get(HISTORY_KEY)
    if isinstance(raw_history, list):
        for entry in raw_history:
            if not isinstance(entry, dict):
                continue
            phase = entry.get("phase")
            history.append({
                "id": entry["id"] if isinstance(entry.get("id"), str) else _content_id(entry),
                "phase": phase if isinstance(phase, dict) else {"phase": "IDLE"},
                "timestamp": entry["timestamp"] if isinstance(entry.get("timestamp"), str) else utc_now_iso(),
            })

    docs = dict(defaults["docs"])
    raw_docs = raw.get("docs")
    if isinstance(raw_docs, dict):
        for name in DOC_FLAGS:
            if isinstance(raw_docs.get(name), bool):
                docs[name] = raw_docs[name]

    state: Payload = {
        "current": current,
        HISTORY_KEY: history,
        "startedAt": raw["startedAt"] if isinstance(raw.get("startedAt"), str) else defaults["startedAt"],
        "docs": docs,
    }
    if isinstance(raw.get("hotfix"), dict):
        state["hotfix"] = raw["hotfix"]
    return state


def merge_phase_state(local: Payload, remote: Payload) -> Payload:
    """Conflict merge: sanitize the disk copy, then union history by id."""
    return default_merge(local, sanitize_phase_state(remote), [HISTORY_KEY])


def format_phase(phase: Dict[str, Any]) -> str:
    """Human-readable phase, e.g. 'BUILD:TEST'."""
    name = phase.get("phase", "IDLE")
    step = phase.get("step")
    return f"{name}:{step}" if step else str(name)


class PhaseTracker:
    """
    Lifecycle phase state for one project.

    Attributes:
        project_root: Root directory of the project
        state_file: Path to <project>/.midas/state.json
        store: Store used for every read and write
    """

    def __init__(self, project_root: Path, store: Optional[AtomicStateStore] = None):
        self.project_root = Path(project_root)
        self.state_file = project_state_path(self.project_root, PHASE_STATE_FILE)
        self.store = store or AtomicStateStore()

    def load(self) -> Payload:
        """Current phase state (sanitized; defaults if absent or corrupt)."""
        record = self.store.read(self.state_file, default_phase_state)
        return sanitize_phase_state(record.payload)

    def version(self) -> int:
        return self.store.read(self.state_file, default_phase_state).version

    @trace_call
    def set_phase(self, phase: str, step: Optional[str] = None) -> UpdateResult:
        """Move to a new phase, recording the previous one in history.

        Raises:
            ValueError: If the phase or step is unknown
        """
        new_phase = make_phase(phase, step)

        def modifier(payload: Payload) -> Payload:
            state = sanitize_phase_state(payload)
            state[HISTORY_KEY].append(create_history_entry(state["current"]))
            state["current"] = new_phase
            return state

        result = self.store.update(
            self.state_file,
            default_phase_state,
            modifier,
            self.store.options(array_keys=[HISTORY_KEY], merge=merge_phase_state),
        )
        self.store.logger.mutation(
            "set_phase",
            str(self.state_file),
            {"phase": format_phase(new_phase), "version": result.result.final_version},
        )
        return result

    @trace_call
    def set_doc_flag(self, name: str, value: bool = True) -> UpdateResult:
        """Mark a planning document (brainlift, prd, gameplan) present or absent.

        Raises:
            ValueError: If the document name is unknown
        """
        if name not in DOC_FLAGS:
            raise ValueError(f"Unknown document: {name} (expected one of {', '.join(DOC_FLAGS)})")

        def modifier(payload: Payload) -> Payload:
            state = sanitize_phase_state(payload)
            state["docs"][name] = bool(value)
            return state

        return self.store.update(
            self.state_file,
            default_phase_state,
            modifier,
            self.store.options(array_keys=[HISTORY_KEY], merge=merge_phase_state),
        )
