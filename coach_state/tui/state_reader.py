#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
State reader for the state monitor.

Reads a state file without going through a store: the monitor never writes,
never applies defaults and reports corruption instead of hiding it.
"""

import json
from pathlib import Path
from typing import Any, List, Union

from coach_state.models import LoadStatus, Payload
from coach_state.record_io import load_record
from coach_state.tui.models import FieldKind, FieldSummary, StateSnapshot


PREVIEW_WIDTH = 60


def _preview(value: Any, width: int = PREVIEW_WIDTH) -> str:
    text = json.dumps(value, ensure_ascii=False, default=str)
    if len(text) > width:
        return text[: width - 3] + "..."
    return text


def summarize_field(name: str, value: Any) -> FieldSummary:
    """Classify a payload field and build its display summary."""
    if value is None:
        return FieldSummary(name=name, kind=FieldKind.NULL, size=0, preview="null")
    if isinstance(value, list):
        return FieldSummary(name=name, kind=FieldKind.ARRAY, size=len(value), preview=_preview(value))
    if isinstance(value, dict):
        return FieldSummary(name=name, kind=FieldKind.OBJECT, size=len(value), preview=_preview(value))
    return FieldSummary(name=name, kind=FieldKind.SCALAR, size=1, preview=_preview(value))


def summarize_payload(payload: Payload) -> List[FieldSummary]:
    return [summarize_field(name, value) for name, value in payload.items()]


class StateReader:
    """
    Reads one state file into StateSnapshot objects.

    Attributes:
        path: State file being watched
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def snapshot(self) -> StateSnapshot:
        """Read the file now. Never raises; problems land in ``error``."""
        outcome = load_record(self.path)
        if outcome.status is LoadStatus.MISSING:
            return StateSnapshot(path=str(self.path), status=LoadStatus.MISSING, error="file not found")
        if not outcome.ok or outcome.record is None:
            return StateSnapshot(path=str(self.path), status=LoadStatus.CORRUPT, error=outcome.error)

        record = outcome.record
        return StateSnapshot(
            path=str(self.path),
            status=LoadStatus.OK,
            version=record.version,
            last_modified=record.last_modified_at,
            writer_id=record.writer_id,
            fields=summarize_payload(record.payload),
        )
