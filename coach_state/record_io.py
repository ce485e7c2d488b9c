#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Loading versioned records from disk.

load_record() reports what it found (missing, ok, corrupt) without ever
raising; the store decides whether a corrupt file means defaults or an error.
"""

import copy
import json
from pathlib import Path
from typing import Callable

from coach_state.models import (
    LoadOutcome,
    LoadStatus,
    Payload,
    VersionedRecord,
    strip_reserved,
)


def load_record(path: Path) -> LoadOutcome:
    """Read and parse a state file.

    Empty files, invalid JSON, a literal ``null`` and non-object values are
    all reported as corrupt.
    """
    file_path = Path(path)
    try:
        raw = file_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return LoadOutcome(status=LoadStatus.MISSING)
    except (OSError, UnicodeDecodeError) as e:
        return LoadOutcome(status=LoadStatus.CORRUPT, error=f"unreadable: {e}")

    if not raw.strip():
        return LoadOutcome(status=LoadStatus.CORRUPT, error="empty file")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        return LoadOutcome(status=LoadStatus.CORRUPT, error=f"invalid JSON: {e.msg} at line {e.lineno}")

    if data is None:
        return LoadOutcome(status=LoadStatus.CORRUPT, error="null document")
    if not isinstance(data, dict):
        return LoadOutcome(
            status=LoadStatus.CORRUPT,
            error=f"expected a JSON object, got {type(data).__name__}",
        )

    return LoadOutcome(status=LoadStatus.OK, record=VersionedRecord.from_dict(data))


def default_record(
    default_factory: Callable[[], Payload],
    writer_id: str,
    timestamp: str,
) -> VersionedRecord:
    """Build the version-0 record used when a file is missing or unusable."""
    payload = default_factory()
    if not isinstance(payload, dict):
        raise TypeError(f"default factory must return a dict, got {type(payload).__name__}")
    return VersionedRecord(
        version=0,
        last_modified_at=timestamp,
        writer_id=writer_id,
        payload=strip_reserved(copy.deepcopy(payload)),
    )
