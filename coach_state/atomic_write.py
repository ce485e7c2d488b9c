#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Atomic JSON writes (temp file + rename).

The temp file is created in the target's directory so the rename never
crosses filesystems; os.replace then swaps it in, so readers see either
the old file or the new one.
"""

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Any, Mapping

from coach_state.errors import StateWriteError
from coach_state.models import PersistResult


TEMP_PREFIX = ".tmp_state_"


def _target_mode(target: Path) -> int:
    """Mode for the new file: the existing target's, else 0o666 minus umask."""
    try:
        return stat.S_IMODE(os.stat(target).st_mode)
    except OSError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def serialize_json(data: Mapping[str, Any]) -> str:
    """Serialize a record the way it is stored on disk."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def atomic_write_json(path: Path, data: Mapping[str, Any]) -> PersistResult:
    """Write JSON to ``path`` atomically.

    Never raises: serialization and I/O failures come back as a failed
    PersistResult, with the temp file removed and the target untouched.
    """
    target = Path(path)

    try:
        content = serialize_json(data)
    except (TypeError, ValueError) as e:
        return PersistResult(success=False, error=str(StateWriteError(target, f"not serializable: {e}")))

    mode = _target_mode(target)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=str(target.parent),
            prefix=TEMP_PREFIX,
            suffix=target.suffix or ".json",
            text=True,
        )
    except OSError as e:
        return PersistResult(success=False, error=str(StateWriteError(target, e.strerror or str(e))))

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
            os.fchmod(handle.fileno(), mode)
        os.replace(temp_path, target)
    except OSError as e:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        return PersistResult(success=False, error=str(StateWriteError(target, e.strerror or str(e))))

    return PersistResult(success=True)
