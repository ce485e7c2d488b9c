#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Version conflict detection.

A writer remembers the version it read; just before writing it peeks at the
file again. If the disk version moved past what it read, someone else wrote
in between and the two payloads have to be merged.
"""

from pathlib import Path
from typing import Optional

from coach_state.models import ConflictCheck, DiskSnapshot, LoadStatus
from coach_state.record_io import load_record


def peek_disk(path: Path) -> DiskSnapshot:
    """Re-read the file just before a write."""
    outcome = load_record(path)
    if outcome.ok and outcome.record is not None:
        return DiskSnapshot(
            exists=True,
            readable=True,
            version=outcome.record.version,
            payload=outcome.record.payload,
        )
    return DiskSnapshot(exists=outcome.status is not LoadStatus.MISSING, readable=False)


def detect_conflict(expected_version: Optional[int], snapshot: DiskSnapshot) -> ConflictCheck:
    """Compare the observed version against the disk snapshot.

    ``expected_version=None`` is the ungated write: never a conflict, and the
    new version builds on whatever is on disk.

    An unreadable or absent file cannot conflict; the next version then
    builds on the version the writer observed. A file reset externally to a
    lower version never pulls the next version below what was observed.
    """
    if not snapshot.readable:
        return ConflictCheck(
            detected=False,
            expected_version=expected_version,
            disk_version=None,
            base_version=expected_version or 0,
        )

    detected = expected_version is not None and snapshot.version > expected_version
    return ConflictCheck(
        detected=detected,
        expected_version=expected_version,
        disk_version=snapshot.version,
        base_version=max(snapshot.version, expected_version or 0),
    )
