#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Data models for the atomic state store.

Contains the versioned record envelope, write/update results, options,
and constants shared by the persister, conflict detector and merge resolver.
"""

import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence


# =============================================================================
# Constants
# =============================================================================

VERSION_KEY = "_version"
LAST_MODIFIED_KEY = "_lastModified"
WRITER_ID_KEY = "_processId"
RESERVED_KEYS = frozenset({VERSION_KEY, LAST_MODIFIED_KEY, WRITER_ID_KEY})

DEFAULT_MAX_RETRIES = 3
DEFAULT_UNIQUE_KEY = "id"


class _Unset:
    """Sentinel for payload fields a modifier wants left as they are on disk."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()

Payload = Dict[str, Any]
MergeFn = Callable[[Payload, Payload], Payload]


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Enums
# =============================================================================


class CorruptionPolicy(str, Enum):
    """What a read does with a state file that fails to parse."""
    FAIL_OPEN = "fail_open"  # log a warning, use the default
    FAIL_LOUD = "fail_loud"  # raise StateCorruptedError


class LoadStatus(str, Enum):
    """Outcome of loading a state file from disk."""
    MISSING = "missing"
    OK = "ok"
    CORRUPT = "corrupt"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class WriterIdentity:
    """Opaque identity of the process producing a version.

    Used for provenance only; conflict handling never looks at it.
    """
    value: str

    @classmethod
    def generate(
        cls,
        pid: Optional[int] = None,
        now: Optional[float] = None,
        suffix: Optional[str] = None,
    ) -> "WriterIdentity":
        """Build a process identity from pid, start time and a random suffix."""
        pid = os.getpid() if pid is None else pid
        started_ms = int((time.time() if now is None else now) * 1000)
        suffix = uuid.uuid4().hex[:6] if suffix is None else suffix
        return cls(f"{pid}-{started_ms}-{suffix}")

    def __str__(self) -> str:
        return self.value


@dataclass
class VersionedRecord:
    """The unit of persistence: a payload wrapped in a version envelope."""
    version: int
    last_modified_at: str
    writer_id: str
    payload: Payload = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Build the on-disk JSON object (envelope keys first)."""
        data: Dict[str, Any] = {
            VERSION_KEY: self.version,
            LAST_MODIFIED_KEY: self.last_modified_at,
            WRITER_ID_KEY: self.writer_id,
        }
        for key, value in self.payload.items():
            if key in RESERVED_KEYS or value is UNSET:
                continue
            data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VersionedRecord":
        """Parse an on-disk object. Missing or non-integer versions read as 0."""
        version = data.get(VERSION_KEY)
        if not isinstance(version, int) or isinstance(version, bool) or version < 0:
            version = 0
        last_modified = data.get(LAST_MODIFIED_KEY)
        writer_id = data.get(WRITER_ID_KEY)
        return cls(
            version=version,
            last_modified_at=last_modified if isinstance(last_modified, str) else "",
            writer_id=writer_id if isinstance(writer_id, str) else "",
            payload=strip_reserved(data),
        )


@dataclass(frozen=True)
class LoadOutcome:
    """Diagnostic result of reading a state file without defaults applied."""
    status: LoadStatus
    record: Optional[VersionedRecord] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is LoadStatus.OK


@dataclass(frozen=True)
class PersistResult:
    """Result of a single atomic write."""
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class DiskSnapshot:
    """What is on disk immediately before a write."""
    exists: bool
    readable: bool
    version: int = 0
    payload: Optional[Payload] = None


@dataclass(frozen=True)
class ConflictCheck:
    """Comparison of the version a writer observed with the version on disk."""
    detected: bool
    expected_version: Optional[int]
    disk_version: Optional[int]
    base_version: int  # the version the next write increments


@dataclass
class UpdateOptions:
    """Options for a gated write or a read-modify-write cycle.

    Attributes:
        array_keys: Payload fields holding arrays of keyed records, union-merged
            on conflict
        unique_key: Sub-field identifying an array item
        merge: Custom merge ``(local, remote) -> payload`` used instead of the
            default merge on conflict
        max_retries: Extra full cycles attempted after a failed persist
        force_final_write: After retries run out, make one last ungated write
            instead of returning the failure
    """
    array_keys: Sequence[str] = ()
    unique_key: str = DEFAULT_UNIQUE_KEY
    merge: Optional[MergeFn] = None
    max_retries: int = DEFAULT_MAX_RETRIES
    force_final_write: bool = True

    def __post_init__(self):
        if self.max_retries < 0:
            self.max_retries = 0


@dataclass
class WriteResult:
    """Outcome of a write, reported to callers for logging or telemetry."""
    success: bool
    conflict_detected: bool = False
    conflict_resolved: bool = False
    final_version: int = 0
    attempts: int = 1
    forced: bool = False
    error: Optional[str] = None
    fatal: bool = False  # caller code failed or the read was refused; retrying cannot help


@dataclass
class UpdateResult:
    """Outcome of a read-modify-write cycle."""
    payload: Payload
    result: WriteResult
    record: Optional[VersionedRecord] = None

    @property
    def success(self) -> bool:
        return self.result.success

    def format(self) -> str:
        """One-line summary for CLI output."""
        res = self.result
        status = "OK" if res.success else "FAILED"
        parts = [f"{status} v{res.final_version}"]
        if res.conflict_detected:
            parts.append("conflict=resolved" if res.conflict_resolved else "conflict=last-writer-wins")
        if res.attempts > 1:
            parts.append(f"attempts={res.attempts}")
        if res.forced:
            parts.append("forced")
        if res.error:
            parts.append(f"error={res.error}")
        return " ".join(parts)


def strip_reserved(data: Dict[str, Any]) -> Payload:
    """Copy a mapping without the envelope keys."""
    return {key: value for key, value in data.items() if key not in RESERVED_KEYS}
