#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Debug logging for coach-state.

Outputs JSON lines format to ~/.local/state/coach-state/debug.log
(or $COACH_STATE_STATE_DIR/debug.log).

Levels:
  0: disabled
  1: info - writes, conflicts, read fallbacks, failures (default)
  2: debug - includes retries and operation timing
  3: trace - includes file I/O timing and function calls
"""

import json
import os
import sys
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Dict, List, Optional

from coach_state.config import get_state_dir, read_config_file


DEBUG_ENV_VAR = "COACH_STATE_DEBUG"
LOG_FILE_NAME = "debug.log"
MAX_LOG_SIZE_MB = 50
MAX_LOG_FILES = 3
DEFAULT_DEBUG_LEVEL = 1

# Session ID - generated once per process, correlates log lines only
_SESSION_ID: Optional[str] = None


def _get_session_id() -> str:
    """Get or create a session ID for correlating events."""
    global _SESSION_ID
    if _SESSION_ID is None:
        _SESSION_ID = uuid.uuid4().hex[:12]
    return _SESSION_ID


def _read_settings_debug_level() -> Optional[int]:
    """Read debugLevel from the config file if it is set."""
    level = read_config_file().get("debugLevel")
    if level is None:
        return None
    try:
        return int(level)
    except (TypeError, ValueError):
        return None


def _get_debug_level() -> int:
    """Get the configured debug level.

    Checks in order of precedence:
    1. COACH_STATE_DEBUG env var
    2. debugLevel in the config file
    3. Default: 1
    """
    env_level = os.environ.get(DEBUG_ENV_VAR)
    if env_level:
        try:
            return int(env_level)
        except ValueError:
            return 1 if env_level.lower() in ("true", "yes", "on") else 0

    settings_level = _read_settings_debug_level()
    if settings_level is not None:
        return settings_level

    return DEFAULT_DEBUG_LEVEL


def _get_log_path() -> Path:
    return get_state_dir() / LOG_FILE_NAME


def _rotate_if_needed(log_path: Path) -> None:
    """Rotate log file if it exceeds size limit."""
    if not log_path.exists():
        return

    size_mb = log_path.stat().st_size / (1024 * 1024)
    if size_mb < MAX_LOG_SIZE_MB:
        return

    # debug.log.2 -> delete, debug.log.1 -> .2, debug.log -> .1
    for i in range(MAX_LOG_FILES - 1, 0, -1):
        old_path = log_path.parent / f"{LOG_FILE_NAME}.{i}"
        new_path = log_path.parent / f"{LOG_FILE_NAME}.{i + 1}"
        if old_path.exists():
            if i == MAX_LOG_FILES - 1:
                old_path.unlink()
            else:
                old_path.rename(new_path)

    log_path.rename(log_path.parent / f"{LOG_FILE_NAME}.1")


class DebugLogger:
    """
    JSON lines debug logger for coach-state.

    All methods are no-ops when COACH_STATE_DEBUG is 0.
    """

    def __init__(self, level: Optional[int] = None, log_path: Optional[Path] = None) -> None:
        self._level = _get_debug_level() if level is None else level
        if self._level > 0:
            self._log_path = log_path or _get_log_path()
        else:
            self._log_path = None

    @property
    def enabled(self) -> bool:
        return self._level > 0

    @property
    def level(self) -> int:
        return self._level

    @property
    def log_path(self) -> Optional[Path]:
        return self._log_path

    def _write(self, event: Dict[str, Any]) -> None:
        """Write an event to the log file."""
        if not self.enabled or self._log_path is None:
            return

        event["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        event["session_id"] = _get_session_id()
        event["pid"] = os.getpid()

        project_dir = os.environ.get("PROJECT_DIR", "")
        if project_dir:
            event["project"] = Path(project_dir).name

        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            _rotate_if_needed(self._log_path)

            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event, default=str) + "\n")
        except (OSError, ValueError) as e:
            # Never let logging errors affect state writes
            if self._level >= 3:
                print(f"[debug_logger] write failed: {type(e).__name__}: {e}", file=sys.stderr)

    # =========================================================================
    # Level 1: Info events
    # =========================================================================

    def state_write(
        self,
        path: str,
        version: int,
        writer_id: str,
        conflict_detected: bool,
        conflict_resolved: bool,
        attempts: int,
    ) -> None:
        """Log a successful persisted write."""
        if self._level < 1:
            return
        self._write(
            {
                "event": "state_write",
                "level": "info",
                "path": path,
                "version": version,
                "writer_id": writer_id,
                "conflict_detected": conflict_detected,
                "conflict_resolved": conflict_resolved,
                "attempts": attempts,
            }
        )

    def state_conflict(
        self,
        path: str,
        expected_version: int,
        disk_version: int,
        resolved: bool,
        strategy: str,
    ) -> None:
        """Log a detected version conflict and how it was handled."""
        if self._level < 1:
            return
        self._write(
            {
                "event": "state_conflict",
                "level": "info",
                "path": path,
                "expected_version": expected_version,
                "disk_version": disk_version,
                "resolved": resolved,
                "strategy": strategy,  # custom, array_union, last_writer_wins
            }
        )

    def state_read_fallback(self, path: str, reason: str) -> None:
        """Log a corrupt state file replaced by defaults."""
        if self._level < 1:
            return
        self._write(
            {
                "event": "state_read_fallback",
                "level": "warning",
                "path": path,
                "reason": reason,
            }
        )

    def state_write_failed(self, path: str, error: str, attempt: int) -> None:
        """Log a persist failure."""
        if self._level < 1:
            return
        self._write(
            {
                "event": "state_write_failed",
                "level": "error",
                "path": path,
                "err": error,
                "attempt": attempt,
            }
        )

    def state_forced_write(self, path: str, success: bool, version: int) -> None:
        """Log the ungated write made after retries ran out."""
        if self._level < 1:
            return
        self._write(
            {
                "event": "state_forced_write",
                "level": "warning",
                "path": path,
                "success": success,
                "version": version,
            }
        )

    def error(self, operation: str, error: str, context: Optional[Dict] = None) -> None:
        """Log errors - level 1 (always shown when debug enabled)."""
        if self._level < 1:
            return
        event = {"event": "error", "level": "error", "op": operation, "err": error}
        if context:
            event["ctx"] = context
        self._write(event)

    def mutation(self, op: str, target: str, details: Optional[Dict] = None) -> None:
        """Log domain mutations (phase change, error recorded) - level 1."""
        if self._level < 1:
            return
        event = {"event": "mutation", "level": "info", "op": op, "target": target}
        if details:
            event.update(details)
        self._write(event)

    # =========================================================================
    # Level 2: Debug events
    # =========================================================================

    def state_retry(self, path: str, attempt: int, max_retries: int, error: Optional[str]) -> None:
        """Log a retry of the read-modify-write cycle."""
        if self._level < 2:
            return
        self._write(
            {
                "event": "state_retry",
                "level": "debug",
                "path": path,
                "attempt": attempt,
                "max_retries": max_retries,
                "err": error,
            }
        )

    @contextmanager
    def timer(self, operation: str, context: Optional[Dict[str, Any]] = None):
        """Context manager to time any operation at level 2.

        Usage:
            with logger.timer("state_update", {"path": "..."}):
                do_work()
        """
        if self._level < 2:
            yield
            return

        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            event = {
                "event": "timing",
                "level": "debug",
                "op": operation,
                "ms": round(duration_ms, 2),
            }
            if context:
                event.update(context)
            self._write(event)

    # =========================================================================
    # Level 3: Trace events
    # =========================================================================

    @contextmanager
    def trace_file_io(self, operation: str, file_path: str):
        """Context manager to trace file I/O timing."""
        if self._level < 3:
            yield
            return

        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self._write(
                {
                    "event": "file_io",
                    "level": "trace",
                    "operation": operation,  # read, peek, write
                    "file_path": str(file_path),
                    "duration_ms": round(duration_ms, 2),
                }
            )


# Process-wide default; stores also accept an injected logger
_logger: Optional[DebugLogger] = None


def get_logger() -> DebugLogger:
    """Get the shared debug logger instance."""
    global _logger
    if _logger is None:
        _logger = DebugLogger()
    return _logger


def reset_logger() -> None:
    """Reset the shared logger (for testing)."""
    global _logger
    _logger = None


def read_events(log_path: Path) -> List[Dict[str, Any]]:
    """Parse a debug log into events, skipping malformed lines."""
    if not log_path.exists():
        return []
    events = []
    for line in log_path.read_text(encoding="utf-8", errors="replace").splitlines():
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(event, dict):
            events.append(event)
    return events


def trace_call(func):
    """Decorator to trace function entry/exit at level 3."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger()
        if logger.level < 3:
            return func(*args, **kwargs)

        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            logger._write(
                {
                    "event": "function_call",
                    "level": "trace",
                    "function": func.__name__,
                    "duration_ms": round(duration_ms, 2),
                }
            )

    return wrapper
