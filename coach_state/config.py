#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Configuration for coach-state.

Paths follow the XDG layout with environment overrides; store behavior is
read from an optional JSON config file and then from environment variables.

Environment:
    COACH_STATE_STATE_DIR           state dir (debug.log lives here)
    COACH_STATE_CONFIG              path to config.json
    COACH_STATE_MAX_RETRIES         retries after a failed persist
    COACH_STATE_STRICT              1/true -> corrupt files raise instead of
                                    falling back to defaults
    COACH_STATE_FORCE_FINAL_WRITE   0/false -> no ungated write after retries
    PROJECT_DIR                     project root (otherwise nearest .git)
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from coach_state.models import DEFAULT_MAX_RETRIES, CorruptionPolicy


APP_DIR_NAME = "coach-state"
PROJECT_STATE_DIR = ".midas"
PHASE_STATE_FILE = "state.json"
TRACKER_STATE_FILE = "tracker.json"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def get_state_dir() -> Path:
    """State directory: COACH_STATE_STATE_DIR, else $XDG_STATE_HOME/coach-state."""
    explicit_state = os.environ.get("COACH_STATE_STATE_DIR")
    if explicit_state:
        return Path(explicit_state)
    xdg_state = os.environ.get("XDG_STATE_HOME") or (Path.home() / ".local" / "state")
    return Path(xdg_state) / APP_DIR_NAME


def get_config_path() -> Path:
    """Config file: COACH_STATE_CONFIG, else $XDG_CONFIG_HOME/coach-state/config.json."""
    explicit_config = os.environ.get("COACH_STATE_CONFIG")
    if explicit_config:
        return Path(explicit_config)
    xdg_config = os.environ.get("XDG_CONFIG_HOME") or (Path.home() / ".config")
    return Path(xdg_config) / APP_DIR_NAME / "config.json"


def get_project_root(start: Optional[Path] = None) -> Path:
    """Find the project root.

    PROJECT_DIR wins; otherwise walk up from ``start`` (default cwd) looking
    for a .git directory, falling back to ``start`` itself.
    """
    project_root_env = os.environ.get("PROJECT_DIR")
    if project_root_env:
        return Path(project_root_env)

    origin = Path(start) if start is not None else Path.cwd()
    candidate = origin
    while candidate != candidate.parent:
        if (candidate / ".git").exists():
            return candidate
        candidate = candidate.parent
    return origin


def project_state_path(project_root: Path, file_name: str = PHASE_STATE_FILE) -> Path:
    """Path of a state file inside a project's .midas directory."""
    return Path(project_root) / PROJECT_STATE_DIR / file_name


def read_config_file(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read the JSON config file. Missing or invalid files read as empty."""
    config_path = path or get_config_path()
    try:
        if not config_path.exists():
            return {}
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    return None


def _parse_retries(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        retries = int(value)
    except (TypeError, ValueError):
        return None
    return retries if retries >= 0 else None


@dataclass
class StoreConfig:
    """Store behavior knobs."""
    max_retries: int = DEFAULT_MAX_RETRIES
    corruption_policy: CorruptionPolicy = CorruptionPolicy.FAIL_OPEN
    force_final_write: bool = True

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "StoreConfig":
        """Build config from the config file, then environment overrides.

        Invalid values are ignored and the default kept.
        """
        config = cls()
        settings = read_config_file(config_path)
        config._apply(
            retries=settings.get("maxRetries"),
            strict=settings.get("strictReads"),
            force=settings.get("forceFinalWrite"),
        )
        config._apply(
            retries=os.environ.get("COACH_STATE_MAX_RETRIES"),
            strict=os.environ.get("COACH_STATE_STRICT"),
            force=os.environ.get("COACH_STATE_FORCE_FINAL_WRITE"),
        )
        return config

    def _apply(self, retries: Any, strict: Any, force: Any) -> None:
        parsed_retries = _parse_retries(retries)
        if parsed_retries is not None:
            self.max_retries = parsed_retries

        parsed_strict = _parse_bool(strict)
        if parsed_strict is not None:
            self.corruption_policy = (
                CorruptionPolicy.FAIL_LOUD if parsed_strict else CorruptionPolicy.FAIL_OPEN
            )

        parsed_force = _parse_bool(force)
        if parsed_force is not None:
            self.force_final_write = parsed_force
