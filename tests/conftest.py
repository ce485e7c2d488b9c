#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Shared fixtures: every test gets its own state dir, config and logger."""

from pathlib import Path

import pytest

from coach_state.config import StoreConfig
from coach_state.debug_logger import DebugLogger, reset_logger
from coach_state.models import WriterIdentity
from coach_state.store import AtomicStateStore


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch):
    """Point every path the package reads from at the test's tmp dir."""
    state_dir = tmp_path / "xdg-state" / "coach-state"
    monkeypatch.setenv("COACH_STATE_STATE_DIR", str(state_dir))
    monkeypatch.setenv("COACH_STATE_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "xdg-state"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    for name in (
        "COACH_STATE_DEBUG",
        "COACH_STATE_MAX_RETRIES",
        "COACH_STATE_STRICT",
        "COACH_STATE_FORCE_FINAL_WRITE",
        "PROJECT_DIR",
    ):
        monkeypatch.delenv(name, raising=False)

    reset_logger()
    yield
    reset_logger()


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    """A state file path that does not exist yet."""
    return tmp_path / "project" / ".midas" / "state.json"


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "debug.log"


@pytest.fixture
def logger(log_path: Path) -> DebugLogger:
    """Logger at level 2 so retries are recorded too."""
    return DebugLogger(level=2, log_path=log_path)


@pytest.fixture
def store(logger: DebugLogger) -> AtomicStateStore:
    return AtomicStateStore(
        writer=WriterIdentity("writer-a"),
        logger=logger,
        config=StoreConfig(),
        clock=lambda: "2026-01-01T00:00:00Z",
    )


@pytest.fixture
def other_store(logger: DebugLogger) -> AtomicStateStore:
    """A second writer sharing the same files."""
    return AtomicStateStore(
        writer=WriterIdentity("writer-b"),
        logger=logger,
        config=StoreConfig(),
        clock=lambda: "2026-01-01T00:00:01Z",
    )


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / ".git").mkdir(parents=True)
    return root
