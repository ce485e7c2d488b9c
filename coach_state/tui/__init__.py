#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Live monitor for coach-state files.

Usage:
    from coach_state.tui import StateMonitorApp, run_app
    run_app(".midas/state.json")  # Launch TUI
"""

from .models import FieldKind, FieldSummary, StateSnapshot
from .state_reader import StateReader, summarize_field, summarize_payload


# Defer app import so importing the reader does not load textual
def _get_app():
    """Lazy import of app module to avoid textual import at module load."""
    from .app import StateMonitorApp, run_app
    return StateMonitorApp, run_app


def run_app(*args, **kwargs):
    """Run the TUI application. See app.run_app for details."""
    _, _run_app = _get_app()
    return _run_app(*args, **kwargs)


def __getattr__(name):
    if name == "StateMonitorApp":
        app_class, _ = _get_app()
        return app_class
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Models
    "FieldKind",
    "FieldSummary",
    "StateSnapshot",
    # State reader
    "StateReader",
    "summarize_field",
    "summarize_payload",
    # App (lazy loaded)
    "StateMonitorApp",
    "run_app",
]
