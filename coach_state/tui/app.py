#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
State monitor TUI.

Watches one state file and shows its envelope (version, last writer, last
modified) and a per-field summary of its payload, refreshed on a timer.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.widgets import DataTable, Footer, Header, Static

from coach_state.models import LoadStatus
from coach_state.tui.models import StateSnapshot
from coach_state.tui.state_reader import StateReader


STATUS_COLORS = {
    LoadStatus.OK: "green",
    LoadStatus.MISSING: "yellow",
    LoadStatus.CORRUPT: "bold red",
}

FIELD_COLUMNS = ("Field", "Kind", "Size", "Preview")


def format_envelope(snapshot: StateSnapshot) -> str:
    """Rich markup for the envelope panel."""
    color = STATUS_COLORS.get(snapshot.status, "white")
    lines = [
        f"[bold]{snapshot.path}[/bold]",
        f"Status: [{color}]{snapshot.status.value}[/{color}]",
    ]
    if snapshot.status is LoadStatus.OK:
        lines.append(f"Version: {snapshot.version}")
        lines.append(f"Last modified: {snapshot.last_modified or '-'}")
        lines.append(f"Writer: {snapshot.writer_id or '-'}")
        lines.append(f"Fields: {snapshot.field_count} ({snapshot.array_item_count} array items)")
    if snapshot.error:
        lines.append(f"[red]{snapshot.error}[/red]")
    return "\n".join(lines)


class StateMonitorApp(App):
    """
    Textual application showing a live view of one state file.

    The file is re-read every ``refresh_interval`` seconds in a worker thread;
    'p' pauses polling, 'r' refreshes immediately.
    """

    TITLE = "coach-state monitor"

    DEFAULT_CSS = """
    #envelope {
        padding: 1 2;
        height: auto;
    }
    #fields {
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("p", "toggle_pause", "Pause"),
        Binding("r", "refresh", "Refresh"),
    ]

    def __init__(self, state_path: Union[str, Path], refresh_interval: float = 2.0) -> None:
        """
        Initialize the app.

        Args:
            state_path: State file to watch
            refresh_interval: Seconds between automatic refreshes
        """
        super().__init__()
        self.state_reader = StateReader(state_path)
        self.refresh_interval = refresh_interval
        self.snapshot: Optional[StateSnapshot] = None
        self._paused = False
        self._refresh_timer = None

    def compose(self) -> ComposeResult:
        """Compose the app layout."""
        yield Header()
        yield Vertical(
            Static("Loading...", id="envelope"),
            DataTable(id="fields"),
        )
        yield Footer()

    def on_mount(self) -> None:
        """Initialize on app mount."""
        table = self.query_one("#fields", DataTable)
        table.add_columns(*FIELD_COLUMNS)
        table.cursor_type = "row"

        self._show(self.state_reader.snapshot())
        self._update_subtitle()
        self._refresh_timer = self.set_interval(self.refresh_interval, self._on_refresh_timer)

    def _on_refresh_timer(self) -> None:
        """Sync timer callback - updates subtitle and triggers async refresh."""
        self._update_subtitle()
        if not self._paused:
            self._refresh_snapshot()

    @work(exclusive=True)
    async def _refresh_snapshot(self) -> None:
        """Async worker reading the file off the event loop."""
        snapshot = await asyncio.to_thread(self.state_reader.snapshot)
        self._show(snapshot)

    def _show(self, snapshot: StateSnapshot) -> None:
        self.snapshot = snapshot
        self.query_one("#envelope", Static).update(format_envelope(snapshot))

        table = self.query_one("#fields", DataTable)
        table.clear()
        for summary in snapshot.fields:
            table.add_row(summary.name, summary.kind, str(summary.size), summary.preview, key=summary.name)

    def action_toggle_pause(self) -> None:
        """Toggle pause/resume of auto-refresh."""
        self._paused = not self._paused
        status = "PAUSED" if self._paused else "RUNNING"
        self.notify(f"Auto-refresh: {status}")
        self._update_subtitle()

    def action_refresh(self) -> None:
        """Manual refresh."""
        self._show(self.state_reader.snapshot())
        self.notify("Refreshed")

    def _get_dynamic_subtitle(self) -> str:
        parts = []
        if self.snapshot is not None and self.snapshot.status is LoadStatus.OK:
            parts.append(f"v{self.snapshot.version}")
        if self._paused:
            parts.append("[PAUSED]")
        parts.append(datetime.now().strftime("%H:%M:%S"))
        return " | ".join(parts)

    def _update_subtitle(self) -> None:
        self.sub_title = self._get_dynamic_subtitle()


def run_app(state_path: Union[str, Path], refresh_interval: float = 2.0) -> None:
    """
    Run the TUI application.

    Args:
        state_path: State file to watch
        refresh_interval: Seconds between automatic refreshes
    """
    app = StateMonitorApp(state_path, refresh_interval=refresh_interval)
    app.run()
