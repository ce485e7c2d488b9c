#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Multi-process tests: several OS processes updating one state file.

Run with: pytest tests/test_concurrency.py -v
"""

import json
import os
import subprocess
import sys
import time
from pathlib import Path

from coach_state.atomic_write import TEMP_PREFIX
from coach_state.models import LoadStatus
from coach_state.record_io import load_record


REPO_ROOT = Path(__file__).resolve().parent.parent

WRITER_SCRIPT = """
import sys
from coach_state.store import AtomicStateStore

path, name, count = sys.argv[1], sys.argv[2], int(sys.argv[3])
store = AtomicStateStore()
failures = 0
for i in range(count):
    def modifier(state, i=i):
        state["entries"].append({"id": f"{name}-{i}"})
        state["last_writer"] = name
    result = store.update(path, lambda: {"entries": []}, modifier, store.options(array_keys=["entries"]))
    if not result.success:
        failures += 1
sys.exit(1 if failures else 0)
"""


def _start_writers(state_file: Path, writers: int, updates: int, tmp_path: Path):
    env = {
        **os.environ,
        "PYTHONPATH": os.pathsep.join(filter(None, [str(REPO_ROOT), os.environ.get("PYTHONPATH")])),
        "COACH_STATE_STATE_DIR": str(tmp_path / "state"),
        "COACH_STATE_DEBUG": "0",
    }
    return [
        subprocess.Popen(
            [sys.executable, "-c", WRITER_SCRIPT, str(state_file), f"w{n}", str(updates)],
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        for n in range(writers)
    ]


def _wait(procs):
    results = []
    for proc in procs:
        stdout, stderr = proc.communicate(timeout=120)
        results.append((proc.returncode, stderr))
    return results


def _run_writers(state_file: Path, writers: int, updates: int, tmp_path: Path):
    return _wait(_start_writers(state_file, writers, updates, tmp_path))


class TestMultiProcessWriters:
    """Independent processes share a file without locks."""

    def test_file_always_parses_and_writes_succeed(self, tmp_path: Path):
        state_file = tmp_path / ".midas" / "state.json"

        results = _run_writers(state_file, writers=4, updates=15, tmp_path=tmp_path)

        for returncode, stderr in results:
            assert returncode == 0, stderr

        data = json.loads(state_file.read_text())
        assert isinstance(data["_version"], int)
        assert data["_version"] > 0
        assert data["last_writer"] in {"w0", "w1", "w2", "w3"}

        ids = [entry["id"] for entry in data["entries"]]
        assert len(ids) == len(set(ids))
        assert all(entry_id.split("-")[0] in {"w0", "w1", "w2", "w3"} for entry_id in ids)

    def test_reads_during_writes_always_parse(self, tmp_path: Path):
        state_file = tmp_path / ".midas" / "state.json"
        procs = _start_writers(state_file, writers=3, updates=20, tmp_path=tmp_path)

        statuses = []
        deadline = time.monotonic() + 120
        while any(proc.poll() is None for proc in procs) and time.monotonic() < deadline:
            outcome = load_record(state_file)
            statuses.append(outcome.status)
            assert outcome.status is not LoadStatus.CORRUPT, outcome.error

        for returncode, stderr in _wait(procs):
            assert returncode == 0, stderr
        assert load_record(state_file).status is LoadStatus.OK
        assert statuses

    def test_no_temp_files_left_behind(self, tmp_path: Path):
        state_file = tmp_path / ".midas" / "state.json"

        _run_writers(state_file, writers=3, updates=10, tmp_path=tmp_path)

        leftovers = [p.name for p in state_file.parent.iterdir() if p.name.startswith(TEMP_PREFIX)]
        assert leftovers == []

    def test_sequential_processes_keep_every_entry(self, tmp_path: Path):
        """Without overlap nothing is lost and versions count every write."""
        state_file = tmp_path / ".midas" / "state.json"

        for n in range(3):
            (returncode, stderr), = _run_writers(state_file, writers=1, updates=4, tmp_path=tmp_path)
            assert returncode == 0, stderr

        data = json.loads(state_file.read_text())
        assert data["_version"] == 12
        assert len(data["entries"]) == 12
