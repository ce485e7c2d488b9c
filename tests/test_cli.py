#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Tests for the command-line interface.

Run with: pytest tests/test_cli.py -v
"""

import json
from pathlib import Path

import pytest

import coach_state.store as store_module
from coach_state.cli import main
from coach_state.models import PersistResult


@pytest.fixture
def project(project_root: Path, monkeypatch) -> Path:
    monkeypatch.setenv("PROJECT_DIR", str(project_root))
    return project_root


def _run(argv, capsys):
    """Run the CLI; returns (exit code, stdout, stderr)."""
    code = 0
    try:
        main(argv)
    except SystemExit as e:
        code = e.code
    captured = capsys.readouterr()
    return code, captured.out, captured.err


# =============================================================================
# Tests: Generic state files
# =============================================================================


class TestStateCommands:
    def test_no_command_prints_help(self, capsys):
        code, out, _ = _run([], capsys)
        assert code == 1
        assert "usage" in out.lower()

    def test_set_then_show(self, project, tmp_path: Path, capsys):
        path = tmp_path / "custom.json"

        code, out, _ = _run(["set", str(path), "budget", '{"max": 3}'], capsys)
        assert code == 0
        assert out.strip() == "OK v1"

        code, out, _ = _run(["show", str(path)], capsys)
        assert code == 0
        shown = json.loads(out)
        assert shown["_version"] == 1
        assert shown["budget"] == {"max": 3}

    def test_show_default_path_missing(self, project, capsys):
        code, out, _ = _run(["show"], capsys)
        assert code == 0
        assert json.loads(out)["_version"] == 0

    def test_set_invalid_json(self, project, tmp_path: Path, capsys):
        code, _, err = _run(["set", str(tmp_path / "s.json"), "k", "{bad"], capsys)
        assert code == 1
        assert err.startswith("Error:")
        assert "not valid JSON" in err

    def test_append_unions_items(self, project, tmp_path: Path, capsys):
        path = tmp_path / "s.json"
        _run(["append", str(path), "items", '{"id": "a"}'], capsys)
        code, out, _ = _run(["append", str(path), "items", '{"id": "b"}'], capsys)

        assert code == 0
        assert out.strip() == "OK v2"
        assert [i["id"] for i in json.loads(path.read_text())["items"]] == ["a", "b"]

    def test_show_strict_corrupt_file(self, project, tmp_path: Path, monkeypatch, capsys):
        path = tmp_path / "s.json"
        path.write_text("oops")
        monkeypatch.setenv("COACH_STATE_STRICT", "1")

        code, _, err = _run(["show", str(path)], capsys)

        assert code == 1
        assert "Corrupt state file" in err

    def test_failed_write_warns_and_exits_1(self, project, tmp_path: Path, monkeypatch, capsys):
        monkeypatch.setattr(
            store_module,
            "atomic_write_json",
            lambda path, data: PersistResult(success=False, error="disk full"),
        )

        code, out, err = _run(["set", str(tmp_path / "s.json"), "k", "1"], capsys)

        assert code == 1
        assert out.startswith("FAILED")
        assert "may not have been saved" in err


# =============================================================================
# Tests: Phase and error memory
# =============================================================================


class TestPhaseCommands:
    def test_phase_set_and_show(self, project, capsys):
        code, out, _ = _run(["phase", "set", "build", "test"], capsys)
        assert code == 0
        assert "Phase: BUILD:TEST" in out

        code, out, _ = _run(["phase", "show"], capsys)
        assert "Phase: BUILD:TEST" in out
        assert "Transitions: 1" in out
        assert (project / ".midas" / "state.json").exists()

    def test_phase_invalid(self, project, capsys):
        code, _, err = _run(["phase", "set", "nap"], capsys)
        assert code == 1
        assert "Error: Unknown phase" in err


class TestErrorCommands:
    def test_add_fix_list(self, project, capsys):
        code, out, _ = _run(["error", "add", "ImportError: foo", "--file", "main.py", "--line", "3"], capsys)
        assert code == 0
        error_id = out.split()[1].rstrip(":")

        _run(["error", "fix", error_id, "reinstall"], capsys)
        _run(["error", "fix", error_id, "pin version"], capsys)

        code, out, _ = _run(["error", "list", "--stuck"], capsys)
        assert code == 0
        assert f"[{error_id}] ImportError: foo (main.py:3)" in out
        assert "    - reinstall" in out
        assert "Total: 1 error(s)" in out

    def test_fix_unknown_id(self, project, capsys):
        code, _, err = _run(["error", "fix", "err-nope", "x"], capsys)
        assert code == 1
        assert "not found" in err

    def test_list_empty(self, project, capsys):
        code, out, _ = _run(["error", "list"], capsys)
        assert code == 0
        assert "(no errors found)" in out
