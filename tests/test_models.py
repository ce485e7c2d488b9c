#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Tests for the record envelope and result models.

Run with: pytest tests/test_models.py -v
"""

from dataclasses import FrozenInstanceError

import pytest

from coach_state.models import (
    LAST_MODIFIED_KEY,
    UNSET,
    VERSION_KEY,
    WRITER_ID_KEY,
    UpdateOptions,
    UpdateResult,
    VersionedRecord,
    WriteResult,
    WriterIdentity,
    strip_reserved,
)


# =============================================================================
# Tests: Writer Identity
# =============================================================================


class TestWriterIdentity:
    """Test writer identity generation."""

    def test_generate_from_parts(self):
        identity = WriterIdentity.generate(pid=4242, now=1700000000.5, suffix="abc123")
        assert identity.value == "4242-1700000000500-abc123"
        assert str(identity) == identity.value

    def test_generated_identities_differ(self):
        """Two identities made in the same process still differ."""
        first = WriterIdentity.generate()
        second = WriterIdentity.generate()
        assert first != second

    def test_identity_is_immutable(self):
        identity = WriterIdentity("w")
        with pytest.raises(FrozenInstanceError):
            identity.value = "other"


# =============================================================================
# Tests: Versioned Record
# =============================================================================


class TestVersionedRecord:
    """Test the on-disk envelope."""

    def test_to_dict_puts_envelope_first(self):
        record = VersionedRecord(3, "2026-01-01T00:00:00Z", "w1", {"count": 5})
        data = record.to_dict()
        assert list(data)[:3] == [VERSION_KEY, LAST_MODIFIED_KEY, WRITER_ID_KEY]
        assert data[VERSION_KEY] == 3
        assert data["count"] == 5

    def test_to_dict_drops_reserved_payload_keys(self):
        """A payload cannot smuggle in its own version."""
        record = VersionedRecord(2, "t", "w", {VERSION_KEY: 99, "a": 1})
        assert record.to_dict()[VERSION_KEY] == 2

    def test_to_dict_drops_unset(self):
        record = VersionedRecord(1, "t", "w", {"a": UNSET, "b": 2})
        assert "a" not in record.to_dict()

    def test_from_dict_round_trip(self):
        data = {VERSION_KEY: 7, LAST_MODIFIED_KEY: "t", WRITER_ID_KEY: "w", "x": [1, 2]}
        record = VersionedRecord.from_dict(data)
        assert record.version == 7
        assert record.writer_id == "w"
        assert record.payload == {"x": [1, 2]}

    @pytest.mark.parametrize("bad_version", [None, "3", -1, True, 1.5])
    def test_from_dict_bad_version_reads_as_zero(self, bad_version):
        record = VersionedRecord.from_dict({VERSION_KEY: bad_version, "x": 1})
        assert record.version == 0
        assert record.payload == {"x": 1}

    def test_from_dict_missing_envelope(self):
        """Legacy files without an envelope read as version 0."""
        record = VersionedRecord.from_dict({"current": "BUILD"})
        assert record.version == 0
        assert record.last_modified_at == ""
        assert record.writer_id == ""

    def test_strip_reserved(self):
        assert strip_reserved({VERSION_KEY: 1, WRITER_ID_KEY: "w", "a": 1}) == {"a": 1}


# =============================================================================
# Tests: UNSET sentinel
# =============================================================================


class TestUnset:
    def test_singleton(self):
        assert type(UNSET)() is UNSET

    def test_falsy_and_repr(self):
        assert not UNSET
        assert repr(UNSET) == "UNSET"


class TestUpdateOptions:
    def test_negative_retries_clamped_to_zero(self):
        assert UpdateOptions(max_retries=-1).max_retries == 0

    def test_retries_kept_when_valid(self):
        assert UpdateOptions(max_retries=5).max_retries == 5


# =============================================================================
# Tests: Result formatting
# =============================================================================


class TestUpdateResultFormat:
    """Test the one-line summary printed by the CLI."""

    def test_plain_success(self):
        result = UpdateResult(payload={}, result=WriteResult(success=True, final_version=2))
        assert result.success
        assert result.format() == "OK v2"

    def test_resolved_conflict_with_retries(self):
        result = UpdateResult(
            payload={},
            result=WriteResult(
                success=True,
                conflict_detected=True,
                conflict_resolved=True,
                final_version=5,
                attempts=2,
            ),
        )
        assert result.format() == "OK v5 conflict=resolved attempts=2"

    def test_unresolved_conflict(self):
        result = UpdateResult(
            payload={},
            result=WriteResult(success=True, conflict_detected=True, final_version=3),
        )
        assert "conflict=last-writer-wins" in result.format()

    def test_failure_includes_error(self):
        result = UpdateResult(
            payload={},
            result=WriteResult(success=False, final_version=1, attempts=5, forced=True, error="disk full"),
        )
        assert not result.success
        assert result.format() == "FAILED v1 attempts=5 forced error=disk full"
