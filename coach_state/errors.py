#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Exception types for coach-state.

The store's public API reports failures through result objects; these
exceptions exist for the opt-in strict read policy and for diagnostics.
"""


class CoachStateError(Exception):
    """Base exception for coach-state failures."""


class StateCorruptedError(CoachStateError):
    """Raised when a state file cannot be parsed and reads are strict."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt state file {path}: {reason}")


class StateWriteError(CoachStateError):
    """Describes a failed atomic write (carried, not raised, by the persister)."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write {path}: {reason}")
