#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Data models for the state monitor.

Snapshots are plain dataclasses so the reader can be tested without textual.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from coach_state.models import LoadStatus


class FieldKind:
    """Constants for payload field kinds."""

    ARRAY = "array"
    OBJECT = "object"
    SCALAR = "scalar"
    NULL = "null"


@dataclass
class FieldSummary:
    """
    One top-level payload field, summarized for display.

    Attributes:
        name: Field name
        kind: One of FieldKind
        size: Item count for arrays and objects, 1 for scalars, 0 for null
        preview: Short rendering of the value
    """

    name: str
    kind: str
    size: int
    preview: str


@dataclass
class StateSnapshot:
    """Point-in-time view of a state file."""

    path: str
    status: LoadStatus
    version: int = 0
    last_modified: str = ""
    writer_id: str = ""
    fields: List[FieldSummary] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def field_count(self) -> int:
        return len(self.fields)

    @property
    def array_item_count(self) -> int:
        """Total items across array fields."""
        return sum(f.size for f in self.fields if f.kind == FieldKind.ARRAY)
