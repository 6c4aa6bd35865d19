"""Per-job instance numbering for repeated parts on one drawing.

A part number can appear several times on the same drawing. Each occurrence
gets a 1-based instance number scoped to (drawing, component id) plus the
total count for that key. State lives on the tracker, one per job.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from fieldtrack.models import CanonicalComponentRecord

InstanceKey = tuple[Optional[str], str]


@dataclass(frozen=True)
class InstanceAssignment:
    instance_number: int
    total_instances: int
    display_id: str


def format_display_id(component_id: str, instance_number: int, total_instances: int) -> str:
    """Display label, e.g. "GK-5" or "GK-5 (2 of 3)"."""
    if total_instances <= 1:
        return component_id
    return f"{component_id} ({instance_number} of {total_instances})"


def instance_key(record: CanonicalComponentRecord) -> InstanceKey:
    return (record.drawing_number or None, record.component_id or "")


@dataclass
class InstanceTracker:
    """Two-pass tracker: count() over the full job, then assign() per record."""

    totals: Counter = field(default_factory=Counter)
    cursors: Counter = field(default_factory=Counter)

    def count(self, records: Iterable[CanonicalComponentRecord]) -> None:
        """Counting pass: establish total occurrences per (drawing, id)."""
        self.totals = Counter(instance_key(record) for record in records)
        self.cursors = Counter()

    def total_for(self, record: CanonicalComponentRecord) -> int:
        return max(self.totals.get(instance_key(record), 0), 1)

    def assign(self, record: CanonicalComponentRecord) -> InstanceAssignment:
        """Assignment pass: next instance number for the record's key.

        Records are assigned in the order they are presented, so ties between
        identical records resolve by first-seen order.
        """
        key = instance_key(record)
        self.cursors[key] += 1
        instance_number = self.cursors[key]
        total = max(self.total_for(record), instance_number)

        return InstanceAssignment(
            instance_number=instance_number,
            total_instances=total,
            display_id=format_display_id(record.component_id or "", instance_number, total),
        )

    def assign_all(self, records: Iterable[CanonicalComponentRecord]) -> list[InstanceAssignment]:
        return [self.assign(record) for record in records]
