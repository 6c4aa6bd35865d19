"""Weighted completion for the three milestone workflows.

compute_progress() is the single source of truth for a component's completion
percentage and status. The importer and live progress reads both call it;
neither value is ever stored on its own.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from fieldtrack.models import MilestoneEntry, WorkflowKind


class ComponentStatus(str, Enum):
    """Lifecycle status derived from milestone state."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class MilestoneState:
    """Workflow-agnostic view of one milestone."""

    weight: float
    completed: bool = False
    percentage: float | None = None
    quantity_complete: float | None = None
    quantity_required: float | None = None


@dataclass(frozen=True)
class ProgressSnapshot:
    percent: int
    status: ComponentStatus


def resolve_weights(weights: Sequence[float | None]) -> list[float]:
    """Fill missing weights with an equal share of 100 across the set."""
    if not weights:
        return []
    share = 100 / len(weights)
    return [share if w is None else w for w in weights]


def states_from_entries(entries: Sequence[MilestoneEntry]) -> list[MilestoneState]:
    """Adapt imported milestone entries, applying default weights."""
    weights = resolve_weights([e.weight for e in entries])
    return [
        MilestoneState(
            weight=weight,
            completed=entry.completed,
            percentage=entry.percentage_value,
            quantity_complete=entry.quantity_value,
            quantity_required=entry.quantity_required,
        )
        for entry, weight in zip(entries, weights)
    ]


def milestone_contribution(kind: WorkflowKind, state: MilestoneState) -> float:
    """Fraction (0.0-1.0) of a milestone's weight that is earned."""
    if kind == WorkflowKind.PERCENTAGE:
        return max(0.0, min(100.0, state.percentage or 0.0)) / 100

    if kind == WorkflowKind.QUANTITY:
        required = state.quantity_required or 0.0
        if required <= 0:
            return 0.0
        return max(0.0, min(1.0, (state.quantity_complete or 0.0) / required))

    return 1.0 if state.completed else 0.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_progress(kind: WorkflowKind, states: Iterable[MilestoneState]) -> ProgressSnapshot:
    """Weighted completion percentage and derived status.

    The weighted sum is normalised by the weights actually present, not an
    assumed 100.
    """
    states = list(states)
    if not states:
        return ProgressSnapshot(percent=0, status=ComponentStatus.NOT_STARTED)

    contributions = [milestone_contribution(kind, s) for s in states]
    total_weight = sum(s.weight for s in states)

    if total_weight > 0:
        earned = sum(s.weight * c for s, c in zip(states, contributions))
        percent = _round_half_up(earned / total_weight * 100)
    else:
        percent = 0

    if all(c >= 1.0 for c in contributions):
        status = ComponentStatus.COMPLETED
    elif any(c > 0 for c in contributions):
        status = ComponentStatus.IN_PROGRESS
    else:
        status = ComponentStatus.NOT_STARTED

    return ProgressSnapshot(percent=percent, status=status)


def compute_entry_progress(kind: WorkflowKind, entries: Sequence[MilestoneEntry]) -> ProgressSnapshot:
    """Convenience wrapper for imported milestone entries."""
    return compute_progress(kind, states_from_entries(entries))
