"""Live progress recomputation from stored milestones.

Uses the same compute_progress() as the import path; completion is never read
from a stored column.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fieldtrack.db.models import ComponentMilestoneModel, ComponentModel
from fieldtrack.milestones.progress import (
    ComponentStatus,
    MilestoneState,
    ProgressSnapshot,
    compute_progress,
)
from fieldtrack.models import WorkflowKind


def _kind(workflow_type: str) -> WorkflowKind:
    try:
        return WorkflowKind(workflow_type)
    except ValueError:
        return WorkflowKind.DISCRETE


def milestone_state(model: ComponentMilestoneModel) -> MilestoneState:
    return MilestoneState(
        weight=model.weight,
        completed=model.is_completed,
        percentage=model.percentage_value,
        quantity_complete=model.quantity_value,
        quantity_required=model.quantity_required,
    )


def component_progress(component: ComponentModel) -> ProgressSnapshot:
    """Progress of a component whose milestones are already loaded."""
    return compute_progress(
        _kind(component.workflow_type),
        [milestone_state(m) for m in component.milestones],
    )


@dataclass
class ProjectProgressSummary:
    total_components: int = 0
    by_status: Counter = field(default_factory=Counter)
    overall_percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_components": self.total_components,
            "by_status": {status.value: self.by_status.get(status, 0) for status in ComponentStatus},
            "overall_percent": self.overall_percent,
        }


async def project_progress_summary(session: AsyncSession, project_id: str) -> ProjectProgressSummary:
    """Count components per status and average their completion."""
    result = await session.execute(
        select(ComponentModel)
        .where(ComponentModel.project_id == project_id)
        .options(selectinload(ComponentModel.milestones))
    )
    components = result.scalars().all()

    summary = ProjectProgressSummary(total_components=len(components))
    if not components:
        return summary

    total_percent = 0
    for component in components:
        snapshot = component_progress(component)
        summary.by_status[snapshot.status] += 1
        total_percent += snapshot.percent

    summary.overall_percent = round(total_percent / len(components), 1)
    return summary
