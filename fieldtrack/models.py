"""FieldTrack Pydantic models for type-safe data validation.

Canonical records produced by the ingestion layer and consumed read-only by
template resolution, validation, progress computation and persistence.
"""

from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WorkflowKind(str, Enum):
    """How milestone done-ness is recorded for a component."""

    DISCRETE = "MILESTONE_DISCRETE"  # checkbox per milestone
    PERCENTAGE = "MILESTONE_PERCENTAGE"  # 0-100 per milestone
    QUANTITY = "MILESTONE_QUANTITY"  # complete / required per milestone

    @classmethod
    def values(cls) -> list[str]:
        return [kind.value for kind in cls]


class MilestoneEntry(BaseModel):
    """One checklist step on a component."""

    name: str = ""
    completed: bool = False
    completed_date: date | None = None
    weight: float | None = None

    # PERCENTAGE workflow
    percentage_value: float | None = None

    # QUANTITY workflow
    quantity_value: float | None = None
    quantity_required: float | None = None
    quantity_unit: str | None = None

    @field_validator("percentage_value")
    @classmethod
    def clamp_percentage(cls, v: float | None) -> float | None:
        if v is None:
            return v
        return max(0.0, min(100.0, v))


class CanonicalComponentRecord(BaseModel):
    """Component row after column aliasing and value normalization."""

    model_config = ConfigDict(frozen=True)

    component_id: str | None = None
    type: str | None = None
    spec: str | None = None
    size: str | None = None
    material: str | None = None
    area: str | None = None
    system: str | None = None
    test_package: str | None = None
    drawing_number: str | None = None

    # Raw text is kept when it is not a recognised kind so validation can flag it
    workflow_type: str = WorkflowKind.DISCRETE.value
    milestones: list[MilestoneEntry] = Field(default_factory=list)

    # Source position (1-based, header row counted for tabular input)
    row_number: int | None = None

    # Set by TemplateResolver
    template_name: str | None = None
    template_id: str | None = None

    @property
    def workflow_kind(self) -> WorkflowKind:
        """Workflow kind, falling back to DISCRETE for unrecognised text."""
        try:
            return WorkflowKind(self.workflow_type)
        except ValueError:
            return WorkflowKind.DISCRETE


class DrawingRecord(BaseModel):
    """Drawing under which components are grouped."""

    number: str
    title: str | None = None
    revision: str | None = None


class ProjectRecord(BaseModel):
    """Optional project block carried by structured-object documents."""

    job_name: str | None = None
    job_number: str | None = None
    description: str | None = None
    location: str | None = None


class MilestoneDefinition(BaseModel):
    """One weighted step of a milestone template."""

    name: str
    weight: float
    order: int


class MilestoneTemplate(BaseModel):
    """Named, ordered, weighted checklist copied onto components."""

    id: str | None = None
    name: str
    description: str = ""
    milestones: list[MilestoneDefinition] = Field(default_factory=list)

    @property
    def total_weight(self) -> float:
        return sum(m.weight for m in self.milestones)
