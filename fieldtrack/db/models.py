"""SQLAlchemy async database models for FieldTrack.

Completion percentage and status are deliberately absent from the component
table: they are recomputed from component_milestones on every read.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ProjectModel(Base):
    """Construction project owning drawings, templates and components."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    job_name: Mapped[str] = mapped_column(Text, nullable=False)
    job_number: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    location: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class DrawingModel(Base):
    """Drawing sheet grouping components."""

    __tablename__ = "drawings"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        Text, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    number: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(Text)
    revision: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("project_id", "number", name="uq_drawing_project_number"),
    )


class MilestoneTemplateModel(Base):
    """Project-scoped milestone checklist (JSON list of {name, weight, order})."""

    __tablename__ = "milestone_templates"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        Text, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    milestones: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_template_project_name"),
    )


class ComponentModel(Base):
    """One physical instance of a part on a drawing."""

    __tablename__ = "components"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        Text, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    drawing_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("drawings.id", ondelete="SET NULL"), index=True
    )
    milestone_template_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("milestone_templates.id", ondelete="SET NULL")
    )

    component_id: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str | None] = mapped_column(Text)
    spec: Mapped[str | None] = mapped_column(Text)
    size: Mapped[str | None] = mapped_column(Text)
    material: Mapped[str | None] = mapped_column(Text)
    area: Mapped[str | None] = mapped_column(Text)
    system: Mapped[str | None] = mapped_column(Text)
    test_package: Mapped[str | None] = mapped_column(Text)
    workflow_type: Mapped[str] = mapped_column(Text, nullable=False)

    # Instance tracking
    instance_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_instances_on_drawing: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    display_id: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    milestones: Mapped[list[ComponentMilestoneModel]] = relationship(
        back_populates="component",
        order_by="ComponentMilestoneModel.milestone_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint(
            "drawing_id", "component_id", "instance_number", name="uq_component_instance"
        ),
        CheckConstraint("instance_number >= 1", name="check_instance_positive"),
        Index("idx_components_project_component", "project_id", "component_id"),
    )


class ComponentMilestoneModel(Base):
    """Ordered milestone row belonging to a component."""

    __tablename__ = "component_milestones"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    component_id: Mapped[str] = mapped_column(
        Text, ForeignKey("components.id", ondelete="CASCADE"), nullable=False, index=True
    )
    milestone_order: Mapped[int] = mapped_column(Integer, nullable=False)
    milestone_name: Mapped[str] = mapped_column(Text, nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False)

    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    percentage_value: Mapped[float | None] = mapped_column(Float)
    quantity_value: Mapped[float | None] = mapped_column(Float)
    quantity_required: Mapped[float | None] = mapped_column(Float)
    quantity_unit: Mapped[str | None] = mapped_column(Text)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_by: Mapped[str | None] = mapped_column(Text)

    component: Mapped[ComponentModel] = relationship(back_populates="milestones")

    __table_args__ = (
        CheckConstraint("weight >= 0", name="check_weight_non_negative"),
        Index("idx_component_milestone_order", "component_id", "milestone_order"),
    )
