"""Database layer for FieldTrack with async SQLAlchemy."""

from fieldtrack.db.connection import get_session, init_db
from fieldtrack.db.models import (
    Base,
    ComponentMilestoneModel,
    ComponentModel,
    DrawingModel,
    MilestoneTemplateModel,
    ProjectModel,
)

__all__ = [
    "Base",
    "ProjectModel",
    "DrawingModel",
    "MilestoneTemplateModel",
    "ComponentModel",
    "ComponentMilestoneModel",
    "get_session",
    "init_db",
]
