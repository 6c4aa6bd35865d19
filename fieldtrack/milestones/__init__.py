"""Milestone templates, template resolution and progress computation."""

from fieldtrack.milestones.progress import (
    ComponentStatus,
    MilestoneState,
    ProgressSnapshot,
    compute_progress,
)
from fieldtrack.milestones.resolver import TemplateResolver, TemplatesUnavailableError
from fieldtrack.milestones.templates import ConfigurationError, load_standard_templates

__all__ = [
    "ComponentStatus",
    "MilestoneState",
    "ProgressSnapshot",
    "compute_progress",
    "TemplateResolver",
    "TemplatesUnavailableError",
    "ConfigurationError",
    "load_standard_templates",
]
