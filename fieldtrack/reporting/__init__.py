"""Progress reporting over persisted components."""

from fieldtrack.reporting.progress import (
    ProjectProgressSummary,
    component_progress,
    project_progress_summary,
)

__all__ = ["ProjectProgressSummary", "component_progress", "project_progress_summary"]
