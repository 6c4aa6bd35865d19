"""Bulk component import pipeline."""

from fieldtrack.pipeline.batch import BatchPersistenceEngine, BatchProcessingError, consolidate_results
from fieldtrack.pipeline.instances import InstanceTracker, format_display_id
from fieldtrack.pipeline.orchestrator import ImportJob, import_file
from fieldtrack.pipeline.types import (
    ImportOptions,
    ImportProgress,
    ImportResult,
    IssueCode,
    Severity,
    ValidationIssue,
    ValidationReport,
)
from fieldtrack.pipeline.validator import ImportValidator, generate_remediation_report

__all__ = [
    "BatchPersistenceEngine",
    "BatchProcessingError",
    "ImportJob",
    "ImportOptions",
    "ImportProgress",
    "ImportResult",
    "ImportValidator",
    "InstanceTracker",
    "IssueCode",
    "Severity",
    "ValidationIssue",
    "ValidationReport",
    "consolidate_results",
    "format_display_id",
    "generate_remediation_report",
    "import_file",
]
