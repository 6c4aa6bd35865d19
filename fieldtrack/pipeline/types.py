"""Type definitions for import pipeline operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCode(str, Enum):
    """Machine-readable validation and persistence issue codes."""

    REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
    INVALID_WORKFLOW_TYPE = "INVALID_WORKFLOW_TYPE"
    DRAWING_NOT_FOUND = "DRAWING_NOT_FOUND"
    DUPLICATE_IN_IMPORT = "DUPLICATE_IN_IMPORT"
    MILESTONE_NAME_MISSING = "MILESTONE_NAME_MISSING"
    PERCENTAGE_MISSING = "PERCENTAGE_MISSING"
    QUANTITY_MISSING = "QUANTITY_MISSING"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    DUPLICATE_SKIPPED = "DUPLICATE_SKIPPED"
    DUPLICATE_COMPONENT = "DUPLICATE_COMPONENT"
    COMPONENT_CREATION_FAILED = "COMPONENT_CREATION_FAILED"
    BATCH_PROCESSING_FAILED = "BATCH_PROCESSING_FAILED"


@dataclass(frozen=True)
class ValidationIssue:
    """One row-level problem (error or warning) found during an import."""

    row: int
    field: str
    code: IssueCode
    message: str
    severity: Severity = Severity.ERROR
    current_value: Any = None
    suggested_value: Any = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    @classmethod
    def error(cls, row: int, field: str, code: IssueCode, message: str, **kwargs) -> ValidationIssue:
        return cls(row=row, field=field, code=code, message=message, severity=Severity.ERROR, **kwargs)

    @classmethod
    def warning(cls, row: int, field: str, code: IssueCode, message: str, **kwargs) -> ValidationIssue:
        return cls(row=row, field=field, code=code, message=message, severity=Severity.WARNING, **kwargs)


@dataclass
class ValidationReport:
    """Validator output: errors gate persistence, warnings never do."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, issue: ValidationIssue) -> None:
        (self.errors if issue.is_error else self.warnings).append(issue)


@dataclass
class ImportProgress:
    """Progress event passed to the caller's callback."""

    phase: str  # validating | transforming | importing | complete
    processed: int
    total: int
    batch: Optional[int] = None
    total_batches: Optional[int] = None
    errors: Optional[int] = None


ProgressCallback = Callable[[ImportProgress], None]


@dataclass
class ImportOptions:
    """Per-job switches (CLI flags) and batch tuning."""

    dry_run: bool = False
    allow_partial_success: bool = False
    skip_duplicates: bool = False
    update_existing: bool = False
    batch_size: int = 50
    max_retries: int = 3
    retry_backoff_base: float = 1.0
    retry_backoff_max: float = 10.0
    batch_pause_seconds: float = 0.1
    progress_callback: Optional[ProgressCallback] = None

    @classmethod
    def from_config(cls, **overrides) -> ImportOptions:
        """Build options from ImportConfig defaults plus explicit overrides."""
        from fieldtrack.config import get_config

        imports = get_config().imports
        values = {
            "batch_size": imports.batch_size,
            "max_retries": imports.max_retries,
            "retry_backoff_base": imports.retry_backoff_base,
            "retry_backoff_max": imports.retry_backoff_max,
            "batch_pause_seconds": imports.batch_pause_seconds,
        }
        values.update(overrides)
        return cls(**values)

    @property
    def duplicate_policy(self) -> str:
        """skip, update or error; skip wins when both flags are set."""
        if self.skip_duplicates:
            return "skip"
        if self.update_existing:
            return "update"
        return "error"


@dataclass
class BatchResult:
    """Mutable accumulator for one batch (or one job phase)."""

    total_rows: int = 0
    processed_rows: int = 0
    successful_rows: int = 0
    error_rows: int = 0
    created_rows: int = 0
    updated_rows: int = 0
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    def add_error(self, issue: ValidationIssue) -> None:
        self.errors.append(issue)
        self.error_rows += 1

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def partial_success(self) -> bool:
        return self.successful_rows > 0 and bool(self.errors)


@dataclass(frozen=True)
class ImportResult:
    """Consolidated, immutable outcome of one import job."""

    success: bool
    total_rows: int
    processed_rows: int
    successful_rows: int
    error_rows: int
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()
    partial_success: bool = False
    created_rows: int = 0
    updated_rows: int = 0
    dry_run: bool = False
    job_id: Optional[str] = None
    message: str = ""
