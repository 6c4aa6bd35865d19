"""Pre-persistence validation of canonical component records.

The validator reads records and returns a ValidationReport; it never mutates
its input and never raises for bad data.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Optional, Sequence

from fieldtrack.models import CanonicalComponentRecord, DrawingRecord, WorkflowKind
from fieldtrack.pipeline.types import IssueCode, ValidationIssue, ValidationReport

logger = logging.getLogger(__name__)

REPORT_EXAMPLES_PER_CODE = 5

REMEDIATION_STEPS = (
    "1. Fix required fields marked as missing",
    "2. Correct invalid workflow types to one of: " + ", ".join(WorkflowKind.values()),
    "3. Remove or consolidate duplicate component IDs",
    "4. Ensure all milestone names are provided",
)


def record_row(record: CanonicalComponentRecord, index: int) -> int:
    """Source row of a record, assuming a header row when unknown."""
    return record.row_number if record.row_number is not None else index + 2


class ImportValidator:
    """Gate persistence on required fields, workflow kinds and uniqueness."""

    def validate(
        self,
        records: Sequence[CanonicalComponentRecord],
        drawings: Optional[Iterable[DrawingRecord]] = None,
    ) -> ValidationReport:
        """Validate every record of one job.

        Args:
            records: Canonical component records in source order
            drawings: Drawings declared by the job; when omitted, drawing
                references are not checked

        Returns:
            ValidationReport with errors and warnings
        """
        report = ValidationReport()
        drawing_numbers = {d.number for d in drawings} if drawings else None
        duplicate_rows = self._duplicate_rows(records)

        for index, record in enumerate(records):
            row = record_row(record, index)

            if not record.component_id:
                report.add(
                    ValidationIssue.error(
                        row, "component_id", IssueCode.REQUIRED_FIELD_MISSING,
                        "Component ID is required",
                    )
                )

            if record.workflow_type and record.workflow_type not in WorkflowKind.values():
                report.add(
                    ValidationIssue.error(
                        row, "workflow_type", IssueCode.INVALID_WORKFLOW_TYPE,
                        f"Invalid workflow type: {record.workflow_type}",
                        current_value=record.workflow_type,
                        suggested_value=WorkflowKind.DISCRETE.value,
                    )
                )

            if (
                record.drawing_number
                and drawing_numbers is not None
                and record.drawing_number not in drawing_numbers
            ):
                report.add(
                    ValidationIssue.warning(
                        row, "drawing_number", IssueCode.DRAWING_NOT_FOUND,
                        f"Drawing {record.drawing_number} not found in import data",
                        current_value=record.drawing_number,
                    )
                )

            rows = duplicate_rows.get(record.component_id or "")
            if rows:
                report.add(
                    ValidationIssue.error(
                        row, "component_id", IssueCode.DUPLICATE_IN_IMPORT,
                        f"Component ID {record.component_id} appears multiple times in import "
                        f"(rows {', '.join(str(r) for r in rows)})",
                        current_value=record.component_id,
                    )
                )

            self._validate_milestones(record, row, report)

        logger.info(
            f"Validated {len(records)} records: "
            f"{len(report.errors)} errors, {len(report.warnings)} warnings"
        )
        return report

    @staticmethod
    def _duplicate_rows(records: Sequence[CanonicalComponentRecord]) -> dict[str, list[int]]:
        rows_by_id: dict[str, list[int]] = defaultdict(list)
        for index, record in enumerate(records):
            if record.component_id:
                rows_by_id[record.component_id].append(record_row(record, index))
        return {cid: rows for cid, rows in rows_by_id.items() if len(rows) > 1}

    @staticmethod
    def _validate_milestones(
        record: CanonicalComponentRecord, row: int, report: ValidationReport
    ) -> None:
        for j, milestone in enumerate(record.milestones):
            if not milestone.name.strip():
                report.add(
                    ValidationIssue.error(
                        row, f"milestones[{j}].name", IssueCode.MILESTONE_NAME_MISSING,
                        "Milestone name is required",
                    )
                )

            if (
                record.workflow_type == WorkflowKind.PERCENTAGE.value
                and milestone.percentage_value is None
            ):
                report.add(
                    ValidationIssue.warning(
                        row, f"milestones[{j}].percentage_value", IssueCode.PERCENTAGE_MISSING,
                        "Percentage value expected for percentage workflow",
                    )
                )

            if (
                record.workflow_type == WorkflowKind.QUANTITY.value
                and milestone.quantity_value is None
            ):
                report.add(
                    ValidationIssue.warning(
                        row, f"milestones[{j}].quantity_value", IssueCode.QUANTITY_MISSING,
                        "Quantity value expected for quantity workflow",
                    )
                )


def generate_remediation_report(issues: Iterable[ValidationIssue]) -> str:
    """Human-readable report grouped by issue code.

    Shows the first five occurrences per code with suggested values where
    available, followed by generic remediation steps.
    """
    grouped: dict[str, list[ValidationIssue]] = {}
    for issue in issues:
        grouped.setdefault(issue.code.value, []).append(issue)

    lines = ["Import Validation Report", "=" * 50]

    for code, code_issues in grouped.items():
        lines.append(f"\n{code} ({len(code_issues)} occurrences)")
        lines.append("-" * 30)

        for issue in code_issues[:REPORT_EXAMPLES_PER_CODE]:
            lines.append(f"  Row {issue.row}: {issue.message}")
            if issue.suggested_value is not None:
                lines.append(f"    Suggested: {issue.suggested_value}")

        remaining = len(code_issues) - REPORT_EXAMPLES_PER_CODE
        if remaining > 0:
            lines.append(f"  ... and {remaining} more")

    lines.append("\nRemediation Steps:")
    lines.extend(REMEDIATION_STEPS)

    return "\n".join(lines)
