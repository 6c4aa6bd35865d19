"""Import job orchestration.

Runs one import end to end for a single project:
1. Normalize raw rows into canonical records
2. Resolve a milestone template per component
3. Validate (errors gate persistence unless partial success is allowed)
4. Upsert drawings, then persist components in sequential batches

FormatError and TemplatesUnavailableError propagate to the caller; every
other problem is captured in the returned ImportResult.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Optional
from uuid import uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fieldtrack.config import get_config
from fieldtrack.db.connection import get_session_factory
from fieldtrack.db.models import ProjectModel
from fieldtrack.ingestion.formats import RawImportData, ingest_file
from fieldtrack.ingestion.normalizer import NormalizedImport, normalize_import_data
from fieldtrack.milestones.resolver import TemplateResolver
from fieldtrack.milestones.templates import load_standard_templates, load_template_map
from fieldtrack.models import MilestoneTemplate, ProjectRecord
from fieldtrack.pipeline.batch import BatchPersistenceEngine, upsert_drawings
from fieldtrack.pipeline.types import (
    ImportOptions,
    ImportProgress,
    ImportResult,
    IssueCode,
    ValidationIssue,
    ValidationReport,
)
from fieldtrack.pipeline.validator import ImportValidator

logger = logging.getLogger(__name__)


def apply_project_block(project: ProjectModel, block: ProjectRecord) -> bool:
    """Fill empty project fields from a document's project block."""
    changed = False
    for name in ("job_name", "job_number", "description", "location"):
        incoming = getattr(block, name)
        if incoming and not getattr(project, name):
            setattr(project, name, incoming)
            changed = True
    return changed


class ImportJob:
    """One import run against one project.

    The job owns its per-run state (job id, instance numbering, resolver
    diagnostics); nothing is shared between jobs.
    """

    def __init__(
        self,
        project_id: str,
        options: Optional[ImportOptions] = None,
        user_id: Optional[str] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        """Initialize job.

        Args:
            project_id: Target project
            options: Job switches; defaults come from ImportConfig
            user_id: Audit user for completed milestones
            session_factory: Session factory (defaults to the global one)
        """
        self.project_id = project_id
        self.options = options or ImportOptions.from_config()
        self.user_id = user_id or get_config().imports.default_user_id
        self._session_factory = session_factory
        self.job_id = uuid4().hex
        self.resolver: Optional[TemplateResolver] = None

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    def _report_progress(self, phase: str, processed: int, total: int) -> None:
        if self.options.progress_callback is not None:
            self.options.progress_callback(ImportProgress(phase=phase, processed=processed, total=total))

    async def run(self, raw: RawImportData) -> ImportResult:
        """Execute the job for already-ingested data."""
        structlog.contextvars.bind_contextvars(project_id=self.project_id, job_id=self.job_id)
        try:
            return await self._run(raw)
        finally:
            structlog.contextvars.unbind_contextvars("project_id", "job_id")

    async def _run(self, raw: RawImportData) -> ImportResult:
        logger.info(
            f"Starting import of {raw.source_name} ({raw.row_count} rows)"
            + (" [dry run]" if self.options.dry_run else "")
        )

        normalized = normalize_import_data(raw)
        total = len(normalized.components)

        self._report_progress("validating", 0, total)

        if self.options.dry_run:
            templates = self._catalogue_templates()
        else:
            templates = await self._load_project_templates(normalized)
            if templates is None:
                return self._failed(
                    total,
                    ValidationIssue.error(
                        0, "project_id", IssueCode.PROJECT_NOT_FOUND,
                        f"Project with ID {self.project_id} not found",
                        current_value=self.project_id,
                    ),
                )

        self.resolver = TemplateResolver(templates)
        records = self.resolver.annotate_all(normalized.components)

        report = ImportValidator().validate(records, normalized.drawings or None)

        if not report.is_valid and not self.options.allow_partial_success:
            logger.warning(f"Validation failed with {len(report.errors)} errors, nothing imported")
            return ImportResult(
                success=False,
                total_rows=total,
                processed_rows=0,
                successful_rows=0,
                error_rows=total,
                errors=tuple(report.errors),
                warnings=tuple(report.warnings),
                dry_run=self.options.dry_run,
                job_id=self.job_id,
                message="Validation failed",
            )

        if self.options.dry_run:
            return self._dry_run_result(total, report)

        self._report_progress("transforming", 0, total)
        drawing_ids = await self._upsert_drawings(normalized)

        self._report_progress("importing", 0, total)
        engine = BatchPersistenceEngine(
            self.session_factory,
            self.project_id,
            self.options,
            user_id=self.user_id,
            templates=templates,
            drawing_ids=drawing_ids,
        )
        persisted = await engine.persist(records)

        result = dataclasses.replace(
            persisted,
            success=persisted.success and report.is_valid,
            errors=tuple(report.errors) + persisted.errors,
            warnings=tuple(report.warnings) + persisted.warnings,
            partial_success=persisted.partial_success
            or (persisted.successful_rows > 0 and not report.is_valid),
            job_id=self.job_id,
            message="Import completed" if persisted.success else "Import completed with errors",
        )

        self._report_progress("complete", result.processed_rows, total)
        logger.info(
            f"Import finished: {result.successful_rows}/{result.total_rows} written "
            f"({result.created_rows} created, {result.updated_rows} updated), "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    def _catalogue_templates(self) -> dict[str, MilestoneTemplate]:
        return {template.name: template for template in load_standard_templates()}

    async def _load_project_templates(self, normalized: NormalizedImport) -> Optional[dict[str, MilestoneTemplate]]:
        """Check the project exists, apply the project block and load templates.

        Returns:
            Template map, or None if the project does not exist
        """
        async with self.session_factory() as session:
            async with session.begin():
                project = await session.get(ProjectModel, self.project_id)
                if project is None:
                    logger.error(f"Project {self.project_id} not found")
                    return None

                if normalized.project and apply_project_block(project, normalized.project):
                    logger.info("Applied project details from import document")

                return await load_template_map(session, self.project_id)

    async def _upsert_drawings(self, normalized: NormalizedImport) -> dict[str, str]:
        referenced = {c.drawing_number for c in normalized.components if c.drawing_number}
        async with self.session_factory() as session:
            async with session.begin():
                return await upsert_drawings(session, self.project_id, normalized.drawings, referenced)

    def _dry_run_result(self, total: int, report: ValidationReport) -> ImportResult:
        logger.info(f"Dry run: {total} records validated, nothing written")
        self._report_progress("complete", total, total)
        return ImportResult(
            success=report.is_valid,
            total_rows=total,
            processed_rows=total,
            successful_rows=total if report.is_valid else 0,
            error_rows=len(report.errors),
            errors=tuple(report.errors),
            warnings=tuple(report.warnings),
            dry_run=True,
            job_id=self.job_id,
            message="Dry run completed",
        )

    def _failed(self, total: int, issue: ValidationIssue) -> ImportResult:
        return ImportResult(
            success=False,
            total_rows=total,
            processed_rows=0,
            successful_rows=0,
            error_rows=total,
            errors=(issue,),
            job_id=self.job_id,
            message=issue.message,
        )


async def import_file(
    file_path: Path,
    project_id: str,
    options: Optional[ImportOptions] = None,
    user_id: Optional[str] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> ImportResult:
    """Ingest a file from disk and import it into a project.

    Raises:
        FileNotFoundError: If the file does not exist
        FormatError: If the file cannot be read
        TemplatesUnavailableError: If the project has no milestone templates
    """
    imports = get_config().imports
    raw = ingest_file(
        Path(file_path),
        max_file_size_mb=imports.max_file_size_mb,
        max_rows=imports.max_rows,
    )
    job = ImportJob(project_id, options=options, user_id=user_id, session_factory=session_factory)
    return await job.run(raw)
