"""Batched, retried persistence of validated component records.

Records are written in fixed-size batches, strictly one after another. Each
batch runs in one transaction and each record in its own SAVEPOINT, so a
record-level failure is recorded and the rest of the batch still commits.
A whole-batch failure is retried with exponential backoff; once retries are
exhausted the batch is reported as a single aggregate error.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fieldtrack.db.models import ComponentMilestoneModel, ComponentModel, DrawingModel
from fieldtrack.milestones.progress import compute_entry_progress, resolve_weights
from fieldtrack.models import CanonicalComponentRecord, DrawingRecord, MilestoneTemplate
from fieldtrack.pipeline.instances import InstanceAssignment, InstanceTracker
from fieldtrack.pipeline.types import (
    BatchResult,
    ImportOptions,
    ImportProgress,
    ImportResult,
    IssueCode,
    ValidationIssue,
)
from fieldtrack.pipeline.validator import record_row

logger = logging.getLogger(__name__)


class BatchProcessingError(RuntimeError):
    """A whole batch failed (connection loss, lock timeout, ...)."""

    def __init__(self, batch_number: int, cause: BaseException):
        super().__init__(f"Batch {batch_number} failed: {cause}")
        self.batch_number = batch_number
        self.cause = cause


class RecordError(Exception):
    """A single record cannot be written; the rest of its batch continues."""

    pass


@dataclass(frozen=True)
class PendingRecord:
    """A record paired with its source row and precomputed instance numbering."""

    record: CanonicalComponentRecord
    row: int
    instance: InstanceAssignment


def _completed_at(completed: bool, completed_date: Optional[date]) -> Optional[datetime]:
    if not completed:
        return None
    if completed_date is not None:
        return datetime.combine(completed_date, time.min, tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


async def upsert_drawings(
    session: AsyncSession,
    project_id: str,
    drawings: Iterable[DrawingRecord],
    referenced_numbers: Iterable[str] = (),
) -> dict[str, str]:
    """Create or refresh the job's drawings and any referenced implicitly.

    Returns:
        Drawing number -> drawing id for every drawing of the project
    """
    declared = {d.number: d for d in drawings}
    for number in referenced_numbers:
        if number and number not in declared:
            declared[number] = DrawingRecord(number=number)

    result = await session.execute(select(DrawingModel).where(DrawingModel.project_id == project_id))
    existing = {model.number: model for model in result.scalars()}

    created = 0
    for number, drawing in declared.items():
        model = existing.get(number)
        if model is None:
            model = DrawingModel(
                project_id=project_id,
                number=number,
                title=drawing.title,
                revision=drawing.revision,
            )
            session.add(model)
            existing[number] = model
            created += 1
        else:
            if drawing.title:
                model.title = drawing.title
            if drawing.revision:
                model.revision = drawing.revision

    await session.flush()
    if created:
        logger.info(f"Created {created} drawings for project {project_id}")

    return {number: model.id for number, model in existing.items()}


def consolidate_results(results: Sequence[BatchResult]) -> ImportResult:
    """Sum counts and concatenate issues; success only if every batch succeeded."""
    errors = [issue for r in results for issue in r.errors]
    warnings = [issue for r in results for issue in r.warnings]

    return ImportResult(
        success=all(r.success for r in results),
        total_rows=sum(r.total_rows for r in results),
        processed_rows=sum(r.processed_rows for r in results),
        successful_rows=sum(r.successful_rows for r in results),
        error_rows=sum(r.error_rows for r in results),
        created_rows=sum(r.created_rows for r in results),
        updated_rows=sum(r.updated_rows for r in results),
        errors=tuple(errors),
        warnings=tuple(warnings),
        partial_success=any(r.partial_success for r in results),
    )


class BatchPersistenceEngine:
    """Write canonical records for one project in sequential batches."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        project_id: str,
        options: ImportOptions,
        user_id: str = "system-import",
        templates: Optional[dict[str, MilestoneTemplate]] = None,
        drawing_ids: Optional[dict[str, str]] = None,
    ):
        """Initialize engine for one job.

        Args:
            session_factory: Factory producing a fresh AsyncSession per batch
            project_id: Owning project
            options: Batch size, retry and duplicate-policy settings
            user_id: Recorded as completed_by on completed milestones
            templates: Project templates by name, used to seed milestones
            drawing_ids: Drawing number -> id, from upsert_drawings()
        """
        self.session_factory = session_factory
        self.project_id = project_id
        self.options = options
        self.user_id = user_id
        self.templates = templates or {}
        self.drawing_ids = drawing_ids or {}

    def prepare(self, records: Sequence[CanonicalComponentRecord]) -> list[PendingRecord]:
        """Number instances up front so a retried batch reuses the same numbers."""
        tracker = InstanceTracker()
        tracker.count(records)
        return [
            PendingRecord(record=record, row=record_row(record, index), instance=tracker.assign(record))
            for index, record in enumerate(records)
        ]

    async def persist(self, records: Sequence[CanonicalComponentRecord]) -> ImportResult:
        """Persist all records and return the consolidated result."""
        pending = self.prepare(records)
        batch_size = max(1, self.options.batch_size)
        batches = [pending[i : i + batch_size] for i in range(0, len(pending), batch_size)]
        total_batches = len(batches)

        logger.info(
            f"Persisting {len(pending)} records in {total_batches} batches "
            f"(policy: {self.options.duplicate_policy})"
        )

        results: list[BatchResult] = []
        for batch_number, batch in enumerate(batches, start=1):
            self._report_progress(
                ImportProgress(
                    phase="importing",
                    processed=(batch_number - 1) * batch_size,
                    total=len(pending),
                    batch=batch_number,
                    total_batches=total_batches,
                    errors=sum(len(r.errors) for r in results),
                )
            )

            results.append(await self.process_batch_with_retry(batch_number, batch))

            if batch_number < total_batches and self.options.batch_pause_seconds > 0:
                await asyncio.sleep(self.options.batch_pause_seconds)

        return consolidate_results(results)

    def _report_progress(self, progress: ImportProgress) -> None:
        if self.options.progress_callback is not None:
            self.options.progress_callback(progress)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Batch attempt {retry_state.attempt_number}/{self.options.max_retries} failed, "
            f"retrying: {exc}"
        )

    async def process_batch_with_retry(self, batch_number: int, batch: list[PendingRecord]) -> BatchResult:
        """Run one batch, retrying whole-batch failures with exponential backoff."""
        max_attempts = max(1, self.options.max_retries)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                multiplier=self.options.retry_backoff_base,
                max=self.options.retry_backoff_max,
            ),
            retry=retry_if_exception_type(BatchProcessingError),
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self.process_batch(batch_number, batch)
        except BatchProcessingError as e:
            logger.error(f"Batch {batch_number} failed after {max_attempts} attempts: {e.cause}")
            failed = BatchResult(total_rows=len(batch), error_rows=len(batch))
            failed.errors.append(
                ValidationIssue.error(
                    0, "batch", IssueCode.BATCH_PROCESSING_FAILED,
                    f"Batch {batch_number} failed after {max_attempts} attempts: {e.cause}",
                )
            )
            return failed

    async def process_batch(self, batch_number: int, batch: list[PendingRecord]) -> BatchResult:
        """Write one batch inside a single transaction.

        Raises:
            BatchProcessingError: If the batch as a whole cannot be written
        """
        result = BatchResult(total_rows=len(batch))

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    for item in batch:
                        await self._process_record(session, item, result)
                        result.processed_rows += 1
        except (SQLAlchemyError, OSError) as e:
            raise BatchProcessingError(batch_number, e) from e

        logger.debug(
            f"Batch {batch_number}: {result.successful_rows}/{result.total_rows} written, "
            f"{len(result.errors)} errors"
        )
        return result

    async def _process_record(self, session: AsyncSession, item: PendingRecord, result: BatchResult) -> None:
        record = item.record
        try:
            async with session.begin_nested():
                outcome = await self._write_record(session, item, result)
        except (OperationalError, InterfaceError):
            # Connection-level failure: the whole batch is retried
            raise
        except (RecordError, SQLAlchemyError) as e:
            logger.warning(f"Row {item.row}: failed to write component {record.component_id}: {e}")
            result.add_error(
                ValidationIssue.error(
                    item.row, "component", IssueCode.COMPONENT_CREATION_FAILED,
                    f"Failed to create component {record.component_id}: {e}",
                    current_value=record.component_id,
                )
            )
            return

        if outcome == "created":
            result.created_rows += 1
            result.successful_rows += 1
        elif outcome == "updated":
            result.updated_rows += 1
            result.successful_rows += 1

    async def _write_record(self, session: AsyncSession, item: PendingRecord, result: BatchResult) -> str:
        """Apply duplicate policy and write one component.

        Returns:
            "created", "updated", "skipped" or "rejected"
        """
        record = item.record
        if not record.component_id:
            raise RecordError("Component ID is required")

        drawing_id = self.drawing_ids.get(record.drawing_number) if record.drawing_number else None
        existing = await self._find_existing(session, record.component_id, drawing_id, item.instance.instance_number)

        if existing is not None:
            policy = self.options.duplicate_policy
            if policy == "skip":
                result.warnings.append(
                    ValidationIssue.warning(
                        item.row, "component_id", IssueCode.DUPLICATE_SKIPPED,
                        f"Component {record.component_id} already exists, skipped",
                        current_value=record.component_id,
                    )
                )
                return "skipped"
            if policy == "error":
                result.add_error(
                    ValidationIssue.error(
                        item.row, "component_id", IssueCode.DUPLICATE_COMPONENT,
                        f"Component {record.component_id} already exists",
                        current_value=record.component_id,
                    )
                )
                return "rejected"

        component = existing or ComponentModel(project_id=self.project_id, component_id=record.component_id)
        component.drawing_id = drawing_id
        component.milestone_template_id = record.template_id
        component.type = record.type
        component.spec = record.spec
        component.size = record.size
        component.material = record.material
        component.area = record.area
        component.system = record.system
        component.test_package = record.test_package
        component.workflow_type = record.workflow_kind.value
        component.instance_number = item.instance.instance_number
        component.total_instances_on_drawing = item.instance.total_instances
        component.display_id = item.instance.display_id

        if existing is None:
            session.add(component)
        await session.flush()

        if record.milestones:
            if existing is not None:
                await session.execute(
                    delete(ComponentMilestoneModel).where(ComponentMilestoneModel.component_id == component.id)
                )
            self._add_record_milestones(session, component.id, record)
            snapshot = compute_entry_progress(record.workflow_kind, record.milestones)
            logger.debug(
                f"Row {item.row}: {component.display_id} at {snapshot.percent}% ({snapshot.status.value})"
            )
        elif existing is None:
            self._add_template_milestones(session, component.id, record)

        await session.flush()
        return "updated" if existing is not None else "created"

    async def _find_existing(
        self,
        session: AsyncSession,
        component_id: str,
        drawing_id: Optional[str],
        instance_number: int,
    ) -> Optional[ComponentModel]:
        stmt = select(ComponentModel).where(
            ComponentModel.project_id == self.project_id,
            ComponentModel.component_id == component_id,
            ComponentModel.instance_number == instance_number,
            ComponentModel.drawing_id == drawing_id if drawing_id else ComponentModel.drawing_id.is_(None),
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    def _add_record_milestones(self, session: AsyncSession, component_pk: str, record: CanonicalComponentRecord) -> None:
        weights = resolve_weights([m.weight for m in record.milestones])
        for order, (milestone, weight) in enumerate(zip(record.milestones, weights), start=1):
            session.add(
                ComponentMilestoneModel(
                    component_id=component_pk,
                    milestone_order=order,
                    milestone_name=milestone.name,
                    weight=weight,
                    is_completed=milestone.completed,
                    percentage_value=milestone.percentage_value,
                    quantity_value=milestone.quantity_value,
                    quantity_required=milestone.quantity_required,
                    quantity_unit=milestone.quantity_unit,
                    completed_at=_completed_at(milestone.completed, milestone.completed_date),
                    completed_by=self.user_id if milestone.completed else None,
                )
            )

    def _add_template_milestones(self, session: AsyncSession, component_pk: str, record: CanonicalComponentRecord) -> None:
        template = self.templates.get(record.template_name or "")
        if template is None:
            return
        for definition in sorted(template.milestones, key=lambda m: m.order):
            session.add(
                ComponentMilestoneModel(
                    component_id=component_pk,
                    milestone_order=definition.order,
                    milestone_name=definition.name,
                    weight=definition.weight,
                    is_completed=False,
                )
            )
