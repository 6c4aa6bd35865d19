"""Integration tests for batched component persistence.

Runs against a file-backed SQLite database so record-level SAVEPOINTs and
per-batch transactions behave as they do in production.
"""

from __future__ import annotations

import logging
from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import selectinload

from fieldtrack.db.models import ComponentMilestoneModel, ComponentModel, DrawingModel
from fieldtrack.milestones.templates import load_template_map
from fieldtrack.models import CanonicalComponentRecord, DrawingRecord, MilestoneEntry
from fieldtrack.pipeline.batch import BatchPersistenceEngine, consolidate_results, upsert_drawings
from fieldtrack.pipeline.types import BatchResult, ImportOptions, IssueCode, ValidationIssue


async def _setup(session_factory, project_id, records, **option_overrides):
    async with session_factory() as session:
        async with session.begin():
            templates = await load_template_map(session, project_id)
            drawing_ids = await upsert_drawings(
                session,
                project_id,
                [],
                {r.drawing_number for r in records if r.drawing_number},
            )

    options = ImportOptions(retry_backoff_base=0, batch_pause_seconds=0, **option_overrides)
    return BatchPersistenceEngine(
        session_factory,
        project_id,
        options,
        templates=templates,
        drawing_ids=drawing_ids,
    )


async def _components(session_factory, project_id):
    async with session_factory() as session:
        result = await session.execute(
            select(ComponentModel)
            .where(ComponentModel.project_id == project_id)
            .options(selectinload(ComponentModel.milestones))
            .order_by(ComponentModel.component_id, ComponentModel.instance_number)
        )
        return result.scalars().all()


async def _count(session_factory, model):
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


def _spool(component_id="SP-100", **kwargs):
    return CanonicalComponentRecord(
        component_id=component_id,
        type="SPOOL",
        drawing_number="P-35F11",
        template_name="Full Milestone Set",
        milestones=[
            MilestoneEntry(name="Receive", completed=True, completed_date=date(2024, 2, 1), weight=10),
            MilestoneEntry(name="Erect", weight=90),
        ],
        **kwargs,
    )


@pytest.mark.asyncio
async def test_creates_components_and_milestones(session_factory, project_id, gasket_record):
    records = [gasket_record, _spool(row_number=3)]
    engine = await _setup(session_factory, project_id, records)

    result = await engine.persist(records)

    assert result.success
    assert result.created_rows == 2
    assert result.updated_rows == 0
    assert result.successful_rows == 2
    assert result.errors == ()

    gasket, spool = await _components(session_factory, project_id)
    assert gasket.component_id == "GK-001"
    assert gasket.display_id == "GK-001"
    assert gasket.drawing_id is not None
    assert [m.milestone_name for m in gasket.milestones] == ["Receive", "Install"]
    assert [m.weight for m in gasket.milestones] == [50.0, 50.0]

    receive = gasket.milestones[0]
    assert receive.is_completed
    assert receive.completed_by == "system-import"
    assert receive.completed_at is not None
    assert gasket.milestones[1].completed_at is None

    assert spool.milestones[0].completed_at.date() == date(2024, 2, 1)
    assert [m.weight for m in spool.milestones] == [10.0, 90.0]


@pytest.mark.asyncio
async def test_new_component_without_milestones_gets_template(session_factory, project_id):
    record = CanonicalComponentRecord(
        component_id="VLV-1", type="VALVE", template_name="Reduced Milestone Set"
    )
    engine = await _setup(session_factory, project_id, [record])

    await engine.persist([record])

    (component,) = await _components(session_factory, project_id)
    assert [m.milestone_name for m in component.milestones] == [
        "Receive", "Install", "Punch", "Test", "Restore",
    ]
    assert sum(m.weight for m in component.milestones) == pytest.approx(100)
    assert not any(m.is_completed for m in component.milestones)
    assert component.drawing_id is None


@pytest.mark.asyncio
async def test_existing_component_is_error_by_default(session_factory, project_id, gasket_record):
    engine = await _setup(session_factory, project_id, [gasket_record])
    await engine.persist([gasket_record])

    result = await engine.persist([gasket_record])

    assert not result.success
    assert result.created_rows == 0
    assert [e.code for e in result.errors] == [IssueCode.DUPLICATE_COMPONENT]
    assert result.errors[0].row == 2
    assert await _count(session_factory, ComponentModel) == 1


@pytest.mark.asyncio
async def test_skip_duplicates_warns(session_factory, project_id, gasket_record):
    engine = await _setup(session_factory, project_id, [gasket_record], skip_duplicates=True, update_existing=True)
    await engine.persist([gasket_record])

    result = await engine.persist([gasket_record])

    assert result.success
    assert result.successful_rows == 0
    assert [w.code for w in result.warnings] == [IssueCode.DUPLICATE_SKIPPED]
    assert await _count(session_factory, ComponentModel) == 1


@pytest.mark.asyncio
async def test_update_existing_is_idempotent(session_factory, project_id, gasket_record):
    records = [gasket_record, _spool(row_number=3)]
    engine = await _setup(session_factory, project_id, records, update_existing=True)

    first = await engine.persist(records)
    before = [(c.id, c.display_id) for c in await _components(session_factory, project_id)]
    milestone_count = await _count(session_factory, ComponentMilestoneModel)

    second = await engine.persist(records)

    assert first.created_rows == 2
    assert second.created_rows == 0
    assert second.updated_rows == 2
    assert second.success
    assert [(c.id, c.display_id) for c in await _components(session_factory, project_id)] == before
    assert await _count(session_factory, ComponentMilestoneModel) == milestone_count


@pytest.mark.asyncio
async def test_update_replaces_milestones(session_factory, project_id, gasket_record):
    engine = await _setup(session_factory, project_id, [gasket_record], update_existing=True)
    await engine.persist([gasket_record])

    changed = gasket_record.model_copy(
        update={"milestones": [MilestoneEntry(name="Receive", completed=True)]}
    )
    await engine.persist([changed])

    (component,) = await _components(session_factory, project_id)
    assert [(m.milestone_name, m.weight) for m in component.milestones] == [("Receive", 100.0)]


@pytest.mark.asyncio
async def test_part_moved_to_another_drawing_is_a_new_component(session_factory, project_id, gasket_record):
    moved = gasket_record.model_copy(update={"drawing_number": "P-35F12"})
    engine = await _setup(session_factory, project_id, [gasket_record, moved])
    await engine.persist([gasket_record])

    result = await engine.persist([moved])

    assert result.success
    assert result.created_rows == 1
    assert result.errors == ()
    components = await _components(session_factory, project_id)
    assert [c.component_id for c in components] == ["GK-001", "GK-001"]
    assert len({c.drawing_id for c in components}) == 2


@pytest.mark.asyncio
async def test_written_records_log_computed_progress(session_factory, project_id, gasket_record, caplog):
    caplog.set_level(logging.DEBUG, logger="fieldtrack.pipeline.batch")
    engine = await _setup(session_factory, project_id, [gasket_record])

    await engine.persist([gasket_record])

    assert "Row 2: GK-001 at 50% (IN_PROGRESS)" in caplog.messages

@pytest.mark.asyncio
async def test_record_failure_does_not_abort_batch(session_factory, project_id, gasket_record):
    records = [
        gasket_record,
        CanonicalComponentRecord(type="GASKET", row_number=3),
        _spool(row_number=4),
    ]
    engine = await _setup(session_factory, project_id, records)

    result = await engine.persist(records)

    assert not result.success
    assert result.partial_success
    assert result.successful_rows == 2
    assert result.error_rows == 1
    assert [(e.code, e.row) for e in result.errors] == [(IssueCode.COMPONENT_CREATION_FAILED, 3)]
    assert await _count(session_factory, ComponentModel) == 2


@pytest.mark.asyncio
async def test_repeated_parts_get_instance_numbers(session_factory, project_id):
    records = [
        CanonicalComponentRecord(component_id="GK-5", type="GASKET", drawing_number="P-1", size=size)
        for size in ("2in", "3in", "4in")
    ]
    engine = await _setup(session_factory, project_id, records, update_existing=True)

    await engine.persist(records)
    second = await engine.persist(records)

    components = await _components(session_factory, project_id)
    assert [c.display_id for c in components] == ["GK-5 (1 of 3)", "GK-5 (2 of 3)", "GK-5 (3 of 3)"]
    assert [c.size for c in components] == ["2in", "3in", "4in"]
    assert {c.total_instances_on_drawing for c in components} == {3}
    assert second.created_rows == 0


@pytest.mark.asyncio
async def test_batches_run_in_sequence_with_progress(session_factory, project_id):
    records = [CanonicalComponentRecord(component_id=f"C-{i}", row_number=i + 2) for i in range(5)]
    events = []
    engine = await _setup(session_factory, project_id, records, batch_size=2, progress_callback=events.append)

    result = await engine.persist(records)

    assert result.created_rows == 5
    assert [(e.phase, e.batch, e.total_batches, e.processed) for e in events] == [
        ("importing", 1, 3, 0),
        ("importing", 2, 3, 2),
        ("importing", 3, 3, 4),
    ]


@pytest.mark.asyncio
async def test_batch_retried_then_succeeds(session_factory, project_id, gasket_record, monkeypatch):
    engine = await _setup(session_factory, project_id, [gasket_record], max_retries=3)
    original = engine._write_record
    calls = {"n": 0}

    async def flaky(session, item, result):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("INSERT", {}, Exception("connection reset"))
        return await original(session, item, result)

    monkeypatch.setattr(engine, "_write_record", flaky)

    result = await engine.persist([gasket_record])

    assert calls["n"] == 2
    assert result.success
    assert result.created_rows == 1
    assert await _count(session_factory, ComponentModel) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_give_one_aggregate_error(session_factory, project_id, monkeypatch):
    records = [CanonicalComponentRecord(component_id=f"C-{i}", row_number=i + 2) for i in range(4)]
    engine = await _setup(session_factory, project_id, records, max_retries=3, batch_size=50)
    calls = {"n": 0}

    async def broken(session, item, result):
        calls["n"] += 1
        raise OperationalError("INSERT", {}, Exception("database is gone"))

    monkeypatch.setattr(engine, "_write_record", broken)

    result = await engine.persist(records)

    assert calls["n"] == 3
    assert not result.success
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.code == IssueCode.BATCH_PROCESSING_FAILED
    assert error.message.startswith("Batch 1 failed after 3 attempts")
    assert result.error_rows == 4
    assert result.successful_rows == 0
    assert await _count(session_factory, ComponentModel) == 0


@pytest.mark.asyncio
async def test_upsert_drawings_creates_implicit_and_updates(session_factory, project_id):
    async with session_factory() as session:
        async with session.begin():
            first = await upsert_drawings(
                session, project_id, [DrawingRecord(number="P-1", title="Main")], {"P-2"}
            )
    async with session_factory() as session:
        async with session.begin():
            second = await upsert_drawings(
                session, project_id, [DrawingRecord(number="P-1", revision="C")], {"P-1"}
            )

    assert set(first) == {"P-1", "P-2"}
    assert second["P-1"] == first["P-1"]

    async with session_factory() as session:
        drawing = (
            await session.execute(select(DrawingModel).where(DrawingModel.number == "P-1"))
        ).scalar_one()
    assert drawing.title == "Main"
    assert drawing.revision == "C"


def test_consolidate_results():
    error = ValidationIssue.error(5, "component", IssueCode.COMPONENT_CREATION_FAILED, "boom")
    ok = BatchResult(total_rows=2, processed_rows=2, successful_rows=2, created_rows=2)
    partial = BatchResult(total_rows=2, processed_rows=2, successful_rows=1, updated_rows=1)
    partial.add_error(error)

    result = consolidate_results([ok, partial])

    assert not result.success
    assert result.partial_success
    assert result.total_rows == 4
    assert result.successful_rows == 3
    assert result.created_rows == 2
    assert result.updated_rows == 1
    assert result.error_rows == 1
    assert result.errors == (error,)
