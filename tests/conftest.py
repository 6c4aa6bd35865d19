"""Pytest configuration and fixtures for FieldTrack tests.

Provides environment isolation, a file-backed SQLite database per test and
a seeded project with the standard milestone templates.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fieldtrack.config import reset_config
from fieldtrack.db.connection import create_engine_for_url
from fieldtrack.db.models import Base, ProjectModel
from fieldtrack.milestones.templates import ensure_project_templates
from fieldtrack.models import CanonicalComponentRecord, MilestoneEntry
from fieldtrack.pipeline.types import ImportOptions


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("IMPORT_RETRY_BACKOFF_BASE", "0")
    monkeypatch.setenv("IMPORT_BATCH_PAUSE_SECONDS", "0")
    reset_config()
    yield
    reset_config()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """SQLite file URL; a file (not :memory:) so every session sees the same data."""
    return f"sqlite+aiosqlite:///{tmp_path / 'fieldtrack.db'}"


@pytest_asyncio.fixture()
async def engine(db_url: str):
    """Create a fresh schema for one test."""
    engine = create_engine_for_url(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def project_id(session_factory) -> str:
    """Project with the five standard milestone templates."""
    async with session_factory() as session:
        async with session.begin():
            project = ProjectModel(job_name="Refinery Unit 7", job_number="J-1007")
            session.add(project)
            await session.flush()
            await ensure_project_templates(session, project.id)
        return project.id


@pytest.fixture
def fast_options() -> ImportOptions:
    """Import options without backoff or inter-batch pauses."""
    return ImportOptions(retry_backoff_base=0, batch_pause_seconds=0)


@pytest.fixture
def gasket_record() -> CanonicalComponentRecord:
    return CanonicalComponentRecord(
        component_id="GK-001",
        type="GASKET",
        size="2in",
        drawing_number="P-35F11",
        milestones=[
            MilestoneEntry(name="Receive", completed=True),
            MilestoneEntry(name="Install"),
        ],
        row_number=2,
    )
