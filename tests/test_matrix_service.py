"""Tests for run history models and the run history service.

These tests use an in-memory SQLite database.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker

from crossmatrix.config import Settings
from crossmatrix.db import (
    Base,
    create_history_tables,
    history_engine,
    history_session,
    open_history,
)
from crossmatrix.matrix.models import MatrixRun, TargetRun
from crossmatrix.matrix.service import RunNotFoundError, get_run, list_runs, record_summary
from crossmatrix.matrix.summary import MatrixSummary
from crossmatrix.types import BuildResult, Diagnostic, RestoreOutcome, TargetStatus

STARTED = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    create_history_tables(engine)
    return engine


@pytest.fixture
def session(engine):
    """Create a session for testing."""
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()


def _summary(project: str = "camstream", cancelled: bool = False) -> MatrixSummary:
    summary = MatrixSummary(
        project=project,
        started_at=STARTED,
        finished_at=STARTED + timedelta(minutes=7),
        cancelled=cancelled,
    )
    summary.add(
        BuildResult(
            "pi-zero",
            TargetStatus.TOOLCHAIN_UNRESOLVABLE,
            duration_seconds=1.5,
            cache_restore=RestoreOutcome.MISS,
            cache_persisted=True,
            error_message="arm-linux-gnueabi-gcc not found on PATH",
        )
    )
    summary.add(
        BuildResult(
            "arm64",
            TargetStatus.SUCCESS,
            duration_seconds=412.0,
            binary_size_bytes=2_400_000,
            archive_path=Path("/dist/camstream-arm64.tar.gz"),
            publication_handles=("file:///pub/camstream-arm64.tar.gz",),
            cache_restore=RestoreOutcome.EXACT,
            cache_persisted=True,
            verified=True,
            diagnostics=(Diagnostic("resources", "hls.js not found"),),
        )
    )
    return summary


class TestDatabaseSetup:
    """Test database setup and helpers."""

    def test_history_engine_creates_parent(self, tmp_path: Path):
        """File-backed SQLite history gets its directory created."""
        engine = history_engine(f"sqlite:///{tmp_path / 'nested' / 'runs.sqlite'}")
        create_history_tables(engine)
        tables = set(inspect(engine).get_table_names())
        assert {"matrix_runs", "target_runs"} <= tables
        assert (tmp_path / "nested" / "runs.sqlite").exists()

    def test_open_history_uses_settings(self, tmp_path: Path):
        """open_history reads the database URL from settings."""
        db_path = tmp_path / "history" / "runs.sqlite"
        sessions = open_history(Settings(db_url=f"sqlite:///{db_path}"))
        with history_session(sessions) as session:
            session.add(MatrixRun(project="camstream", trigger="manual"))
        assert db_path.exists()
        with sessions() as session:
            assert session.query(MatrixRun).count() == 1

    def test_history_session_rolls_back(self, engine):
        """history_session should roll back on error."""
        sessions = sessionmaker(bind=engine, expire_on_commit=False)
        with pytest.raises(RuntimeError):
            with history_session(sessions) as session:
                session.add(MatrixRun(project="camstream", trigger="manual"))
                session.flush()
                raise RuntimeError("boom")
        with history_session(sessions) as session:
            assert session.query(MatrixRun).count() == 0

    def test_base_metadata(self):
        """Models register on the shared declarative base."""
        assert "target_runs" in Base.metadata.tables


class TestRecordSummary:
    """Tests for record_summary."""

    def test_record(self, session):
        """A summary becomes one run with one row per target."""
        run = record_summary(session, _summary(), trigger="push")

        assert run.id is not None
        assert run.trigger == "push"
        assert run.succeeded_count == 1
        assert run.failed_count == 1
        assert run.cancelled is False
        assert [t.target_id for t in run.targets] == ["pi-zero", "arm64"]

    def test_target_fields(self, session):
        """Target rows carry status, cache outcome and diagnostics."""
        run = record_summary(session, _summary())
        session.commit()
        session.expire_all()

        fetched = get_run(session, run.id)
        targets = {t.target_id: t for t in fetched.targets}
        arm = targets["arm64"]
        assert arm.status == "success"
        assert arm.is_published()
        assert arm.archive_path == "/dist/camstream-arm64.tar.gz"
        assert arm.publication_handles == ["file:///pub/camstream-arm64.tar.gz"]
        assert arm.cache_restore == "exact"
        assert arm.verified is True
        assert arm.diagnostics == [
            {"step": "resources", "message": "hls.js not found", "severity": "warning"}
        ]

        pi = targets["pi-zero"]
        assert not pi.is_published()
        assert pi.archive_path is None
        assert pi.verified is None
        assert pi.error_message == "arm-linux-gnueabi-gcc not found on PATH"

    def test_targets_ordered_by_id_when_loaded(self, session):
        """Loaded runs list targets by target id."""
        run = record_summary(session, _summary())
        session.commit()
        session.expire_all()
        assert [t.target_id for t in get_run(session, run.id).targets] == ["arm64", "pi-zero"]

    def test_unknown_trigger(self, session):
        """Only push, tag and manual triggers are accepted."""
        with pytest.raises(ValueError, match="Unknown trigger 'cron'"):
            record_summary(session, _summary(), trigger="cron")

    def test_cancelled_run(self, session):
        """Cancellation is recorded on the run."""
        assert record_summary(session, _summary(cancelled=True)).cancelled is True


class TestQueries:
    """Tests for get_run and list_runs."""

    def test_get_run_not_found(self, session):
        """Unknown run ids raise RunNotFoundError."""
        with pytest.raises(RunNotFoundError) as exc_info:
            get_run(session, 999)
        assert exc_info.value.code == "run_not_found"
        assert exc_info.value.run_id == 999

    def test_list_runs_newest_first(self, session):
        """Runs are listed newest first."""
        first = record_summary(session, _summary())
        second = record_summary(session, _summary())
        session.commit()
        assert [r.id for r in list_runs(session)] == [second.id, first.id]

    def test_list_runs_filter_and_limit(self, session):
        """Runs can be filtered by project and limited."""
        for project in ("camstream", "other", "camstream"):
            record_summary(session, _summary(project=project))
        session.commit()
        assert len(list_runs(session, project="camstream")) == 2
        assert len(list_runs(session, limit=1)) == 1
        assert list_runs(session, project="nothing") == []

    def test_cascade_delete(self, session):
        """Deleting a run deletes its target rows."""
        run = record_summary(session, _summary())
        session.commit()
        session.delete(run)
        session.commit()
        assert session.query(TargetRun).count() == 0
