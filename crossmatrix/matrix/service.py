"""Run history service.

Records matrix summaries and queries past runs.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from crossmatrix.matrix.models import MatrixRun, TargetRun
from crossmatrix.matrix.summary import MatrixSummary

logger = logging.getLogger(__name__)

TRIGGERS = ("push", "tag", "manual")


class RunNotFoundError(Exception):
    """Raised when a matrix run is not found."""

    def __init__(self, run_id: int, code: str = "run_not_found") -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id
        self.code = code


def record_summary(
    session: Session,
    summary: MatrixSummary,
    trigger: str = "manual",
) -> MatrixRun:
    """Store a matrix summary as a run with one row per target.

    Args:
        session: Database session.
        summary: Completed matrix summary.
        trigger: What started the run (push, tag, manual).

    Returns:
        The persisted MatrixRun.

    Raises:
        ValueError: If the trigger is unknown.
    """
    if trigger not in TRIGGERS:
        raise ValueError(f"Unknown trigger '{trigger}', expected one of {TRIGGERS}")

    run = MatrixRun(
        project=summary.project,
        trigger=trigger,
        finished_at=summary.finished_at,
        succeeded_count=len(summary.succeeded),
        failed_count=len(summary.failed),
        cancelled=summary.cancelled,
    )
    if summary.started_at is not None:
        run.started_at = summary.started_at
    for result in summary.results.values():
        run.targets.append(
            TargetRun(
                target_id=result.target_id,
                status=result.status.value,
                duration_seconds=result.duration_seconds,
                binary_size_bytes=result.binary_size_bytes,
                archive_path=str(result.archive_path) if result.archive_path else None,
                publication_handles=list(result.publication_handles),
                cache_restore=result.cache_restore.value if result.cache_restore else None,
                cache_persisted=result.cache_persisted,
                verified=result.verified,
                diagnostics=[d.to_dict() for d in result.diagnostics],
                error_message=result.error_message,
            )
        )
    session.add(run)
    session.flush()
    logger.info("Recorded run %d for %s (%d targets)", run.id, run.project, len(run.targets))
    return run


def get_run(session: Session, run_id: int) -> MatrixRun:
    """Get a matrix run by ID.

    Args:
        session: Database session.
        run_id: Run ID.

    Returns:
        MatrixRun instance with its targets loaded.

    Raises:
        RunNotFoundError: If the run is not found.
    """
    stmt = (
        select(MatrixRun)
        .where(MatrixRun.id == run_id)
        .options(selectinload(MatrixRun.targets))
    )
    run = session.execute(stmt).scalar_one_or_none()
    if run is None:
        raise RunNotFoundError(run_id)
    return run


def list_runs(
    session: Session,
    project: str | None = None,
    limit: int = 20,
) -> list[MatrixRun]:
    """List matrix runs, newest first.

    Args:
        session: Database session.
        project: Filter by project name.
        limit: Maximum results to return.

    Returns:
        List of MatrixRun instances.
    """
    stmt = select(MatrixRun).options(selectinload(MatrixRun.targets))

    if project is not None:
        stmt = stmt.where(MatrixRun.project == project)

    stmt = stmt.order_by(MatrixRun.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


__all__ = ["TRIGGERS", "RunNotFoundError", "get_run", "list_runs", "record_summary"]
