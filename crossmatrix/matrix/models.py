"""Run history ORM models.

A MatrixRun records one orchestrator invocation; each TargetRun records the
terminal result of one target pipeline within it.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crossmatrix.db import Base
from crossmatrix.types import TargetStatus


class MatrixRun(Base):
    """ORM model for one matrix run.

    Attributes:
        id: Primary key.
        project: Project name.
        trigger: What started the run (push, tag, manual).
        started_at: When the fan-out started.
        finished_at: When the last pipeline terminated.
        succeeded_count: Targets with a published archive.
        failed_count: Targets without a published archive.
        cancelled: Whether the run was cancelled.
    """

    __tablename__ = "matrix_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")

    started_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    succeeded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    targets: Mapped[list["TargetRun"]] = relationship(
        "TargetRun",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="TargetRun.target_id",
    )

    def __repr__(self) -> str:
        return (
            f"<MatrixRun(id={self.id}, project='{self.project}', "
            f"succeeded={self.succeeded_count}, failed={self.failed_count})>"
        )


class TargetRun(Base):
    """ORM model for one target's result within a matrix run."""

    __tablename__ = "target_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("matrix_runs.id"), nullable=False, index=True
    )
    target_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=TargetStatus.ERROR.value, index=True
    )
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    binary_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    archive_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    publication_handles: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, default=list
    )
    cache_restore: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cache_persisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    diagnostics: Mapped[list[dict[str, str]] | None] = mapped_column(
        JSON, nullable=True, default=list
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    run: Mapped["MatrixRun"] = relationship("MatrixRun", back_populates="targets")

    __table_args__ = (Index("ix_target_runs_target_status", "target_id", "status"),)

    def __repr__(self) -> str:
        return (
            f"<TargetRun(id={self.id}, run_id={self.run_id}, "
            f"target_id='{self.target_id}', status='{self.status}')>"
        )

    def is_published(self) -> bool:
        """Check if this target produced a published archive."""
        return TargetStatus(self.status).published


__all__ = ["MatrixRun", "TargetRun"]
