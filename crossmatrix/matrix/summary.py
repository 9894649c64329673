"""Aggregate outcome of a matrix run."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from crossmatrix.types import BuildResult, TargetStatus


@dataclass
class MatrixSummary:
    """Per-target results of one matrix run.

    Partial success is a normal outcome: ``any_succeeded`` and
    ``all_succeeded`` let callers decide how strict to be.
    """

    project: str
    results: dict[str, BuildResult] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    cancelled: bool = False

    def add(self, result: BuildResult) -> None:
        self.results[result.target_id] = result

    def statuses(self) -> dict[str, TargetStatus]:
        """Map of target id to terminal status."""
        return {target_id: r.status for target_id, r in self.results.items()}

    def counts(self) -> dict[str, int]:
        """Number of targets per status value."""
        return dict(Counter(r.status.value for r in self.results.values()))

    @property
    def succeeded(self) -> list[BuildResult]:
        return [r for r in self.results.values() if r.succeeded]

    @property
    def failed(self) -> list[BuildResult]:
        return [r for r in self.results.values() if not r.succeeded]

    @property
    def any_succeeded(self) -> bool:
        return bool(self.succeeded)

    @property
    def all_succeeded(self) -> bool:
        return bool(self.results) and all(
            r.status is TargetStatus.SUCCESS for r in self.results.values()
        )

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "project": self.project,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "cancelled": self.cancelled,
            "counts": self.counts(),
            "targets": {
                target_id: result.to_dict()
                for target_id, result in sorted(self.results.items())
            },
        }


__all__ = ["MatrixSummary"]
