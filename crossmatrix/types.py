"""Shared type definitions for crossmatrix.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Generic, TypeVar

T = TypeVar("T")


class TargetStatus(str, Enum):
    """Terminal status of one target pipeline."""

    SUCCESS = "success"
    TOOLCHAIN_UNRESOLVABLE = "toolchain_unresolvable"
    COMPILER_UNAVAILABLE = "toolchain_unresolvable"
    INSTALL_FAILED = "install_failed"
    CONFIGURE_FAILED = "configure_failed"
    BUILD_FAILED = "build_failed"
    PACKAGING_FAILED = "packaging_failed"
    VERIFICATION_FAILED = "verification_failed"
    PUBLISH_FAILED = "publish_failed"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def published(self) -> bool:
        """Whether a target in this status has a published archive."""
        return self in (TargetStatus.SUCCESS, TargetStatus.VERIFICATION_FAILED)


class PipelineState(str, Enum):
    """State of the configure/build state machine for one target."""

    INIT = "init"
    CONFIGURE_PENDING = "configure_pending"
    CONFIGURING = "configuring"
    CONFIGURED = "configured"
    CONFIGURE_FAILED = "configure_failed"
    BUILD_PENDING = "build_pending"
    BUILDING = "building"
    BUILT = "built"
    BUILD_FAILED = "build_failed"
    SECONDARY_BUILD_ATTEMPTED = "secondary_build_attempted"
    DONE = "done"


class RuntimeClass(str, Enum):
    """Expected resource envelope of a target device."""

    CONSTRAINED = "constrained"
    STANDARD = "standard"
    CAPABLE = "capable"


class RestoreOutcome(str, Enum):
    """Outcome of a dependency cache restore."""

    EXACT = "exact"
    FALLBACK = "fallback"
    MISS = "miss"
    ERROR = "error"


class Severity(str, Enum):
    """Severity of a non-fatal diagnostic."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal finding produced by a best-effort step."""

    step: str
    message: str
    severity: Severity = Severity.WARNING

    def to_dict(self) -> dict[str, str]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "step": self.step,
            "message": self.message,
            "severity": self.severity.value,
        }


@dataclass
class SoftResult(Generic[T]):
    """Result of a best-effort step.

    A missing value is never an error by itself; diagnostics explain why
    the value is absent or degraded.
    """

    value: T | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether the step produced a value."""
        return self.value is not None


@dataclass
class ArtifactInfo:
    """Information about a bundled file."""

    filename: str
    relative_path: str
    size_bytes: int
    sha256: str
    kind: str | None = None


@dataclass(frozen=True)
class BuildResult:
    """Final, immutable outcome of one target pipeline.

    Attributes:
        target_id: Target profile identifier.
        status: Terminal status.
        binary_paths: Bundled binaries, primary first.
        duration_seconds: Wall time of the whole pipeline.
        binary_size_bytes: Size of the primary binary (0 if absent).
        archive_path: Release archive, if one was created.
        publication_handles: Handles returned by the publication backend.
        cache_restore: Outcome of the dependency cache restore.
        cache_persisted: Whether the dependency cache was persisted.
        verified: Verification result, None if verification did not run.
        diagnostics: Non-fatal findings collected along the way.
        error_message: Description of the terminal failure, if any.
    """

    target_id: str
    status: TargetStatus
    binary_paths: tuple[Path, ...] = ()
    duration_seconds: float = 0.0
    binary_size_bytes: int = 0
    archive_path: Path | None = None
    publication_handles: tuple[str, ...] = ()
    cache_restore: RestoreOutcome | None = None
    cache_persisted: bool = False
    verified: bool | None = None
    diagnostics: tuple[Diagnostic, ...] = ()
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the target produced a published archive."""
        return self.status.published

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "target_id": self.target_id,
            "status": self.status.value,
            "binary_paths": [str(p) for p in self.binary_paths],
            "duration_seconds": round(self.duration_seconds, 3),
            "binary_size_bytes": self.binary_size_bytes,
            "archive_path": str(self.archive_path) if self.archive_path else None,
            "publication_handles": list(self.publication_handles),
            "cache_restore": self.cache_restore.value if self.cache_restore else None,
            "cache_persisted": self.cache_persisted,
            "verified": self.verified,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "error_message": self.error_message,
        }


__all__ = [
    "ArtifactInfo",
    "BuildResult",
    "Diagnostic",
    "PipelineState",
    "RestoreOutcome",
    "RuntimeClass",
    "Severity",
    "SoftResult",
    "TargetStatus",
]
