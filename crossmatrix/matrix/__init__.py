"""Matrix fan-out, per-target pipelines and run history."""

from crossmatrix.matrix.orchestrator import MatrixOrchestrator
from crossmatrix.matrix.pipeline import TargetPipeline, target_lock
from crossmatrix.matrix.summary import MatrixSummary

__all__ = ["MatrixOrchestrator", "MatrixSummary", "TargetPipeline", "target_lock"]
