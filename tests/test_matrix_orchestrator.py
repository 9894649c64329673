"""Tests for the matrix orchestrator and run summaries."""

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from conftest import PipelineParts

from crossmatrix.config import Settings
from crossmatrix.matrix import orchestrator as orchestrator_module
from crossmatrix.matrix.orchestrator import MatrixOrchestrator, target_dir
from crossmatrix.matrix.summary import MatrixSummary
from crossmatrix.profiles.schema import ProjectSchema, TargetProfileSchema
from crossmatrix.publish import HttpPublisher, LocalPublisher
from crossmatrix.types import BuildResult, TargetStatus


class BlockingPipeline:
    """Pipeline stand-in whose runs wait for cancellation."""

    def __init__(self) -> None:
        self.cancel_event = threading.Event()
        self.running = threading.Event()
        self.started: list[str] = []

    def run(self, profile: TargetProfileSchema) -> BuildResult:
        self.started.append(profile.id)
        self.running.set()
        self.cancel_event.wait(5)
        return BuildResult(profile.id, TargetStatus.CANCELLED, error_message="cancelled")


class CrashingPipeline:
    """Pipeline stand-in that raises for one target."""

    def __init__(self, crash_on: str) -> None:
        self.cancel_event = threading.Event()
        self.crash_on = crash_on

    def run(self, profile: TargetProfileSchema) -> BuildResult:
        if profile.id == self.crash_on:
            raise RuntimeError("worker exploded")
        return BuildResult(profile.id, TargetStatus.SUCCESS)


class TestMatrixOrchestrator:
    """Tests for MatrixOrchestrator.run."""

    def test_partial_success(
        self,
        parts: PipelineParts,
        project: ProjectSchema,
        pi_zero: TargetProfileSchema,
        arm64: TargetProfileSchema,
    ):
        """An unresolvable target does not stop a buildable one."""
        parts.make_toolchain(arm64)
        summary = MatrixOrchestrator(project, parts.pipeline()).run([pi_zero, arm64])

        assert list(summary.results) == ["pi-zero", "arm64"]
        assert summary.statuses() == {
            "pi-zero": TargetStatus.TOOLCHAIN_UNRESOLVABLE,
            "arm64": TargetStatus.SUCCESS,
        }
        assert summary.any_succeeded
        assert not summary.all_succeeded
        assert [r.target_id for r in summary.failed] == ["pi-zero"]
        assert sorted(parts.publisher.uploads) == [
            "camstream-arm64.tar.gz",
            "camstream-binary-arm64/camcompress",
            "camstream-binary-arm64/camstream",
        ]
        assert summary.finished_at >= summary.started_at

    def test_targets_isolated(
        self,
        parts: PipelineParts,
        project: ProjectSchema,
        pi_zero: TargetProfileSchema,
        arm64: TargetProfileSchema,
    ):
        """Each target gets its own workspace, build dir and cache entry."""
        parts.make_toolchain(pi_zero)
        parts.make_toolchain(arm64)
        parts.build_overrides["pi-zero"] = {"build_code": 2}
        summary = MatrixOrchestrator(project, parts.pipeline()).run([pi_zero, arm64])

        assert summary.statuses() == {
            "pi-zero": TargetStatus.BUILD_FAILED,
            "arm64": TargetStatus.SUCCESS,
        }
        assert parts.build_systems["pi-zero"].build_dir != parts.build_systems["arm64"].build_dir
        pi_archives = parts.work_dir / "pi-zero" / "apt" / "archives"
        assert sorted(p.name for p in pi_archives.iterdir() if p.is_file()) == [
            "g++-arm-linux-gnueabi_1.0_all.deb",
            "gcc-arm-linux-gnueabi_1.0_all.deb",
        ]
        cached_targets = sorted(p.name for p in (parts.cache_root / "v1").iterdir())
        assert cached_targets == ["arm64", "pi-zero"]

    def test_all_succeed(
        self,
        parts: PipelineParts,
        project: ProjectSchema,
        pi_zero: TargetProfileSchema,
        arm64: TargetProfileSchema,
    ):
        """Every target builds with its own parallelism."""
        parts.make_toolchain(pi_zero)
        parts.make_toolchain(arm64)
        summary = MatrixOrchestrator(project, parts.pipeline(), max_workers=1).run(
            [pi_zero, arm64]
        )
        assert summary.all_succeeded
        assert parts.build_systems["pi-zero"].builds[0] == (2, None)
        assert parts.build_systems["arm64"].builds[0] == (4, None)

    def test_empty_matrix(self, parts: PipelineParts, project: ProjectSchema):
        """Running no targets yields an empty summary."""
        summary = MatrixOrchestrator(project, parts.pipeline()).run([])
        assert summary.results == {}
        assert not summary.any_succeeded
        assert not summary.all_succeeded
        assert summary.finished_at is not None

    def test_cancel_before_run(
        self,
        parts: PipelineParts,
        project: ProjectSchema,
        pi_zero: TargetProfileSchema,
        arm64: TargetProfileSchema,
    ):
        """A cancelled orchestrator cancels every target."""
        parts.make_toolchain(arm64)
        orchestrator = MatrixOrchestrator(project, parts.pipeline())
        orchestrator.cancel()
        summary = orchestrator.run([pi_zero, arm64])
        assert set(summary.statuses().values()) == {TargetStatus.CANCELLED}
        assert parts.publisher.uploads == {}

    def test_keyboard_interrupt(
        self,
        monkeypatch: pytest.MonkeyPatch,
        project: ProjectSchema,
        pi_zero: TargetProfileSchema,
        arm64: TargetProfileSchema,
    ):
        """Ctrl-C cancels the running target and drops queued ones."""
        pipeline = BlockingPipeline()

        def interrupted(futures):
            pipeline.running.wait(5)
            raise KeyboardInterrupt

        monkeypatch.setattr(orchestrator_module, "as_completed", interrupted)
        orchestrator = MatrixOrchestrator(project, pipeline, max_workers=1)  # type: ignore[arg-type]
        summary = orchestrator.run([pi_zero, arm64])

        assert summary.cancelled
        assert orchestrator.cancel_event.is_set()
        assert summary.statuses() == {
            "pi-zero": TargetStatus.CANCELLED,
            "arm64": TargetStatus.CANCELLED,
        }
        assert summary.results["arm64"].error_message == "Cancelled before start"
        assert pipeline.started == ["pi-zero"]

    def test_crashed_worker_becomes_error(
        self,
        project: ProjectSchema,
        pi_zero: TargetProfileSchema,
        arm64: TargetProfileSchema,
    ):
        """An exception escaping a pipeline is recorded as ERROR."""
        pipeline = CrashingPipeline(crash_on="pi-zero")
        summary = MatrixOrchestrator(project, pipeline).run([pi_zero, arm64])  # type: ignore[arg-type]
        assert summary.statuses() == {
            "pi-zero": TargetStatus.ERROR,
            "arm64": TargetStatus.SUCCESS,
        }
        assert summary.results["pi-zero"].error_message == "RuntimeError: worker exploded"

    def test_rerun_is_idempotent(
        self,
        parts: PipelineParts,
        project: ProjectSchema,
        arm64: TargetProfileSchema,
    ):
        """Running the same matrix twice publishes identical archives."""
        parts.make_toolchain(arm64)
        orchestrator = MatrixOrchestrator(project, parts.pipeline())
        orchestrator.run([arm64])
        first = parts.publisher.uploads["camstream-arm64.tar.gz"]
        summary = orchestrator.run([arm64])
        assert summary.all_succeeded
        assert parts.publisher.uploads["camstream-arm64.tar.gz"] == first


class TestFromSettings:
    """Tests for MatrixOrchestrator.from_settings."""

    def test_wiring(self, tmp_path: Path, project: ProjectSchema, source_dir: Path):
        """Collaborators share one cancel event and use configured paths."""
        settings = Settings(
            work_dir=tmp_path / "work",
            cache_dir=tmp_path / "cache",
            dist_dir=tmp_path / "dist",
            publish_dir=tmp_path / "pub",
            publish_url=None,
            max_parallel_targets=2,
            source_date_epoch=1700000000,
        )
        orchestrator = MatrixOrchestrator.from_settings(project, settings, source_dir=source_dir)
        pipeline = orchestrator.pipeline

        assert orchestrator.max_workers == 2
        assert pipeline.lock_dir == tmp_path / "work" / ".locks"
        assert pipeline.dist_dir == tmp_path / "dist"
        assert pipeline.source_date_epoch == 1700000000
        assert pipeline.resolver.cancel_event is orchestrator.cancel_event
        assert pipeline.packager.source_dir == source_dir.resolve()
        assert isinstance(pipeline.publisher, LocalPublisher)

    def test_http_publisher(self, tmp_path: Path, project: ProjectSchema):
        """A configured publish URL selects HTTP uploads."""
        settings = Settings(work_dir=tmp_path, publish_url="https://artifacts.example.com")
        orchestrator = MatrixOrchestrator.from_settings(project, settings, source_dir=tmp_path)
        assert isinstance(orchestrator.pipeline.publisher, HttpPublisher)

    def test_target_dir(self, tmp_path: Path):
        """Each target works under its own directory."""
        assert target_dir(tmp_path, "pi-zero") == tmp_path / "pi-zero"


class TestMatrixSummary:
    """Tests for MatrixSummary."""

    def test_counts_and_flags(self):
        """Verification failures count as published but not fully successful."""
        summary = MatrixSummary(project="camstream")
        summary.add(BuildResult("pi-zero", TargetStatus.VERIFICATION_FAILED))
        summary.add(BuildResult("arm64", TargetStatus.SUCCESS))
        summary.add(BuildResult("pi3-4", TargetStatus.BUILD_FAILED))

        assert summary.counts() == {"verification_failed": 1, "success": 1, "build_failed": 1}
        assert [r.target_id for r in summary.succeeded] == ["pi-zero", "arm64"]
        assert summary.any_succeeded
        assert not summary.all_succeeded

    def test_to_dict(self):
        """to_dict is JSON-friendly and sorted by target id."""
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        summary = MatrixSummary(
            project="camstream", started_at=start, finished_at=start + timedelta(seconds=90)
        )
        summary.add(BuildResult("pi-zero", TargetStatus.TOOLCHAIN_UNRESOLVABLE))
        summary.add(BuildResult("arm64", TargetStatus.SUCCESS))
        data = summary.to_dict()

        assert data["duration_seconds"] == 90.0
        assert data["started_at"] == "2024-01-01T00:00:00+00:00"
        assert list(data["targets"]) == ["arm64", "pi-zero"]
        assert data["targets"]["pi-zero"]["status"] == "toolchain_unresolvable"
        assert data["cancelled"] is False

    def test_duration_without_times(self):
        """Duration is zero until the run has finished."""
        assert MatrixSummary(project="x").duration_seconds == 0.0
