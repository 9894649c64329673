"""Matrix orchestrator.

Fans out one pipeline per target profile on a thread pool, waits for all of
them and aggregates a MatrixSummary. A target's failure never stops its
siblings. Ctrl-C while waiting cancels every in-flight pipeline; partial
outputs are left in place.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path

from crossmatrix.builds.cmake import CMakeBuildSystem
from crossmatrix.cache.backend import LocalCacheBackend
from crossmatrix.cache.manager import CacheWorkspace, DependencyCacheManager
from crossmatrix.cache.packages import AptPackageManager
from crossmatrix.config import Settings
from crossmatrix.matrix.pipeline import TargetPipeline
from crossmatrix.matrix.summary import MatrixSummary
from crossmatrix.packaging.bundle import ArtifactPackager
from crossmatrix.profiles.schema import ProjectSchema, TargetProfileSchema
from crossmatrix.publish import make_publisher
from crossmatrix.toolchain.resolver import ToolchainResolver
from crossmatrix.types import BuildResult, TargetStatus
from crossmatrix.verify import Verifier, format_size

logger = logging.getLogger(__name__)


def target_dir(work_dir: Path, target_id: str) -> Path:
    """Working directory of one target."""
    return work_dir / target_id


class MatrixOrchestrator:
    """Runs the target pipelines of a matrix concurrently."""

    def __init__(
        self,
        project: ProjectSchema,
        pipeline: TargetPipeline,
        max_workers: int = 0,
    ) -> None:
        self.project = project
        self.pipeline = pipeline
        self.max_workers = max_workers

    @property
    def cancel_event(self) -> threading.Event:
        return self.pipeline.cancel_event

    @classmethod
    def from_settings(
        cls,
        project: ProjectSchema,
        settings: Settings,
        source_dir: Path | None = None,
    ) -> MatrixOrchestrator:
        """Create an orchestrator backed by the real toolchain and tools.

        Args:
            project: Project to build.
            settings: Application settings.
            source_dir: Source tree (defaults to the project's source_dir).

        Returns:
            MatrixOrchestrator instance.
        """
        cancel_event = threading.Event()
        source = (source_dir or Path(project.source_dir)).resolve()
        work_dir = settings.work_dir

        def package_manager(workspace: CacheWorkspace) -> AptPackageManager:
            return AptPackageManager(
                archives_dir=workspace.archives_dir,
                lists_dir=workspace.lists_dir,
                log_dir=workspace.log_dir,
                use_sudo=settings.use_sudo,
                timeout=settings.install_timeout,
                cancel_event=cancel_event,
            )

        def build_system(profile: TargetProfileSchema) -> CMakeBuildSystem:
            root = target_dir(work_dir, profile.id)
            return CMakeBuildSystem(
                source_dir=source,
                build_dir=root / "build",
                log_dir=root / "logs",
                configure_timeout=settings.configure_timeout,
                build_timeout=settings.build_timeout,
                package_timeout=settings.package_timeout,
                cancel_event=cancel_event,
            )

        def verifier(profile: TargetProfileSchema) -> Verifier:
            return Verifier(
                log_dir=target_dir(work_dir, profile.id) / "logs",
                timeout=settings.verify_timeout,
                cancel_event=cancel_event,
            )

        pipeline = TargetPipeline(
            project=project,
            resolver=ToolchainResolver(
                work_dir=work_dir,
                warning_flags=project.warning_flags,
                timeout=settings.probe_timeout,
                cancel_event=cancel_event,
            ),
            cache_manager=DependencyCacheManager(
                backend=LocalCacheBackend(settings.cache_dir),
                work_dir=work_dir,
                package_manager_factory=package_manager,
                sources=settings.apt_sources,
            ),
            build_system_factory=build_system,
            packager=ArtifactPackager(
                project=project,
                source_dir=source,
                staging_root=work_dir,
                source_date_epoch=settings.source_date_epoch,
            ),
            verifier_factory=verifier,
            publisher=make_publisher(settings),
            dist_dir=settings.dist_dir,
            lock_dir=work_dir / ".locks",
            lock_timeout=settings.lock_timeout,
            clean_build=settings.clean_build,
            publish_binaries=settings.publish_binaries,
            source_date_epoch=settings.source_date_epoch,
            cancel_event=cancel_event,
        )
        return cls(project, pipeline, max_workers=settings.max_parallel_targets)

    def cancel(self) -> None:
        """Cancel all in-flight and queued pipelines."""
        if not self.cancel_event.is_set():
            logger.warning("Cancelling matrix run")
        self.cancel_event.set()

    def _collect(self, future: Future[BuildResult], profile: TargetProfileSchema) -> BuildResult:
        try:
            return future.result()
        except Exception as e:
            logger.exception("[%s] Pipeline crashed", profile.id)
            return BuildResult(
                target_id=profile.id,
                status=TargetStatus.ERROR,
                error_message=f"{type(e).__name__}: {e}",
            )

    def run(self, profiles: Sequence[TargetProfileSchema]) -> MatrixSummary:
        """Run every profile's pipeline and aggregate the results.

        Args:
            profiles: Profiles to build, one pipeline each.

        Returns:
            MatrixSummary with one result per profile, in profile order.
        """
        summary = MatrixSummary(
            project=self.project.name, started_at=datetime.now(timezone.utc)
        )
        if not profiles:
            summary.finished_at = datetime.now(timezone.utc)
            return summary

        workers = self.max_workers or len(profiles)
        logger.info(
            "Building %s for %d targets (%d workers)",
            self.project.name,
            len(profiles),
            workers,
        )
        results: dict[str, BuildResult] = {}
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="target")
        try:
            futures = {executor.submit(self.pipeline.run, p): p for p in profiles}
            try:
                for future in as_completed(futures):
                    profile = futures[future]
                    results[profile.id] = self._collect(future, profile)
            except KeyboardInterrupt:
                summary.cancelled = True
                # Queued futures go first so freed workers cannot pick them up
                not_started = {
                    profile.id
                    for future, profile in futures.items()
                    if profile.id not in results and future.cancel()
                }
                self.cancel()
                for future, profile in futures.items():
                    if profile.id in results:
                        continue
                    if profile.id in not_started:
                        results[profile.id] = BuildResult(
                            target_id=profile.id,
                            status=TargetStatus.CANCELLED,
                            error_message="Cancelled before start",
                        )
                    else:
                        results[profile.id] = self._collect(future, profile)
        finally:
            executor.shutdown(wait=True)

        for profile in profiles:
            summary.add(results[profile.id])
        summary.finished_at = datetime.now(timezone.utc)
        self._log_summary(summary)
        return summary

    def _log_summary(self, summary: MatrixSummary) -> None:
        logger.info("Build summary for %s:", summary.project)
        for result in summary.results.values():
            if result.succeeded:
                logger.info(
                    "  %s: %s (%s, %.0fs)",
                    result.target_id,
                    result.status.value,
                    format_size(result.binary_size_bytes),
                    result.duration_seconds,
                )
            else:
                logger.warning("  %s: %s", result.target_id, result.status.value)
        logger.info(
            "%d of %d targets published",
            len(summary.succeeded),
            len(summary.results),
        )


__all__ = ["MatrixOrchestrator", "target_dir"]
