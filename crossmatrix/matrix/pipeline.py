"""Per-target pipeline.

Runs every step for one target profile:

    restore -> install -> persist -> resolve -> configure/build/secondary
    -> package -> archive -> verify -> publish

The dependency cache is persisted right after a successful install so later
runs reuse it even when the build fails. Every terminal error is converted
into the target's BuildResult status here; nothing propagates to sibling
pipelines.
"""

from __future__ import annotations

import fcntl
import logging
import os
import re
import shutil
import tarfile
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from crossmatrix.builds.cmake import BuildSystem
from crossmatrix.builds.executor import ExecutorResult, TargetBuildExecutor
from crossmatrix.builds.runner import PipelineCancelledError
from crossmatrix.cache.manager import DependencyCacheManager
from crossmatrix.cache.packages import InstallError
from crossmatrix.packaging.bundle import (
    ArtifactPackager,
    PackageBundle,
    PackagingError,
    archive_name,
    create_archive,
)
from crossmatrix.profiles.schema import ProjectSchema, TargetProfileSchema
from crossmatrix.publish import PublicationBackend, PublishError
from crossmatrix.toolchain.resolver import ToolchainResolver, ToolchainUnresolvableError
from crossmatrix.types import (
    BuildResult,
    Diagnostic,
    RestoreOutcome,
    Severity,
    TargetStatus,
)
from crossmatrix.verify import Verifier

logger = logging.getLogger(__name__)

LOCK_POLL_INTERVAL = 0.1


@contextmanager
def target_lock(
    lock_dir: Path,
    target_id: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Acquire the lock for a target identity.

    Uses a file-based lock so that two runs never build the same target at
    the same time.

    Args:
        lock_dir: Directory for lock files.
        target_id: Target to lock on.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)

    safe_id = re.sub(r"[^a-zA-Z0-9_.\-]", "_", target_id)[:64]
    lock_file = lock_dir / f"target_{safe_id}.lock"

    logger.debug("Acquiring target lock for %s", target_id)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise TimeoutError(
                            f"Timeout waiting for target lock on {target_id}"
                        ) from None
                    time.sleep(LOCK_POLL_INTERVAL)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        logger.debug("Target lock acquired for %s", target_id)
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Target lock released for %s", target_id)
        os.close(fd)


class _TargetFailure(Exception):
    """Terminal failure of one step, carrying the target status."""

    def __init__(self, status: TargetStatus, message: str) -> None:
        super().__init__(message)
        self.status = status


@dataclass
class _Progress:
    """Outcome fields collected while a pipeline runs."""

    target_id: str
    started: float = field(default_factory=time.monotonic)
    cache_restore: RestoreOutcome | None = None
    cache_persisted: bool = False
    binary_paths: tuple[Path, ...] = ()
    binary_size_bytes: int = 0
    archive_path: Path | None = None
    publication_handles: list[str] = field(default_factory=list)
    verified: bool | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def finish(self, status: TargetStatus, error_message: str | None = None) -> BuildResult:
        return BuildResult(
            target_id=self.target_id,
            status=status,
            binary_paths=self.binary_paths,
            duration_seconds=time.monotonic() - self.started,
            binary_size_bytes=self.binary_size_bytes,
            archive_path=self.archive_path,
            publication_handles=tuple(self.publication_handles),
            cache_restore=self.cache_restore,
            cache_persisted=self.cache_persisted,
            verified=self.verified,
            diagnostics=tuple(self.diagnostics),
            error_message=error_message,
        )


def binary_publication_name(project: str, target_id: str, filename: str) -> str:
    """Publication name of a bare binary."""
    return f"{project}-binary-{target_id}/{filename}"


class TargetPipeline:
    """Runs the full pipeline for one target profile at a time.

    One instance is shared by all worker threads; everything that is
    per-target lives under ``work_dir/<target_id>`` or is created by the
    factories for each run.
    """

    def __init__(
        self,
        project: ProjectSchema,
        resolver: ToolchainResolver,
        cache_manager: DependencyCacheManager,
        build_system_factory: Callable[[TargetProfileSchema], BuildSystem],
        packager: ArtifactPackager,
        verifier_factory: Callable[[TargetProfileSchema], Verifier],
        publisher: PublicationBackend,
        dist_dir: Path,
        lock_dir: Path,
        lock_timeout: float | None = None,
        clean_build: bool = True,
        publish_binaries: bool = True,
        source_date_epoch: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.project = project
        self.resolver = resolver
        self.cache_manager = cache_manager
        self.build_system_factory = build_system_factory
        self.packager = packager
        self.verifier_factory = verifier_factory
        self.publisher = publisher
        self.dist_dir = dist_dir
        self.lock_dir = lock_dir
        self.lock_timeout = lock_timeout
        self.clean_build = clean_build
        self.publish_binaries = publish_binaries
        self.source_date_epoch = source_date_epoch
        self.cancel_event = cancel_event or threading.Event()

    def _checkpoint(self, target_id: str) -> None:
        if self.cancel_event.is_set():
            raise PipelineCancelledError(f"[{target_id}] cancelled")

    def run(self, profile: TargetProfileSchema) -> BuildResult:
        """Run the pipeline for one target.

        Args:
            profile: Target profile.

        Returns:
            BuildResult; never raises for target-level failures.
        """
        progress = _Progress(target_id=profile.id)
        logger.info("[%s] Starting pipeline for %s", profile.id, profile.display_name)
        try:
            self._checkpoint(profile.id)
            with target_lock(self.lock_dir, profile.id, timeout=self.lock_timeout):
                status = self._run_locked(profile, progress)
        except _TargetFailure as e:
            logger.error("[%s] %s: %s", profile.id, e.status.value, e)
            return progress.finish(e.status, str(e))
        except PipelineCancelledError as e:
            logger.warning("[%s] Pipeline cancelled", profile.id)
            return progress.finish(TargetStatus.CANCELLED, str(e))
        except TimeoutError as e:
            logger.error("[%s] %s", profile.id, e)
            return progress.finish(TargetStatus.ERROR, str(e))
        except Exception as e:
            logger.exception("[%s] Unexpected pipeline error", profile.id)
            return progress.finish(TargetStatus.ERROR, f"{type(e).__name__}: {e}")

        result = progress.finish(status)
        logger.info(
            "[%s] Pipeline finished: %s in %.1fs",
            profile.id,
            status.value,
            result.duration_seconds,
        )
        return result

    def _run_locked(self, profile: TargetProfileSchema, progress: _Progress) -> TargetStatus:
        self._prepare_dependencies(profile, progress)

        self._checkpoint(profile.id)
        try:
            toolchain = self.resolver.resolve(profile)
        except ToolchainUnresolvableError as e:
            raise _TargetFailure(TargetStatus.TOOLCHAIN_UNRESOLVABLE, str(e)) from e

        self._checkpoint(profile.id)
        build_system = self.build_system_factory(profile)
        if self.clean_build and build_system.build_dir.exists():
            shutil.rmtree(build_system.build_dir)
        outputs = TargetBuildExecutor(self.project, build_system).build(profile, toolchain)
        progress.diagnostics.extend(outputs.diagnostics)
        failure = outputs.failure_status
        if failure is not None:
            raise _TargetFailure(failure, outputs.error_message or failure.value)

        self._checkpoint(profile.id)
        bundle = self._package(profile, outputs, build_system, progress)

        self._checkpoint(profile.id)
        report = self.verifier_factory(profile).verify(bundle)
        progress.verified = report.verified
        for check in report.failures():
            progress.diagnostics.append(
                Diagnostic("verify", f"{check.name}: {check.detail}", Severity.ERROR)
            )

        self._checkpoint(profile.id)
        self._publish(profile, bundle, progress)

        return TargetStatus.SUCCESS if report.verified else TargetStatus.VERIFICATION_FAILED

    def _prepare_dependencies(
        self, profile: TargetProfileSchema, progress: _Progress
    ) -> None:
        key = self.cache_manager.key_for(profile)
        progress.cache_restore = self.cache_manager.restore(key)
        if progress.cache_restore is RestoreOutcome.ERROR:
            progress.diagnostics.append(
                Diagnostic("cache_restore", "Dependency cache could not be restored")
            )

        self._checkpoint(profile.id)
        if not profile.packages:
            logger.info("[%s] No dependencies declared", profile.id)
            return
        try:
            self.cache_manager.fetch_and_install(key, profile.packages)
        except InstallError as e:
            raise _TargetFailure(TargetStatus.INSTALL_FAILED, str(e)) from e

        progress.cache_persisted = self.cache_manager.persist(key)
        if not progress.cache_persisted:
            progress.diagnostics.append(
                Diagnostic("cache_persist", "Dependency cache could not be persisted")
            )

    def _package(
        self,
        profile: TargetProfileSchema,
        outputs: ExecutorResult,
        build_system: BuildSystem,
        progress: _Progress,
    ) -> PackageBundle:
        stale = self.dist_dir / archive_name(self.project.name, profile.id)
        if stale.exists():
            logger.debug("[%s] Removing previous archive %s", profile.id, stale.name)
            stale.unlink()
        try:
            bundle = self.packager.package(profile, outputs, build_system)
        except PackagingError as e:
            logger.critical(
                "[%s] Build reported success but produced no primary binary; "
                "nothing will be published",
                profile.id,
            )
            raise _TargetFailure(TargetStatus.PACKAGING_FAILED, str(e)) from e
        progress.diagnostics.extend(bundle.diagnostics)
        progress.binary_paths = bundle.binary_paths
        progress.binary_size_bytes = bundle.primary_binary.stat().st_size

        try:
            progress.archive_path = create_archive(
                bundle, self.dist_dir, self.source_date_epoch
            )
        except (OSError, tarfile.TarError) as e:
            raise _TargetFailure(
                TargetStatus.PACKAGING_FAILED, f"Failed to create archive: {e}"
            ) from e
        return bundle

    def _publish(
        self, profile: TargetProfileSchema, bundle: PackageBundle, progress: _Progress
    ) -> None:
        archive = progress.archive_path
        if archive is None:
            raise _TargetFailure(TargetStatus.PACKAGING_FAILED, "No archive to publish")
        try:
            handle = self.publisher.upload(archive.name, archive.read_bytes())
        except PublishError as e:
            raise _TargetFailure(TargetStatus.PUBLISH_FAILED, str(e)) from e
        progress.publication_handles.append(handle)
        logger.info("[%s] Published %s", profile.id, archive.name)

        if not self.publish_binaries:
            return
        for binary in bundle.binary_paths:
            name = binary_publication_name(self.project.name, profile.id, binary.name)
            try:
                progress.publication_handles.append(
                    self.publisher.upload(name, binary.read_bytes())
                )
            except PublishError as e:
                progress.diagnostics.append(Diagnostic("publish_binary", str(e)))
                logger.warning("[%s] Could not publish %s: %s", profile.id, name, e)


__all__ = ["TargetPipeline", "binary_publication_name", "target_lock"]
