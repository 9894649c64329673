"""Per-target bundle assembly and release archives.

This module handles:
- Copying build outputs into a ``<project>-<target>`` bundle directory
- Best-effort secondary binary, resource files and native packages
- README and manifest generation
- Reproducible ``<project>-<target>.tar.gz`` archives

Only a missing primary binary fails packaging; every other absence is a
diagnostic.
"""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import stat
import tarfile
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from crossmatrix.packaging.artifacts import (
    MANIFEST_NAME,
    discover_artifacts,
    generate_manifest,
    write_manifest,
)
from crossmatrix.packaging.readme import readme_name, render_readme
from crossmatrix.profiles.schema import ProjectSchema, TargetProfileSchema
from crossmatrix.types import Diagnostic, Severity, SoftResult

if TYPE_CHECKING:
    from crossmatrix.builds.cmake import BuildSystem
    from crossmatrix.builds.executor import ExecutorResult

logger = logging.getLogger(__name__)


class PackagingError(Exception):
    """Raised when a bundle cannot be produced (primary binary missing)."""

    def __init__(self, target_id: str, message: str, code: str = "packaging_failed") -> None:
        super().__init__(message)
        self.target_id = target_id
        self.code = code


def bundle_name(project: str, target_id: str) -> str:
    return f"{project}-{target_id}"


def archive_name(project: str, target_id: str) -> str:
    return f"{bundle_name(project, target_id)}.tar.gz"


@dataclass(frozen=True)
class PackageBundle:
    """A staged bundle directory for one target.

    Construction fails if the primary binary is not present in the bundle.
    """

    project: str
    profile: TargetProfileSchema
    directory: Path
    primary_binary: Path
    secondary_binary: Path | None = None
    resources: tuple[Path, ...] = ()
    native_packages: tuple[Path, ...] = ()
    readme: Path | None = None
    manifest: Path | None = None
    diagnostics: tuple[Diagnostic, ...] = ()

    def __post_init__(self) -> None:
        if not self.primary_binary.is_file():
            raise PackagingError(
                self.profile.id,
                f"Bundle {self.directory.name} has no primary binary",
            )

    @property
    def target_id(self) -> str:
        return self.profile.id

    @property
    def archive_name(self) -> str:
        return archive_name(self.project, self.profile.id)

    @property
    def binary_paths(self) -> tuple[Path, ...]:
        if self.secondary_binary is not None:
            return (self.primary_binary, self.secondary_binary)
        return (self.primary_binary,)


def _copy_executable(src: Path, dest_dir: Path) -> Path:
    dest = dest_dir / src.name
    shutil.copy2(src, dest)
    dest.chmod(dest.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return dest


class ArtifactPackager:
    """Assembles per-target bundles."""

    def __init__(
        self,
        project: ProjectSchema,
        source_dir: Path,
        staging_root: Path,
        source_date_epoch: int | None = None,
    ) -> None:
        self.project = project
        self.source_dir = source_dir
        self.staging_root = staging_root
        self.source_date_epoch = source_date_epoch

    def _bundle_dir(self, target_id: str) -> Path:
        return self.staging_root / target_id / bundle_name(self.project.name, target_id)

    def package(
        self,
        profile: TargetProfileSchema,
        outputs: ExecutorResult,
        build_system: BuildSystem | None = None,
    ) -> PackageBundle:
        """Assemble the bundle for a built target.

        Args:
            profile: Target profile.
            outputs: Executor result of a successful build.
            build_system: Build system used to produce native packages.

        Returns:
            PackageBundle with all soft findings in ``diagnostics``.

        Raises:
            PackagingError: If the primary binary is missing.
        """
        bundle_dir = self._bundle_dir(profile.id)
        if bundle_dir.exists():
            shutil.rmtree(bundle_dir)

        primary = outputs.primary_binary
        if primary is None or not primary.is_file():
            logger.error(
                "[%s] Primary binary missing at %s after a successful build",
                profile.id,
                primary,
            )
            raise PackagingError(
                profile.id,
                f"Primary binary {self.project.primary_binary} not found at {primary}",
            )

        bundle_dir.mkdir(parents=True)
        diagnostics: list[Diagnostic] = []

        bundled_primary = _copy_executable(primary, bundle_dir)

        bundled_secondary: Path | None = None
        if outputs.secondary_binary is not None and outputs.secondary_binary.is_file():
            bundled_secondary = _copy_executable(outputs.secondary_binary, bundle_dir)
            logger.info("[%s] Adding %s to package", profile.id, bundled_secondary.name)

        copied = self._copy_resources(profile.id, bundle_dir)
        resources = copied.value or []
        diagnostics.extend(copied.diagnostics)

        native_packages: list[Path] = []
        if build_system is not None:
            packaged = self._copy_native_packages(profile.id, bundle_dir, build_system)
            native_packages = packaged.value or []
            diagnostics.extend(packaged.diagnostics)

        readme_path = bundle_dir / readme_name(profile)
        contents = [
            p.relative_to(bundle_dir).as_posix()
            for p in bundle_dir.rglob("*")
            if p.is_file()
        ]
        contents.append(readme_path.name)
        readme_path.write_text(
            render_readme(
                self.project,
                profile,
                contents=contents,
                secondary=bundled_secondary.name if bundled_secondary else None,
            ),
            encoding="utf-8",
        )

        binaries = tuple(p.name for p in (bundled_primary, bundled_secondary) if p)
        manifest = generate_manifest(
            discover_artifacts(bundle_dir, binaries),
            project=self.project.name,
            target_id=profile.id,
            extra_metadata={
                "architecture": profile.architecture,
                "display_name": profile.display_name,
                "diagnostics": [d.to_dict() for d in diagnostics],
            },
            generated_at=self._timestamp(),
        )
        manifest_path = write_manifest(manifest, bundle_dir / MANIFEST_NAME)

        return PackageBundle(
            project=self.project.name,
            profile=profile,
            directory=bundle_dir,
            primary_binary=bundled_primary,
            secondary_binary=bundled_secondary,
            resources=tuple(resources),
            native_packages=tuple(native_packages),
            readme=readme_path,
            manifest=manifest_path,
            diagnostics=tuple(diagnostics),
        )

    def _copy_resources(self, target_id: str, bundle_dir: Path) -> SoftResult[list[Path]]:
        result: SoftResult[list[Path]] = SoftResult(value=[])
        for name in self.project.resource_files:
            src = self.source_dir / name
            if not src.is_file():
                result.diagnostics.append(Diagnostic("resources", f"{name} not found"))
                logger.warning("[%s] Resource file %s not found", target_id, name)
                continue
            dest = bundle_dir / name
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dest)
            result.value.append(dest)
        return result

    def _copy_native_packages(
        self, target_id: str, bundle_dir: Path, build_system: BuildSystem
    ) -> SoftResult[list[Path]]:
        copied: list[Path] = []
        for package_file in build_system.package():
            dest = bundle_dir / package_file.name
            shutil.copy2(package_file, dest)
            copied.append(dest)
        if not copied:
            return SoftResult(
                diagnostics=[
                    Diagnostic("native_package", "No native package produced", Severity.INFO)
                ]
            )
        logger.info(
            "[%s] Native package copied: %s", target_id, ", ".join(p.name for p in copied)
        )
        return SoftResult(value=copied)

    def _timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.source_date_epoch or 0, tz=timezone.utc)


def _normalize(info: tarfile.TarInfo, mtime: int) -> tarfile.TarInfo:
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mtime = mtime
    if info.isdir() or info.mode & 0o111:
        info.mode = 0o755
    else:
        info.mode = 0o644
    return info


def create_archive(
    bundle: PackageBundle,
    dist_dir: Path,
    source_date_epoch: int | None = None,
) -> Path:
    """Write a bundle to ``<project>-<target>.tar.gz`` reproducibly.

    Members are sorted, ownership is zeroed and every timestamp (including
    the gzip header) is fixed, so identical bundles give identical bytes.

    Args:
        bundle: Bundle to archive.
        dist_dir: Output directory.
        source_date_epoch: Timestamp for archive members (0 if None).

    Returns:
        Path to the archive.
    """
    dist_dir.mkdir(parents=True, exist_ok=True)
    dest = dist_dir / bundle.archive_name
    mtime = source_date_epoch or 0
    root = bundle.directory

    fd, tmp_name = tempfile.mkstemp(prefix=".tmp_", suffix=".tar.gz", dir=dist_dir)
    try:
        with os.fdopen(fd, "wb") as raw:
            with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
                with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
                    members = [root, *sorted(root.rglob("*"))]
                    for path in members:
                        arcname = root.name
                        if path != root:
                            arcname = f"{root.name}/{path.relative_to(root).as_posix()}"
                        tar.add(
                            path,
                            arcname=arcname,
                            recursive=False,
                            filter=lambda info: _normalize(info, mtime),
                        )
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("[%s] Created %s", bundle.target_id, dest.name)
    return dest


__all__ = [
    "ArtifactPackager",
    "PackageBundle",
    "PackagingError",
    "archive_name",
    "bundle_name",
    "create_archive",
]
