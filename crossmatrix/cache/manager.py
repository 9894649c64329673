"""Dependency cache manager.

This module handles:
- Per-target package manager workspaces
- Best-effort restore of cached package archives and index lists
- Dependency installation (always runs, even after a cache hit)
- Best-effort persistence right after a successful install

Restores fall back to the newest entry of the *same* target when the exact
fingerprint is missing. Each stored archive carries a marker naming its
target and is refused anywhere else.
"""

from __future__ import annotations

import io
import logging
import tarfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from crossmatrix.cache.backend import CacheBackend
from crossmatrix.cache.keys import CacheKey, CachePart, cache_key_for
from crossmatrix.cache.packages import InstallError, PackageManager
from crossmatrix.profiles.schema import TargetProfileSchema
from crossmatrix.types import RestoreOutcome

logger = logging.getLogger(__name__)

TARGET_MARKER = ".crossmatrix-target"

# Entries never worth caching: apt locks and partial downloads
EXCLUDED_NAMES = frozenset({"lock", "partial", TARGET_MARKER})


class CacheIsolationError(Exception):
    """Raised when a cache archive belongs to a different target."""

    def __init__(self, expected: str, found: str | None, code: str = "cache_isolation") -> None:
        super().__init__(
            f"Cache archive belongs to target {found!r}, refusing to restore into {expected!r}"
        )
        self.expected = expected
        self.found = found
        self.code = code


@dataclass(frozen=True)
class CacheWorkspace:
    """Package manager directories of one target."""

    target_id: str
    root: Path

    @property
    def archives_dir(self) -> Path:
        return self.root / "archives"

    @property
    def lists_dir(self) -> Path:
        return self.root / "lists"

    @property
    def log_dir(self) -> Path:
        return self.root / "logs"

    def part_dir(self, part: CachePart) -> Path:
        return self.archives_dir if part is CachePart.ARCHIVES else self.lists_dir


def pack_directory(directory: Path, target_id: str) -> bytes:
    """Pack a cache directory into gzip'd tar bytes with a target marker."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        marker = target_id.encode("utf-8")
        info = tarfile.TarInfo(TARGET_MARKER)
        info.size = len(marker)
        tar.addfile(info, io.BytesIO(marker))
        if directory.is_dir():
            for path in sorted(directory.rglob("*")):
                rel = path.relative_to(directory)
                if any(part in EXCLUDED_NAMES for part in rel.parts):
                    continue
                if path.is_file():
                    tar.add(path, arcname=rel.as_posix(), recursive=False)
    return buffer.getvalue()


def unpack_directory(data: bytes, directory: Path, target_id: str) -> int:
    """Unpack cache bytes into a directory after checking the target marker.

    Returns:
        Number of files restored.

    Raises:
        CacheIsolationError: If the archive belongs to another target.
        tarfile.TarError: If the archive is corrupt.
    """
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
        try:
            marker_file = tar.extractfile(TARGET_MARKER)
        except KeyError:
            marker_file = None
        found = marker_file.read().decode("utf-8") if marker_file else None
        if found != target_id:
            raise CacheIsolationError(target_id, found)

        members = []
        for member in tar.getmembers():
            member_path = PurePosixPath(member.name)
            if member.name == TARGET_MARKER:
                continue
            if member_path.is_absolute() or ".." in member_path.parts:
                raise tarfile.TarError(f"Refusing to extract {member.name}: path traversal")
            members.append(member)

        directory.mkdir(parents=True, exist_ok=True)
        tar.extractall(directory, members=members, filter="data")
    return sum(1 for m in members if m.isfile())


class DependencyCacheManager:
    """Restores, installs and persists per-target dependency caches."""

    def __init__(
        self,
        backend: CacheBackend,
        work_dir: Path,
        package_manager_factory: Callable[[CacheWorkspace], PackageManager],
        sources: Sequence[Path] = (),
    ) -> None:
        self.backend = backend
        self.work_dir = work_dir
        self.package_manager_factory = package_manager_factory
        self.sources = tuple(sources)

    def key_for(self, profile: TargetProfileSchema) -> CacheKey:
        return cache_key_for(profile, self.sources)

    def workspace(self, target_id: str) -> CacheWorkspace:
        return CacheWorkspace(target_id=target_id, root=self.work_dir / target_id / "apt")

    def _restore_entry(self, key: CacheKey, workspace: CacheWorkspace) -> bool:
        restored = False
        for part in CachePart:
            data = self.backend.get(key.object_key(part))
            if data is None:
                continue
            count = unpack_directory(data, workspace.part_dir(part), key.target_id)
            logger.debug("[%s] Restored %d cached %s files", key.target_id, count, part.value)
            restored = True
        return restored

    def restore(self, key: CacheKey) -> RestoreOutcome:
        """Restore a target's cache into its workspace.

        Best-effort: a miss or a broken entry is logged and the install step
        simply fetches from the network.
        """
        workspace = self.workspace(key.target_id)
        try:
            if self._restore_entry(key, workspace):
                logger.info("[%s] Dependency cache hit (%s)", key.target_id, key)
                return RestoreOutcome.EXACT

            for fingerprint in self.backend.fingerprints(key.target_id):
                if fingerprint == key.fingerprint:
                    continue
                fallback = CacheKey(key.target_id, key.architecture, fingerprint)
                if self._restore_entry(fallback, workspace):
                    logger.info(
                        "[%s] Dependency cache restored from older entry %s",
                        key.target_id,
                        fallback,
                    )
                    return RestoreOutcome.FALLBACK
        except (CacheIsolationError, tarfile.TarError, OSError) as e:
            logger.warning("[%s] Dependency cache restore failed: %s", key.target_id, e)
            return RestoreOutcome.ERROR

        logger.info("[%s] No dependency cache, cold fetch", key.target_id)
        return RestoreOutcome.MISS

    def fetch_and_install(self, key: CacheKey, packages: Sequence[str]) -> None:
        """Install a target's dependencies.

        Raises:
            InstallError: If installation fails or times out.
        """
        workspace = self.workspace(key.target_id)
        workspace.archives_dir.mkdir(parents=True, exist_ok=True)
        workspace.lists_dir.mkdir(parents=True, exist_ok=True)
        manager = self.package_manager_factory(workspace)
        try:
            manager.install(list(packages))
        except InstallError:
            logger.error("[%s] Dependency installation failed", key.target_id)
            raise
        logger.info("[%s] Installed %d packages", key.target_id, len(packages))

    def persist(self, key: CacheKey) -> bool:
        """Persist a target's workspace to the cache backend.

        Best-effort: failures are logged and reported as False.
        """
        workspace = self.workspace(key.target_id)
        try:
            for part in CachePart:
                data = pack_directory(workspace.part_dir(part), key.target_id)
                self.backend.put(key.object_key(part), data)
        except (tarfile.TarError, OSError) as e:
            logger.warning("[%s] Failed to persist dependency cache: %s", key.target_id, e)
            return False
        logger.info("[%s] Persisted dependency cache (%s)", key.target_id, key)
        return True


__all__ = [
    "CacheIsolationError",
    "CacheWorkspace",
    "DependencyCacheManager",
    "pack_directory",
    "unpack_directory",
]
