"""Cache key computation for dependency caches.

This module handles:
- Target-partitioned cache keys
- Deterministic source fingerprints over package sources and package lists

Every key carries the target id; there is no way to address the cache
without one, so one target's package archives can never be restored into
another target's workspace.
"""

from __future__ import annotations

import hashlib
import json
import platform
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from crossmatrix.profiles.schema import TARGET_ID_PATTERN, TargetProfileSchema

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"


class CachePart(str, Enum):
    """The separately stored pieces of a dependency cache entry."""

    ARCHIVES = "archives"
    LISTS = "lists"


@dataclass(frozen=True)
class CacheKey:
    """Key of one dependency cache entry.

    Attributes:
        target_id: Owning target; mandatory.
        architecture: Target architecture.
        fingerprint: Hash of package sources and the package list.
    """

    target_id: str
    architecture: str
    fingerprint: str

    def __post_init__(self) -> None:
        if not self.target_id or not TARGET_ID_PATTERN.match(self.target_id):
            raise ValueError(f"invalid cache target id: {self.target_id!r}")
        if not self.fingerprint or "/" in self.fingerprint:
            raise ValueError(f"invalid cache fingerprint: {self.fingerprint!r}")

    def object_key(self, part: CachePart) -> CacheObjectKey:
        return CacheObjectKey(key=self, part=part)

    def __str__(self) -> str:
        return f"{self.target_id}/{self.fingerprint[:16]}"


@dataclass(frozen=True)
class CacheObjectKey:
    """Address of one stored blob of a cache entry."""

    key: CacheKey
    part: CachePart

    @property
    def target_id(self) -> str:
        return self.key.target_id

    def relative_path(self) -> Path:
        """Storage path, namespaced under the target id."""
        return (
            Path(f"v{CACHE_KEY_SCHEMA_VERSION}")
            / self.key.target_id
            / self.key.fingerprint
            / f"{self.part.value}.tar.gz"
        )


def _hash_sources(digest: hashlib._Hash, sources: Iterable[Path]) -> None:
    for source in sorted(sources):
        if source.is_dir():
            files = sorted(p for p in source.iterdir() if p.is_file())
        elif source.is_file():
            files = [source]
        else:
            continue
        for path in files:
            digest.update(str(path).encode("utf-8"))
            digest.update(b"\0")
            digest.update(path.read_bytes())
            digest.update(b"\0")


def compute_fingerprint(
    profile: TargetProfileSchema,
    sources: Iterable[Path] = (),
    host_os: str | None = None,
) -> str:
    """Compute the source fingerprint for a target's dependency cache.

    Args:
        profile: Target profile.
        sources: Package manager source files or directories.
        host_os: Host OS name (defaults to platform.system()).

    Returns:
        SHA-256 hex digest.
    """
    inputs = {
        "schema_version": CACHE_KEY_SCHEMA_VERSION,
        "architecture": profile.architecture,
        "host_os": host_os or platform.system(),
        "packages": sorted(profile.packages),
    }
    digest = hashlib.sha256(
        json.dumps(inputs, sort_keys=True, separators=(",", ":")).encode("utf-8")
    )
    _hash_sources(digest, sources)
    return digest.hexdigest()


def cache_key_for(
    profile: TargetProfileSchema,
    sources: Iterable[Path] = (),
    host_os: str | None = None,
) -> CacheKey:
    """Build the cache key for a target profile."""
    return CacheKey(
        target_id=profile.id,
        architecture=profile.architecture,
        fingerprint=compute_fingerprint(profile, sources, host_os),
    )


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "CacheKey",
    "CacheObjectKey",
    "CachePart",
    "cache_key_for",
    "compute_fingerprint",
]
