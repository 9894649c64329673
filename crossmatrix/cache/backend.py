"""Cache storage backends.

A backend stores opaque blobs addressed by CacheObjectKey. Retention is the
backend's own business; crossmatrix never evicts entries.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from crossmatrix.cache.keys import CACHE_KEY_SCHEMA_VERSION, CacheObjectKey

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Storage capability for dependency caches."""

    def get(self, key: CacheObjectKey) -> bytes | None:
        """Return the stored blob, or None if absent."""
        ...

    def put(self, key: CacheObjectKey, data: bytes) -> None:
        """Store a blob, replacing any previous one atomically."""
        ...

    def fingerprints(self, target_id: str) -> list[str]:
        """Return stored fingerprints for a target, newest first."""
        ...


class LocalCacheBackend:
    """Cache backend storing blobs in a local directory tree."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, key: CacheObjectKey) -> Path:
        return self.root / key.relative_path()

    def get(self, key: CacheObjectKey) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def put(self, key: CacheObjectKey, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp_", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Stored cache object %s (%d bytes)", path, len(data))

    def fingerprints(self, target_id: str) -> list[str]:
        target_dir = self.root / f"v{CACHE_KEY_SCHEMA_VERSION}" / target_id
        if not target_dir.is_dir():
            return []
        entries = [d for d in target_dir.iterdir() if d.is_dir()]
        entries.sort(key=lambda d: d.stat().st_mtime, reverse=True)
        return [d.name for d in entries]


__all__ = ["CacheBackend", "LocalCacheBackend"]
