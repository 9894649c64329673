"""Bundle content discovery and manifest generation.

This module handles:
- Classifying bundled files (binary, native package, resource, readme)
- Computing checksums
- Generating the bundle manifest
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from crossmatrix.types import ArtifactInfo

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"

NATIVE_PACKAGE_SUFFIXES = (".deb", ".rpm", ".ipk")

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def classify_artifact(filename: str, binaries: tuple[str, ...] = ()) -> str:
    """Classify a bundled file.

    Args:
        filename: The file name.
        binaries: Names of the project's binaries.

    Returns:
        Kind (binary, native_package, readme, resource).
    """
    lower = filename.lower()
    if filename in binaries:
        return "binary"
    if lower.endswith(NATIVE_PACKAGE_SUFFIXES):
        return "native_package"
    if lower.startswith("readme"):
        return "readme"
    return "resource"


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def discover_artifacts(
    bundle_dir: Path,
    binaries: tuple[str, ...] = (),
) -> list[ArtifactInfo]:
    """Describe every file in a bundle directory (except the manifest).

    Args:
        bundle_dir: Bundle directory.
        binaries: Names of the project's binaries.

    Returns:
        ArtifactInfo list sorted by relative path.
    """
    artifacts: list[ArtifactInfo] = []
    for path in sorted(bundle_dir.rglob("*")):
        if not path.is_file() or path.name == MANIFEST_NAME:
            continue
        artifacts.append(
            ArtifactInfo(
                filename=path.name,
                relative_path=path.relative_to(bundle_dir).as_posix(),
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
                kind=classify_artifact(path.name, binaries),
            )
        )
    logger.debug("Discovered %d files in %s", len(artifacts), bundle_dir)
    return artifacts


def generate_manifest(
    artifacts: list[ArtifactInfo],
    project: str,
    target_id: str,
    extra_metadata: dict[str, Any] | None = None,
    generated_at: datetime | None = None,
) -> dict[str, Any]:
    """Generate a bundle manifest.

    Args:
        artifacts: Bundled files.
        project: Project name.
        target_id: Target profile id.
        extra_metadata: Optional additional metadata.
        generated_at: Timestamp to record (defaults to now).

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    when = generated_at or datetime.now(timezone.utc)
    manifest: dict[str, Any] = {
        "version": "1.0",
        "project": project,
        "target_id": target_id,
        "generated_at": when.isoformat(),
        "artifacts": [asdict(a) for a in artifacts],
        "summary": {
            "total_artifacts": len(artifacts),
            "total_size_bytes": sum(a.size_bytes for a in artifacts),
            "kinds": sorted({a.kind for a in artifacts if a.kind}),
        },
    }
    if extra_metadata:
        manifest["metadata"] = extra_metadata
    return manifest


def write_manifest(manifest: dict[str, Any], output_path: Path) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)
        f.write("\n")
    logger.debug("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "MANIFEST_NAME",
    "classify_artifact",
    "compute_file_hash",
    "discover_artifacts",
    "generate_manifest",
    "write_manifest",
]
