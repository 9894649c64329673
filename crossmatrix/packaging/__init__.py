"""Artifact packaging module.

This module handles:
- Bundle assembly (primary/secondary binaries, resources, native packages)
- README and manifest generation
- Reproducible release archives
"""

from crossmatrix.packaging.bundle import (
    ArtifactPackager,
    PackageBundle,
    PackagingError,
    create_archive,
)

__all__ = ["ArtifactPackager", "PackageBundle", "PackagingError", "create_archive"]
