"""Target profile module.

This module handles:
- Target profile and project schemas
- The built-in matrix
- Matrix file import/export
- The immutable profile registry
"""

from crossmatrix.profiles.schema import (
    MatrixSchema,
    ProjectSchema,
    TargetProfileSchema,
)

__all__ = ["MatrixSchema", "ProjectSchema", "TargetProfileSchema"]
