"""Immutable registry of target profiles keyed by target id."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from types import MappingProxyType

from crossmatrix.profiles.builtin import DEFAULT_MATRIX
from crossmatrix.profiles.io import load_matrix
from crossmatrix.profiles.schema import MatrixSchema, ProjectSchema, TargetProfileSchema


class ProfileNotFoundError(KeyError):
    """Raised when a target id is not in the registry.

    Subclasses KeyError so Mapping.get treats unknown ids as missing.
    """

    def __init__(self, target_id: str, code: str = "profile_not_found") -> None:
        self.target_id = target_id
        self.code = code
        super().__init__(f"Target profile not found: {target_id}")

    def __str__(self) -> str:
        return str(self.args[0])


class ProfileRegistry(Mapping[str, TargetProfileSchema]):
    """Read-only view of a matrix's target profiles.

    Preserves declaration order. Built once at startup.
    """

    def __init__(self, matrix: MatrixSchema) -> None:
        self._matrix = matrix
        self._profiles = MappingProxyType({p.id: p for p in matrix.profiles})

    @classmethod
    def load(cls, matrix_file: Path | None = None) -> ProfileRegistry:
        """Load a registry from a matrix file, or the built-in matrix."""
        if matrix_file is None:
            return cls(DEFAULT_MATRIX)
        return cls(load_matrix(matrix_file))

    @property
    def project(self) -> ProjectSchema:
        return self._matrix.project

    @property
    def matrix(self) -> MatrixSchema:
        return self._matrix

    def __getitem__(self, target_id: str) -> TargetProfileSchema:
        try:
            return self._profiles[target_id]
        except KeyError:
            raise ProfileNotFoundError(target_id) from None

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._profiles

    def __iter__(self) -> Iterator[str]:
        return iter(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)

    def select(self, target_ids: Iterable[str] | None = None) -> list[TargetProfileSchema]:
        """Return profiles for the given ids, or all profiles in order.

        Raises:
            ProfileNotFoundError: If any id is unknown.
        """
        if not target_ids:
            return list(self._profiles.values())
        selected: list[TargetProfileSchema] = []
        for target_id in target_ids:
            profile = self[target_id]
            if profile not in selected:
                selected.append(profile)
        return selected


__all__ = ["ProfileNotFoundError", "ProfileRegistry"]
