"""Pydantic models for matrix and target profile validation.

This module defines the Pydantic models for validating matrix files
(YAML/JSON) and the built-in matrix. Target profiles are frozen: they are
created once at startup and never mutated.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from crossmatrix.types import RuntimeClass

TARGET_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")
BINARY_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.+\-]+$")

SUPPORTED_ARCHITECTURES = ("armv6", "armv7", "aarch64", "x86_64")

FLOAT_ABI_FLAG = re.compile(r"^-mfloat-abi=(soft|softfp|hard)$")

OptionValue = str | bool | int


def _option_to_str(value: OptionValue) -> str:
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    return str(value)


class CompilerPairSchema(BaseModel):
    """C and C++ compiler executables for a target."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    c: Annotated[str, Field(min_length=1, description="C compiler")]
    cxx: Annotated[str, Field(min_length=1, description="C++ compiler")]

    @property
    def prefix(self) -> str:
        """Cross prefix of the C compiler (e.g. 'arm-linux-gnueabi-')."""
        name = self.c.rsplit("/", 1)[-1]
        for suffix in ("gcc", "clang", "cc"):
            if name.endswith(suffix):
                return name[: -len(suffix)]
        return ""


class TargetProfileSchema(BaseModel):
    """Immutable descriptor of one hardware/toolchain target.

    Attributes:
        id: Unique target key (e.g. 'pi-zero').
        display_name: Short human-readable name.
        description: Longer description of the hardware class.
        architecture: Target architecture identifier.
        compiler: Compiler pair.
        compile_flags: Ordered C/C++ compile flags.
        link_flags: Ordered linker flags.
        parallelism: Build job count.
        packages: OS packages required to build for this target.
        build_options: Extra options for the wrapped build system.
        runtime_class: Resource envelope used for README recommendations.
        strip: Explicit strip tool (derived from the compiler if unset).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: Annotated[str, Field(min_length=1, max_length=64)]
    display_name: Annotated[str, Field(min_length=1, max_length=255)]
    description: str = ""
    architecture: str
    compiler: CompilerPairSchema
    compile_flags: tuple[str, ...] = ()
    link_flags: tuple[str, ...] = ()
    parallelism: Annotated[int, Field(ge=1, le=256)] = 1
    packages: tuple[str, ...] = ()
    build_options: dict[str, OptionValue] = Field(default_factory=dict)
    runtime_class: RuntimeClass = RuntimeClass.STANDARD
    strip: str | None = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate the target id matches the safe pattern."""
        if not TARGET_ID_PATTERN.match(v):
            raise ValueError(
                f"id must match pattern {TARGET_ID_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("architecture")
    @classmethod
    def validate_architecture(cls, v: str) -> str:
        """Validate the architecture is supported."""
        if v not in SUPPORTED_ARCHITECTURES:
            raise ValueError(
                f"architecture must be one of {SUPPORTED_ARCHITECTURES}, got '{v}'"
            )
        return v

    @model_validator(mode="after")
    def validate_float_abi(self) -> "TargetProfileSchema":
        """Reject float ABI flags on targets that have no such ABI."""
        if self.float_abi is not None and self.architecture not in ("armv6", "armv7"):
            raise ValueError(
                f"-mfloat-abi is only valid for 32-bit ARM, not {self.architecture}"
            )
        return self

    @property
    def float_abi(self) -> str | None:
        """Float ABI declared by the compile flags ('soft', 'softfp', 'hard')."""
        abi: str | None = None
        for flag in self.compile_flags:
            match = FLOAT_ABI_FLAG.match(flag)
            if match:
                abi = match.group(1)
        return abi

    @property
    def strip_tool(self) -> str:
        """Strip tool for this target."""
        if self.strip:
            return self.strip
        return f"{self.compiler.prefix}strip"

    def option_map(self, defaults: dict[str, OptionValue] | None = None) -> dict[str, str]:
        """Merge project default options with this target's options.

        Args:
            defaults: Project-level option defaults.

        Returns:
            Option map with values rendered as strings (booleans as ON/OFF).
        """
        merged: dict[str, OptionValue] = dict(defaults or {})
        merged.update(self.build_options)
        return {name: _option_to_str(value) for name, value in merged.items()}


class RuntimeRecommendationSchema(BaseModel):
    """Recommended runtime options for one runtime class."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    title: str
    arguments: str
    notes: tuple[str, ...] = ()


class ProjectSchema(BaseModel):
    """The wrapped project and its packaging layout.

    Attributes:
        name: Project name, used for archive and bundle names.
        source_dir: Source tree root (relative to the matrix file or cwd).
        primary_binary: Mandatory build output.
        secondary_target: Optional auxiliary build target (best-effort).
        resource_files: Auxiliary files copied into bundles if present.
        build_type: Build type passed to the build system.
        build_options: Default option map for every target.
        warning_flags: Flags appended to C/C++ flags for every target.
        usage: Quick-start command lines for the README.
        access: Lines for the README's "Access Streams" section.
        runtime_recommendations: Literal recommendation block per class.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: Annotated[str, Field(min_length=1, max_length=128)]
    source_dir: str = "."
    primary_binary: str
    secondary_target: str | None = None
    resource_files: tuple[str, ...] = ()
    build_type: str = "Release"
    build_options: dict[str, OptionValue] = Field(default_factory=dict)
    warning_flags: tuple[str, ...] = ()
    usage: tuple[str, ...] = ()
    access: tuple[str, ...] = ()
    runtime_recommendations: dict[RuntimeClass, RuntimeRecommendationSchema] = Field(
        default_factory=dict
    )

    @field_validator("name", "primary_binary", "secondary_target")
    @classmethod
    def validate_binary_name(cls, v: str | None) -> str | None:
        """Validate names used as file names."""
        if v is not None and not BINARY_NAME_PATTERN.match(v):
            raise ValueError(f"'{v}' is not a valid file name")
        return v

    @field_validator("resource_files")
    @classmethod
    def validate_resource_files(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject resource paths that escape the source tree."""
        for item in v:
            if item.startswith("/") or ".." in item.split("/"):
                raise ValueError(f"resource file must be relative: '{item}'")
        return v


class MatrixSchema(BaseModel):
    """A versioned matrix: one project and its target profiles."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    version: str = "1"
    project: ProjectSchema
    profiles: tuple[TargetProfileSchema, ...]

    @field_validator("profiles")
    @classmethod
    def validate_unique_ids(
        cls, v: tuple[TargetProfileSchema, ...]
    ) -> tuple[TargetProfileSchema, ...]:
        """Validate target ids are unique and at least one target exists."""
        if not v:
            raise ValueError("matrix must declare at least one target profile")
        seen: set[str] = set()
        for profile in v:
            if profile.id in seen:
                raise ValueError(f"duplicate target id '{profile.id}'")
            seen.add(profile.id)
        return v


__all__ = [
    "SUPPORTED_ARCHITECTURES",
    "TARGET_ID_PATTERN",
    "CompilerPairSchema",
    "MatrixSchema",
    "ProjectSchema",
    "RuntimeRecommendationSchema",
    "TargetProfileSchema",
]
