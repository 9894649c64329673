"""Target build executor.

Drives the configure and build steps for one target through a fixed state
machine:

    INIT -> CONFIGURE_PENDING -> CONFIGURING -> CONFIGURED | CONFIGURE_FAILED
    CONFIGURED -> BUILD_PENDING -> BUILDING -> BUILT | BUILD_FAILED
    BUILT -> [SECONDARY_BUILD_ATTEMPTED] -> DONE

The secondary build never fails the target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from crossmatrix.builds.cmake import BuildSystem, ConfigureRequest
from crossmatrix.profiles.schema import ProjectSchema, TargetProfileSchema
from crossmatrix.types import Diagnostic, PipelineState, Severity, TargetStatus

if TYPE_CHECKING:
    from crossmatrix.toolchain.resolver import ToolchainSpec

logger = logging.getLogger(__name__)

TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.INIT: frozenset({PipelineState.CONFIGURE_PENDING}),
    PipelineState.CONFIGURE_PENDING: frozenset({PipelineState.CONFIGURING}),
    PipelineState.CONFIGURING: frozenset(
        {PipelineState.CONFIGURED, PipelineState.CONFIGURE_FAILED}
    ),
    PipelineState.CONFIGURED: frozenset({PipelineState.BUILD_PENDING}),
    PipelineState.BUILD_PENDING: frozenset({PipelineState.BUILDING}),
    PipelineState.BUILDING: frozenset({PipelineState.BUILT, PipelineState.BUILD_FAILED}),
    PipelineState.BUILT: frozenset(
        {PipelineState.SECONDARY_BUILD_ATTEMPTED, PipelineState.DONE}
    ),
    PipelineState.SECONDARY_BUILD_ATTEMPTED: frozenset({PipelineState.DONE}),
    PipelineState.CONFIGURE_FAILED: frozenset(),
    PipelineState.BUILD_FAILED: frozenset(),
    PipelineState.DONE: frozenset(),
}

TERMINAL_FAILURES = {
    PipelineState.CONFIGURE_FAILED: TargetStatus.CONFIGURE_FAILED,
    PipelineState.BUILD_FAILED: TargetStatus.BUILD_FAILED,
}


@dataclass
class ExecutorResult:
    """Outcome of the configure/build state machine for one target.

    Attributes:
        target_id: Target profile id.
        state: Final state.
        history: Every state visited, in order.
        primary_binary: Expected path of the primary binary.
        secondary_binary: Secondary binary, only if it exists.
        build_seconds: Duration of the primary build step.
        diagnostics: Non-fatal findings (secondary build).
        error_message: Terminal failure description.
    """

    target_id: str
    state: PipelineState = PipelineState.INIT
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.INIT])
    primary_binary: Path | None = None
    secondary_binary: Path | None = None
    build_seconds: float = 0.0
    diagnostics: list[Diagnostic] = field(default_factory=list)
    error_message: str | None = None

    def advance(self, new_state: PipelineState) -> None:
        """Move to a new state.

        Raises:
            RuntimeError: If the transition is not allowed.
        """
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(
                f"[{self.target_id}] illegal transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def failure_status(self) -> TargetStatus | None:
        """Target status for a terminal failure, None otherwise."""
        return TERMINAL_FAILURES.get(self.state)


class TargetBuildExecutor:
    """Configures and builds one target with its resolved toolchain."""

    def __init__(self, project: ProjectSchema, build_system: BuildSystem) -> None:
        self.project = project
        self.build_system = build_system

    def configure_request(
        self, profile: TargetProfileSchema, toolchain: ToolchainSpec
    ) -> ConfigureRequest:
        """Build the configuration request for a target."""
        return ConfigureRequest(
            c_compiler=toolchain.cc,
            cxx_compiler=toolchain.cxx,
            c_flags=toolchain.c_flags,
            cxx_flags=toolchain.cxx_flags,
            link_flags=toolchain.link_flags,
            system_processor=profile.architecture,
            build_type=self.project.build_type,
            options=profile.option_map(self.project.build_options),
        )

    def build(self, profile: TargetProfileSchema, toolchain: ToolchainSpec) -> ExecutorResult:
        """Run configure, build and the optional secondary build.

        Args:
            profile: Target profile.
            toolchain: Resolved toolchain for the profile.

        Returns:
            ExecutorResult; configure/build failures end in a terminal state
            instead of raising.
        """
        result = ExecutorResult(target_id=profile.id)

        result.advance(PipelineState.CONFIGURE_PENDING)
        request = self.configure_request(profile, toolchain)
        result.advance(PipelineState.CONFIGURING)
        configured = self.build_system.configure(request)
        if not configured.success:
            result.advance(PipelineState.CONFIGURE_FAILED)
            result.error_message = (
                f"{configured.error_message or 'configure failed'}\n"
                f"{configured.output_tail()}".rstrip()
            )
            logger.error("[%s] Configure failed. See log: %s", profile.id, configured.log_path)
            return result
        result.advance(PipelineState.CONFIGURED)

        result.advance(PipelineState.BUILD_PENDING)
        result.advance(PipelineState.BUILDING)
        logger.info(
            "[%s] Building %s with %d parallel jobs",
            profile.id,
            self.project.name,
            profile.parallelism,
        )
        built = self.build_system.build(profile.parallelism)
        result.build_seconds = built.duration
        if not built.success:
            result.advance(PipelineState.BUILD_FAILED)
            result.error_message = (
                f"{built.error_message or 'build failed'}\n{built.output_tail()}".rstrip()
            )
            logger.error("[%s] Build failed. See log: %s", profile.id, built.log_path)
            return result
        result.advance(PipelineState.BUILT)
        minutes, seconds = divmod(int(built.duration), 60)
        logger.info(
            "[%s] Build completed in %.0f seconds (%dm %ds)",
            profile.id,
            built.duration,
            minutes,
            seconds,
        )
        result.primary_binary = self.build_system.build_dir / self.project.primary_binary

        if self.project.secondary_target:
            self._build_secondary(profile, result, self.project.secondary_target)
            result.advance(PipelineState.SECONDARY_BUILD_ATTEMPTED)

        result.advance(PipelineState.DONE)
        return result

    def _build_secondary(
        self, profile: TargetProfileSchema, result: ExecutorResult, target: str
    ) -> None:
        if not self.build_system.has_target(target):
            result.diagnostics.append(
                Diagnostic("secondary_build", f"{target} target not found", Severity.INFO)
            )
            logger.info("[%s] %s target not found in project", profile.id, target)
            return

        built = self.build_system.build(profile.parallelism, target=target)
        if not built.success:
            result.diagnostics.append(
                Diagnostic(
                    "secondary_build",
                    f"{target} build failed: {built.error_message}",
                    Severity.WARNING,
                )
            )
            logger.warning("[%s] %s build failed, but continuing", profile.id, target)
            return

        candidate = self.build_system.build_dir / target
        if candidate.is_file():
            result.secondary_binary = candidate
            logger.info("[%s] %s built successfully", profile.id, target)
        else:
            result.diagnostics.append(
                Diagnostic("secondary_build", f"{target} not available in this build", Severity.INFO)
            )


__all__ = ["TRANSITIONS", "ExecutorResult", "TargetBuildExecutor"]
