"""Tests for the per-target configure/build state machine."""

from pathlib import Path

import pytest
from fakes import FakeBuildSystem

from crossmatrix.builds.executor import ExecutorResult, TargetBuildExecutor
from crossmatrix.profiles.schema import ProjectSchema, TargetProfileSchema
from crossmatrix.toolchain.resolver import ToolchainSpec
from crossmatrix.types import PipelineState, Severity, TargetStatus


def _toolchain(profile: TargetProfileSchema) -> ToolchainSpec:
    flags = tuple(profile.compile_flags) + ("-Wno-format",)
    return ToolchainSpec(
        profile_id=profile.id,
        architecture=profile.architecture,
        cc=f"/usr/bin/{profile.compiler.c}",
        cxx=f"/usr/bin/{profile.compiler.cxx}",
        c_flags=flags,
        cxx_flags=flags,
        link_flags=tuple(profile.link_flags),
        strip=profile.strip_tool,
        marker="ELF",
    )


def _run(project: ProjectSchema, profile: TargetProfileSchema, system: FakeBuildSystem):
    return TargetBuildExecutor(project, system).build(profile, _toolchain(profile))


class TestConfigureRequest:
    """Tests for TargetBuildExecutor.configure_request."""

    def test_request(self, tmp_path: Path, project: ProjectSchema, pi_zero: TargetProfileSchema):
        """The request merges project and target options."""
        executor = TargetBuildExecutor(project, FakeBuildSystem(tmp_path))
        request = executor.configure_request(pi_zero, _toolchain(pi_zero))
        assert request.c_compiler == "/usr/bin/arm-linux-gnueabi-gcc"
        assert request.system_processor == "armv6"
        assert request.c_flags[-1] == "-Wno-format"
        assert request.options == {"WITH_SSL": "OFF", "CMAKE_SKIP_RPATH": "ON"}


class TestBuild:
    """Tests for TargetBuildExecutor.build."""

    def test_full_success(self, tmp_path: Path, project: ProjectSchema, arm64: TargetProfileSchema):
        """Configure, build and secondary build all succeed."""
        system = FakeBuildSystem(tmp_path / "build", primary="camstream", secondary="camcompress")
        result = _run(project, arm64, system)

        assert result.succeeded
        assert result.history == [
            PipelineState.INIT,
            PipelineState.CONFIGURE_PENDING,
            PipelineState.CONFIGURING,
            PipelineState.CONFIGURED,
            PipelineState.BUILD_PENDING,
            PipelineState.BUILDING,
            PipelineState.BUILT,
            PipelineState.SECONDARY_BUILD_ATTEMPTED,
            PipelineState.DONE,
        ]
        assert result.primary_binary == tmp_path / "build" / "camstream"
        assert result.secondary_binary == tmp_path / "build" / "camcompress"
        assert system.builds == [(4, None), (4, "camcompress")]
        assert result.diagnostics == []

    def test_parallelism_from_profile(
        self, tmp_path: Path, project: ProjectSchema, pi_zero: TargetProfileSchema
    ):
        """The constrained target builds with its own job count."""
        system = FakeBuildSystem(tmp_path / "build", primary="camstream")
        _run(project, pi_zero, system)
        assert system.builds[0] == (2, None)

    def test_configure_failure(
        self, tmp_path: Path, project: ProjectSchema, arm64: TargetProfileSchema
    ):
        """A configure failure is terminal and skips the build."""
        system = FakeBuildSystem(tmp_path / "build", configure_code=1)
        result = _run(project, arm64, system)
        assert result.state is PipelineState.CONFIGURE_FAILED
        assert result.failure_status is TargetStatus.CONFIGURE_FAILED
        assert "cmake failed with exit code 1" in result.error_message
        assert system.builds == []

    def test_build_failure(self, tmp_path: Path, project: ProjectSchema, arm64: TargetProfileSchema):
        """A build failure is terminal and skips the secondary build."""
        system = FakeBuildSystem(tmp_path / "build", build_code=2, secondary="camcompress")
        result = _run(project, arm64, system)
        assert result.failure_status is TargetStatus.BUILD_FAILED
        assert result.primary_binary is None
        assert system.builds == [(4, None)]

    def test_secondary_failure_is_soft(
        self, tmp_path: Path, project: ProjectSchema, arm64: TargetProfileSchema
    ):
        """A failed secondary build is a warning, never a failure."""
        system = FakeBuildSystem(tmp_path / "build", secondary="camcompress", secondary_code=1)
        result = _run(project, arm64, system)
        assert result.succeeded
        assert result.failure_status is None
        assert result.secondary_binary is None
        assert result.diagnostics[0].step == "secondary_build"
        assert result.diagnostics[0].severity is Severity.WARNING

    def test_secondary_target_absent(
        self, tmp_path: Path, project: ProjectSchema, arm64: TargetProfileSchema
    ):
        """A project without the secondary target only records a note."""
        system = FakeBuildSystem(tmp_path / "build", secondary=None)
        result = _run(project, arm64, system)
        assert result.succeeded
        assert system.builds == [(4, None)]
        assert result.diagnostics[0].severity is Severity.INFO
        assert "not found" in result.diagnostics[0].message

    def test_no_secondary_declared(
        self, tmp_path: Path, project: ProjectSchema, arm64: TargetProfileSchema
    ):
        """Without a secondary target the state machine skips that state."""
        plain = project.model_copy(update={"secondary_target": None})
        result = _run(plain, arm64, FakeBuildSystem(tmp_path / "build"))
        assert PipelineState.SECONDARY_BUILD_ATTEMPTED not in result.history
        assert result.state is PipelineState.DONE


class TestExecutorResult:
    """Tests for ExecutorResult transitions."""

    def test_illegal_transition(self):
        """Skipping states is rejected."""
        result = ExecutorResult(target_id="arm64")
        with pytest.raises(RuntimeError, match="illegal transition init -> building"):
            result.advance(PipelineState.BUILDING)

    def test_terminal_states_are_final(self):
        """Nothing follows a terminal failure."""
        result = ExecutorResult(target_id="arm64")
        for state in (
            PipelineState.CONFIGURE_PENDING,
            PipelineState.CONFIGURING,
            PipelineState.CONFIGURE_FAILED,
        ):
            result.advance(state)
        with pytest.raises(RuntimeError):
            result.advance(PipelineState.CONFIGURED)
