"""Shared fixtures: a small project, target profiles and a pipeline factory."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import (
    FakeBuildSystem,
    FakePackageManager,
    FakeRunner,
    RecordingPublisher,
    elf_for,
    probe_writer,
)

from crossmatrix.cache.backend import LocalCacheBackend
from crossmatrix.cache.manager import CacheWorkspace, DependencyCacheManager
from crossmatrix.matrix.pipeline import TargetPipeline
from crossmatrix.packaging.bundle import ArtifactPackager
from crossmatrix.profiles.schema import (
    CompilerPairSchema,
    ProjectSchema,
    RuntimeRecommendationSchema,
    TargetProfileSchema,
)
from crossmatrix.toolchain.resolver import ToolchainResolver
from crossmatrix.types import RuntimeClass
from crossmatrix.verify import Verifier


@pytest.fixture
def project() -> ProjectSchema:
    """A project with a primary binary, a secondary target and resources."""
    return ProjectSchema(
        name="camstream",
        primary_binary="camstream",
        secondary_target="camcompress",
        resource_files=("index.html", "hls.js"),
        build_options={"WITH_SSL": False},
        warning_flags=("-Wno-format",),
        usage=("./camstream /dev/video0",),
        runtime_recommendations={
            RuntimeClass.CONSTRAINED: RuntimeRecommendationSchema(
                title="Low resolution",
                arguments="-W 320 -H 240 -F 10 /dev/video0",
                notes=("Use low resolution: -W 320 -H 240",),
            ),
            RuntimeClass.CAPABLE: RuntimeRecommendationSchema(
                title="High resolution",
                arguments="-W 1280 -H 720 -F 30 /dev/video0",
                notes=("Full H264 support: -f H264",),
            ),
        },
    )


@pytest.fixture
def pi_zero() -> TargetProfileSchema:
    """ARMv6 soft-float target with reduced parallelism."""
    return TargetProfileSchema(
        id="pi-zero",
        display_name="Pi Zero",
        description="Raspberry Pi Zero/Zero W",
        architecture="armv6",
        compiler=CompilerPairSchema(c="arm-linux-gnueabi-gcc", cxx="arm-linux-gnueabi-g++"),
        compile_flags=("-march=armv6", "-mfpu=vfp", "-mfloat-abi=soft", "-O2", "-static"),
        link_flags=("-static",),
        parallelism=2,
        packages=("gcc-arm-linux-gnueabi", "g++-arm-linux-gnueabi"),
        build_options={"CMAKE_SKIP_RPATH": True},
        runtime_class=RuntimeClass.CONSTRAINED,
    )


@pytest.fixture
def arm64() -> TargetProfileSchema:
    """AArch64 target without a float ABI flag."""
    return TargetProfileSchema(
        id="arm64",
        display_name="ARM64",
        description="ARM64/AArch64 64-bit",
        architecture="aarch64",
        compiler=CompilerPairSchema(c="aarch64-linux-gnu-gcc", cxx="aarch64-linux-gnu-g++"),
        compile_flags=("-march=armv8-a", "-O2", "-static"),
        link_flags=("-static",),
        parallelism=4,
        packages=("gcc-aarch64-linux-gnu",),
        runtime_class=RuntimeClass.CAPABLE,
    )


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """Source tree holding one of the two declared resource files."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "CMakeLists.txt").write_text("add_executable(camstream main.cpp)\n")
    (src / "index.html").write_text("<html></html>\n")
    return src


class PipelineParts:
    """Collaborators of a test pipeline, exposed for assertions."""

    def __init__(self, tmp_path: Path, project: ProjectSchema, source_dir: Path) -> None:
        self.work_dir = tmp_path / "work"
        self.dist_dir = tmp_path / "dist"
        self.cache_root = tmp_path / "cache"
        self.available: set[str] = set()
        self.build_overrides: dict[str, dict[str, object]] = {}
        self.install_fail: set[str] = set()
        self.strip_exit_code = 0
        self.build_systems: dict[str, FakeBuildSystem] = {}
        self.package_managers: dict[str, FakePackageManager] = {}
        self.publisher = RecordingPublisher()
        self.project = project
        self.source_dir = source_dir
        self.probe_headers: dict[str, bytes] = {}

    def which(self, name: str) -> str | None:
        return f"/usr/bin/{name}" if name in self.available else None

    def probe(self, cmd: list[str]) -> None:
        compiler = Path(cmd[0]).name
        probe_writer(self.probe_headers[compiler])(cmd)

    def build_system(self, profile: TargetProfileSchema) -> FakeBuildSystem:
        options: dict[str, object] = {
            "primary": self.project.primary_binary,
            "primary_bytes": elf_for(profile),
            "secondary": self.project.secondary_target,
        }
        options.update(self.build_overrides.get(profile.id, {}))
        system = FakeBuildSystem(self.work_dir / profile.id / "build", **options)  # type: ignore[arg-type]
        self.build_systems[profile.id] = system
        return system

    def package_manager(self, workspace: CacheWorkspace) -> FakePackageManager:
        manager = FakePackageManager(workspace, fail=workspace.target_id in self.install_fail)
        self.package_managers[workspace.target_id] = manager
        return manager

    def verifier(self, profile: TargetProfileSchema) -> Verifier:
        return Verifier(
            self.work_dir / profile.id / "logs",
            runner=FakeRunner(exit_code=self.strip_exit_code),
        )

    def make_toolchain(self, profile: TargetProfileSchema) -> None:
        """Install a working cross compiler for a profile."""
        self.available.update({profile.compiler.c, profile.compiler.cxx})
        self.probe_headers[profile.compiler.c] = elf_for(profile)

    def pipeline(self, **kwargs: object) -> TargetPipeline:
        options: dict[str, object] = {
            "project": self.project,
            "resolver": ToolchainResolver(
                self.work_dir,
                warning_flags=self.project.warning_flags,
                runner=FakeRunner(on_run=self.probe),
                which=self.which,
            ),
            "cache_manager": DependencyCacheManager(
                LocalCacheBackend(self.cache_root),
                self.work_dir,
                self.package_manager,
            ),
            "build_system_factory": self.build_system,
            "packager": ArtifactPackager(
                self.project, self.source_dir, self.work_dir, source_date_epoch=0
            ),
            "verifier_factory": self.verifier,
            "publisher": self.publisher,
            "dist_dir": self.dist_dir,
            "lock_dir": self.work_dir / ".locks",
            "lock_timeout": 5,
            "source_date_epoch": 0,
        }
        options.update(kwargs)
        return TargetPipeline(**options)  # type: ignore[arg-type]


@pytest.fixture
def parts(tmp_path: Path, project: ProjectSchema, source_dir: Path) -> PipelineParts:
    """Pipeline collaborators backed by fakes, rooted in tmp_path."""
    return PipelineParts(tmp_path, project, source_dir)
