"""Wrapped CMake build system.

This module handles:
- Composing cross-compilation `cmake` configure commands
- Building with bounded parallelism, optionally a single target
- Producing native packages with `cpack`

The project itself is opaque; only its documented option surface is used.
"""

from __future__ import annotations

import logging
import re
import shlex
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from crossmatrix.builds.runner import CommandResult, run_command

logger = logging.getLogger(__name__)

# Programs come from the host, headers and libraries from the target root
FIND_ROOT_PATH_MODES = {
    "CMAKE_FIND_ROOT_PATH_MODE_PROGRAM": "NEVER",
    "CMAKE_FIND_ROOT_PATH_MODE_INCLUDE": "ONLY",
    "CMAKE_FIND_ROOT_PATH_MODE_LIBRARY": "ONLY",
    "CMAKE_FIND_ROOT_PATH_MODE_PACKAGE": "ONLY",
}

NATIVE_PACKAGE_GLOBS = ("*.deb",)


@dataclass(frozen=True)
class ConfigureRequest:
    """Configuration request passed to the wrapped build system.

    Attributes:
        c_compiler: C compiler.
        cxx_compiler: C++ compiler.
        c_flags: C flags.
        cxx_flags: C++ flags.
        link_flags: Executable linker flags.
        system_processor: Target architecture marker.
        system_name: Target OS.
        build_type: Build type (e.g. Release).
        options: Project option map (values already rendered).
    """

    c_compiler: str
    cxx_compiler: str
    c_flags: tuple[str, ...] = ()
    cxx_flags: tuple[str, ...] = ()
    link_flags: tuple[str, ...] = ()
    system_processor: str = ""
    system_name: str = "Linux"
    build_type: str = "Release"
    options: dict[str, str] = field(default_factory=dict)


class BuildSystem(Protocol):
    """Operations the executor and packager need from a build system."""

    build_dir: Path

    def configure(self, request: ConfigureRequest) -> CommandResult: ...

    def build(self, parallelism: int, target: str | None = None) -> CommandResult: ...

    def has_target(self, name: str) -> bool: ...

    def package(self) -> list[Path]: ...


def compose_configure_command(
    request: ConfigureRequest,
    source_dir: Path,
    build_dir: Path,
) -> list[str]:
    """Compose the `cmake` configure command for a cross build.

    Args:
        request: Configuration request.
        source_dir: Project source directory.
        build_dir: Build directory.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = ["cmake", "-S", str(source_dir), "-B", str(build_dir)]
    definitions = {
        "CMAKE_BUILD_TYPE": request.build_type,
        "CMAKE_SYSTEM_NAME": request.system_name,
        "CMAKE_SYSTEM_PROCESSOR": request.system_processor,
        "CMAKE_C_COMPILER": request.c_compiler,
        "CMAKE_CXX_COMPILER": request.cxx_compiler,
        "CMAKE_C_FLAGS": " ".join(request.c_flags),
        "CMAKE_CXX_FLAGS": " ".join(request.cxx_flags),
        "CMAKE_EXE_LINKER_FLAGS": " ".join(request.link_flags),
        **FIND_ROOT_PATH_MODES,
    }
    for name, value in definitions.items():
        cmd.append(f"-D{name}={value}")
    for name, value in request.options.items():
        cmd.append(f"-D{name}={value}")
    return cmd


def compose_build_command(
    build_dir: Path, parallelism: int, target: str | None = None
) -> list[str]:
    """Compose the `cmake --build` command."""
    if parallelism < 1:
        raise ValueError(f"parallelism must be positive, got {parallelism}")
    cmd = ["cmake", "--build", str(build_dir), "--parallel", str(parallelism)]
    if target:
        cmd.extend(["--target", target])
    return cmd


class CMakeBuildSystem:
    """A CMake project built out of tree for one target."""

    def __init__(
        self,
        source_dir: Path,
        build_dir: Path,
        log_dir: Path,
        configure_timeout: float | None = None,
        build_timeout: float | None = None,
        package_timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        runner: Callable[..., CommandResult] = run_command,
    ) -> None:
        self.source_dir = source_dir
        self.build_dir = build_dir
        self.log_dir = log_dir
        self.configure_timeout = configure_timeout
        self.build_timeout = build_timeout
        self.package_timeout = package_timeout
        self.cancel_event = cancel_event
        self._run = runner

    def configure(self, request: ConfigureRequest) -> CommandResult:
        self.build_dir.mkdir(parents=True, exist_ok=True)
        cmd = compose_configure_command(request, self.source_dir, self.build_dir)
        logger.info("Configuring: %s", shlex.join(cmd))
        return self._run(
            cmd,
            log_path=self.log_dir / "configure.log",
            cwd=self.build_dir,
            timeout=self.configure_timeout,
            cancel_event=self.cancel_event,
        )

    def build(self, parallelism: int, target: str | None = None) -> CommandResult:
        cmd = compose_build_command(self.build_dir, parallelism, target)
        log_name = f"build-{target}.log" if target else "build.log"
        return self._run(
            cmd,
            log_path=self.log_dir / log_name,
            cwd=self.build_dir,
            timeout=self.build_timeout,
            cancel_event=self.cancel_event,
        )

    def has_target(self, name: str) -> bool:
        """Check whether the project's CMakeLists.txt mentions a target."""
        cmakelists = self.source_dir / "CMakeLists.txt"
        try:
            content = cmakelists.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return False
        return re.search(rf"\b{re.escape(name)}\b", content) is not None

    def package(self) -> list[Path]:
        """Run cpack; return produced native packages (empty if none)."""
        result = self._run(
            ["cpack"],
            log_path=self.log_dir / "cpack.log",
            cwd=self.build_dir,
            timeout=self.package_timeout,
            cancel_event=self.cancel_event,
        )
        if not result.success:
            logger.warning("cpack failed: %s", result.error_message)
            return []
        found: list[Path] = []
        for pattern in NATIVE_PACKAGE_GLOBS:
            found.extend(sorted(self.build_dir.glob(pattern)))
        return found


__all__ = [
    "BuildSystem",
    "CMakeBuildSystem",
    "ConfigureRequest",
    "compose_build_command",
    "compose_configure_command",
]
