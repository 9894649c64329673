"""Toolchain resolution for target profiles.

This module handles:
- Locating a profile's compiler pair on PATH
- Probing the compiler by building a trivial program with the target flags
- Checking the probe binary's architecture against the profile
"""

from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from crossmatrix.builds.runner import CommandResult, run_command
from crossmatrix.profiles.schema import TargetProfileSchema
from crossmatrix.toolchain.elf import ElfFormatError, read_marker

logger = logging.getLogger(__name__)

PROBE_SOURCE = "int main(){return 0;}\n"


class ToolchainUnresolvableError(Exception):
    """Raised when a profile's toolchain cannot be used.

    Attributes:
        profile_id: Target profile id.
        command: The command that was attempted.
        stderr: Captured diagnostic output.
    """

    def __init__(
        self,
        profile_id: str,
        command: str,
        stderr: str,
        code: str = "toolchain_unresolvable",
    ) -> None:
        super().__init__(f"Toolchain for '{profile_id}' is unusable: {command}: {stderr}")
        self.profile_id = profile_id
        self.command = command
        self.stderr = stderr
        self.code = code


@dataclass(frozen=True)
class ToolchainSpec:
    """A probed, usable toolchain for one target.

    Attributes:
        profile_id: Target profile id.
        architecture: Declared target architecture.
        cc: Absolute path of the C compiler.
        cxx: Absolute path of the C++ compiler.
        c_flags: Final C flags (profile flags plus project warning flags).
        cxx_flags: Final C++ flags.
        link_flags: Linker flags.
        strip: Strip tool for the target.
        marker: Architecture description of the probe binary.
    """

    profile_id: str
    architecture: str
    cc: str
    cxx: str
    c_flags: tuple[str, ...]
    cxx_flags: tuple[str, ...]
    link_flags: tuple[str, ...]
    strip: str
    marker: str


Runner = Callable[..., CommandResult]


class ToolchainResolver:
    """Resolves target profiles to probed toolchains."""

    def __init__(
        self,
        work_dir: Path,
        warning_flags: tuple[str, ...] = (),
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        runner: Runner = run_command,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.work_dir = work_dir
        self.warning_flags = tuple(warning_flags)
        self.timeout = timeout
        self.cancel_event = cancel_event
        self._run = runner
        self._which = which

    def _locate(self, profile: TargetProfileSchema, compiler: str) -> str:
        path = self._which(compiler)
        if path is None:
            raise ToolchainUnresolvableError(
                profile.id, compiler, f"{compiler} not found on PATH"
            )
        return path

    def resolve(self, profile: TargetProfileSchema) -> ToolchainSpec:
        """Resolve and probe the toolchain for a profile.

        Args:
            profile: Target profile.

        Returns:
            ToolchainSpec for the profile.

        Raises:
            ToolchainUnresolvableError: If a compiler is missing, the probe
                fails or times out, or the probe binary has the wrong
                architecture.
        """
        cc = self._locate(profile, profile.compiler.c)
        cxx = self._locate(profile, profile.compiler.cxx)

        c_flags = tuple(profile.compile_flags) + self.warning_flags
        probe_dir = self.work_dir / profile.id / "probe"
        probe_dir.mkdir(parents=True, exist_ok=True)
        source = probe_dir / "test_compile.c"
        output = probe_dir / "test_compile"
        source.write_text(PROBE_SOURCE, encoding="utf-8")
        output.unlink(missing_ok=True)

        cmd = [cc, *c_flags, str(source), "-o", str(output), *profile.link_flags]
        logger.info("[%s] Probing compiler %s", profile.id, profile.compiler.c)
        result = self._run(
            cmd,
            log_path=probe_dir / "probe.log",
            cwd=probe_dir,
            timeout=self.timeout,
            cancel_event=self.cancel_event,
        )
        if not result.success:
            raise ToolchainUnresolvableError(
                profile.id,
                result.command,
                result.output_tail() or result.error_message or "probe failed",
            )

        try:
            marker = read_marker(output)
        except (ElfFormatError, OSError) as e:
            raise ToolchainUnresolvableError(
                profile.id, result.command, f"probe produced no usable binary: {e}"
            ) from e

        if not marker.matches(profile.architecture, profile.float_abi):
            raise ToolchainUnresolvableError(
                profile.id,
                result.command,
                f"probe binary is '{marker.describe()}', expected {profile.architecture}"
                + (f" ({profile.float_abi}-float)" if profile.float_abi else ""),
            )

        logger.info("[%s] Compiler probe succeeded: %s", profile.id, marker.describe())
        shutil.rmtree(probe_dir, ignore_errors=True)

        return ToolchainSpec(
            profile_id=profile.id,
            architecture=profile.architecture,
            cc=cc,
            cxx=cxx,
            c_flags=c_flags,
            cxx_flags=c_flags,
            link_flags=tuple(profile.link_flags),
            strip=profile.strip_tool,
            marker=marker.describe(),
        )


__all__ = ["ToolchainResolver", "ToolchainSpec", "ToolchainUnresolvableError"]
