"""Binary verification of packaged bundles.

Checks run before publication:
- every bundled binary's ELF marker matches the target architecture
- the target strip tool is invocable
- the primary binary size is recorded

A failed check downgrades confidence; the bundle is still published.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from crossmatrix.builds.runner import CommandResult, run_command
from crossmatrix.packaging.bundle import PackageBundle
from crossmatrix.toolchain.elf import ElfFormatError, read_marker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationCheck:
    """One verification check."""

    name: str
    passed: bool
    detail: str


@dataclass
class VerificationReport:
    """Result of verifying one bundle."""

    target_id: str
    binary_size_bytes: int = 0
    architecture: str | None = None
    checks: list[VerificationCheck] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return all(check.passed for check in self.checks)

    def failures(self) -> list[VerificationCheck]:
        return [check for check in self.checks if not check.passed]


def format_size(size_bytes: int) -> str:
    """Format a byte count the way `ls -lh` does (e.g. 2.4M)."""
    size = float(size_bytes)
    for unit in ("", "K", "M", "G"):
        if size < 1024 or unit == "G":
            if unit == "":
                return f"{int(size)}"
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}G"


class Verifier:
    """Runs sanity checks on packaged binaries."""

    def __init__(
        self,
        log_dir: Path,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        runner: Callable[..., CommandResult] = run_command,
    ) -> None:
        self.log_dir = log_dir
        self.timeout = timeout
        self.cancel_event = cancel_event
        self._run = runner

    def verify(self, bundle: PackageBundle) -> VerificationReport:
        """Verify a bundle's binaries and toolchain.

        Args:
            bundle: Packaged bundle.

        Returns:
            VerificationReport; inspect ``verified`` for the outcome.
        """
        profile = bundle.profile
        report = VerificationReport(target_id=profile.id)

        report.binary_size_bytes = bundle.primary_binary.stat().st_size
        report.checks.append(
            VerificationCheck(
                "binary_size",
                report.binary_size_bytes > 0,
                f"{bundle.primary_binary.name}: {format_size(report.binary_size_bytes)}",
            )
        )

        for binary in bundle.binary_paths:
            primary = binary == bundle.primary_binary
            name = "architecture" if primary else f"architecture:{binary.name}"
            try:
                marker = read_marker(binary)
            except (ElfFormatError, OSError) as e:
                report.checks.append(VerificationCheck(name, False, f"{binary.name}: {e}"))
                continue
            if primary:
                report.architecture = marker.describe()
            report.checks.append(
                VerificationCheck(
                    name,
                    marker.matches(profile.architecture, profile.float_abi),
                    f"{binary.name}: {marker.describe()} (expected {profile.architecture})",
                )
            )

        strip = profile.strip_tool
        result = self._run(
            [strip, "--version"],
            log_path=self.log_dir / "strip-version.log",
            timeout=self.timeout,
            cancel_event=self.cancel_event,
        )
        report.checks.append(
            VerificationCheck(
                "strip_tool",
                result.success,
                f"{strip} invocable" if result.success else (result.error_message or "failed"),
            )
        )

        if report.verified:
            logger.info(
                "[%s] Verified %s (%s)",
                profile.id,
                report.architecture,
                format_size(report.binary_size_bytes),
            )
        else:
            for check in report.failures():
                logger.warning(
                    "[%s] Verification check %s failed: %s",
                    profile.id,
                    check.name,
                    check.detail,
                )
        return report


__all__ = ["VerificationCheck", "VerificationReport", "Verifier", "format_size"]
