"""OS package manager capability.

The orchestrator only needs ``install(names)``. AptPackageManager points
apt's archive and list directories at a per-target workspace so that the
downloaded packages can be cached per target.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol

from crossmatrix.builds.runner import CommandResult, run_command

logger = logging.getLogger(__name__)


class InstallError(Exception):
    """Raised when dependency installation fails."""

    def __init__(self, message: str, code: str = "install_failed") -> None:
        super().__init__(message)
        self.code = code


class PackageManager(Protocol):
    """Install capability; installs must be idempotent."""

    def install(self, names: Sequence[str]) -> None:
        """Install packages.

        Raises:
            InstallError: If installation fails.
        """
        ...


class AptPackageManager:
    """apt-get based package manager with relocated cache directories."""

    def __init__(
        self,
        archives_dir: Path,
        lists_dir: Path,
        log_dir: Path,
        use_sudo: bool = False,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        runner: Callable[..., CommandResult] = run_command,
    ) -> None:
        self.archives_dir = archives_dir
        self.lists_dir = lists_dir
        self.log_dir = log_dir
        self.use_sudo = use_sudo
        self.timeout = timeout
        self.cancel_event = cancel_event
        self._run = runner

    def _apt_command(self, *args: str) -> list[str]:
        cmd = [
            "apt-get",
            "-o",
            f"Dir::Cache::Archives={self.archives_dir}",
            "-o",
            f"Dir::State::Lists={self.lists_dir}",
            *args,
        ]
        if self.use_sudo:
            cmd = ["sudo", "--preserve-env=DEBIAN_FRONTEND", *cmd]
        return cmd

    def _run_apt(self, name: str, cmd: list[str]) -> None:
        result = self._run(
            cmd,
            log_path=self.log_dir / f"apt-{name}.log",
            timeout=self.timeout,
            env_override={"DEBIAN_FRONTEND": "noninteractive"},
            cancel_event=self.cancel_event,
        )
        if not result.success:
            raise InstallError(
                f"apt-get {name} failed: {result.error_message or 'unknown error'}\n"
                f"{result.output_tail()}".rstrip()
            )

    def install(self, names: Sequence[str]) -> None:
        if not names:
            return
        (self.archives_dir / "partial").mkdir(parents=True, exist_ok=True)
        (self.lists_dir / "partial").mkdir(parents=True, exist_ok=True)

        logger.info("Installing %d packages: %s", len(names), " ".join(names))
        self._run_apt("update", self._apt_command("update"))
        self._run_apt(
            "install",
            self._apt_command("install", "-y", "--no-install-recommends", *names),
        )


__all__ = ["AptPackageManager", "InstallError", "PackageManager"]
