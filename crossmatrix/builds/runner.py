"""Subprocess runner for external tools.

This module handles:
- Executing external commands (compilers, cmake, apt-get, strip)
- Capturing stdout/stderr to per-step log files
- Enforcing step timeouts (a timeout is a failed result)
- Honouring cancellation of the surrounding pipeline
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

# Interval between checks of the cancellation event while a process runs
POLL_INTERVAL = 0.2

# Grace period between SIGTERM and SIGKILL
TERMINATE_GRACE = 5.0


class PipelineCancelledError(Exception):
    """Raised when a running step is interrupted by cancellation."""

    def __init__(self, message: str = "Pipeline cancelled", code: str = "cancelled") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        command: The command that was executed (shell-quoted).
        exit_code: Process exit code (None if the process never started).
        log_path: Path to the log file holding stdout/stderr.
        started_at: Start time.
        finished_at: Finish time.
        timed_out: Whether the command was killed after its timeout.
        error_message: Error message if the command failed.
    """

    command: str
    exit_code: int | None
    log_path: Path
    started_at: datetime
    finished_at: datetime
    timed_out: bool = False
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def output_tail(self, lines: int = 20) -> str:
        """Return the last lines of captured output, without log headers."""
        if not self.log_path.exists():
            return ""
        with self.log_path.open(encoding="utf-8", errors="replace") as f:
            tail = deque(
                (line.rstrip() for line in f if line.strip() and not line.startswith("# ")),
                maxlen=lines,
            )
        return "\n".join(tail)


def _terminate(proc: subprocess.Popen[bytes]) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def run_command(
    cmd: list[str],
    log_path: Path,
    cwd: Path | None = None,
    timeout: float | None = None,
    env_override: dict[str, str] | None = None,
    cancel_event: threading.Event | None = None,
) -> CommandResult:
    """Execute a command with output captured to a log file.

    Args:
        cmd: Command and arguments.
        log_path: Log file to write (overwritten).
        cwd: Working directory.
        timeout: Timeout in seconds (None = no timeout).
        env_override: Optional environment variable overrides.
        cancel_event: Event that aborts the command when set.

    Returns:
        CommandResult; failures, timeouts and missing executables are
        reported through it rather than raised.

    Raises:
        PipelineCancelledError: If cancel_event was set.
    """
    if cancel_event is not None and cancel_event.is_set():
        raise PipelineCancelledError(f"Cancelled before running {cmd[0]}")

    log_path.parent.mkdir(parents=True, exist_ok=True)
    cmd_str = shlex.join(cmd)
    logger.debug("Executing: %s (cwd=%s)", cmd_str, cwd)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    started_at = datetime.now(timezone.utc)
    exit_code: int | None = None
    timed_out = False
    error_message: str | None = None

    with log_path.open("w") as log_file:
        log_file.write(f"# Command: {cmd_str}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.write(f"# CWD: {cwd or Path.cwd()}\n")
        log_file.write("# " + "=" * 70 + "\n\n")
        log_file.flush()

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                env=env,
            )
        except OSError as e:
            error_message = f"Failed to execute {cmd[0]}: {e}"
            log_file.write(f"{error_message}\n")
            logger.error(error_message)
        else:
            deadline = None if timeout is None else time.monotonic() + timeout
            while True:
                try:
                    exit_code = proc.wait(timeout=POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    pass
                if cancel_event is not None and cancel_event.is_set():
                    _terminate(proc)
                    log_file.write("\n# CANCELLED\n")
                    raise PipelineCancelledError(f"Cancelled while running {cmd[0]}")
                if deadline is not None and time.monotonic() >= deadline:
                    _terminate(proc)
                    timed_out = True
                    exit_code = -1
                    error_message = f"{cmd[0]} timed out after {timeout} seconds"
                    log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
                    logger.error("%s. See log: %s", error_message, log_path)
                    break

            if not timed_out and exit_code != 0:
                error_message = f"{cmd[0]} failed with exit code {exit_code}"
                logger.debug("%s. See log: %s", error_message, log_path)

        finished_at = datetime.now(timezone.utc)
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        log_file.write(f"# Duration: {duration:.1f}s\n")

    return CommandResult(
        command=cmd_str,
        exit_code=exit_code,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        timed_out=timed_out,
        error_message=error_message,
    )


__all__ = ["CommandResult", "PipelineCancelledError", "run_command"]
