"""Build execution module.

This module handles:
- Running external commands with logs, timeouts and cancellation
- The wrapped CMake build system
- The per-target configure/build state machine
"""

from crossmatrix.builds.executor import ExecutorResult, TargetBuildExecutor

__all__ = ["ExecutorResult", "TargetBuildExecutor"]
