"""Toolchain module.

This module handles:
- ELF architecture markers
- Compiler probing and toolchain resolution per target profile
"""

from crossmatrix.toolchain.resolver import (
    ToolchainResolver,
    ToolchainSpec,
    ToolchainUnresolvableError,
)

__all__ = ["ToolchainResolver", "ToolchainSpec", "ToolchainUnresolvableError"]
