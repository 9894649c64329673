"""ELF header inspection.

Reads the ELF header of a binary with pyelftools to tell which architecture
it was built for. Used by the toolchain resolver and by binary verification.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

EM_386 = "EM_386"
EM_ARM = "EM_ARM"
EM_X86_64 = "EM_X86_64"
EM_AARCH64 = "EM_AARCH64"

MACHINE_NAMES = {
    EM_386: "Intel 80386",
    EM_ARM: "ARM",
    EM_X86_64: "x86-64",
    EM_AARCH64: "ARM aarch64",
}

ET_NAMES = {
    "ET_REL": "relocatable",
    "ET_EXEC": "executable",
    "ET_DYN": "shared object",
    "ET_CORE": "core file",
}

EF_ARM_ABI_FLOAT_SOFT = 0x200
EF_ARM_ABI_FLOAT_HARD = 0x400

# Expected (machine, word size) for each supported architecture
ARCHITECTURE_MACHINES = {
    "armv6": (EM_ARM, 32),
    "armv7": (EM_ARM, 32),
    "aarch64": (EM_AARCH64, 64),
    "x86_64": (EM_X86_64, 64),
}


class ElfFormatError(Exception):
    """Raised when a file is not a readable ELF binary."""

    def __init__(self, message: str, code: str = "elf_format_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ArchitectureMarker:
    """Architecture identity read from an ELF header.

    ``machine`` and ``file_type`` are pyelftools enum names such as
    ``EM_ARM`` and ``ET_EXEC``; values pyelftools does not know stay ints.
    """

    machine: str | int
    bits: int
    endianness: str
    file_type: str | int
    flags: int

    @property
    def float_abi(self) -> str | None:
        """ARM float ABI ('soft' or 'hard'), None if not recorded."""
        if self.machine != EM_ARM:
            return None
        if self.flags & EF_ARM_ABI_FLOAT_HARD:
            return "hard"
        if self.flags & EF_ARM_ABI_FLOAT_SOFT:
            return "soft"
        return None

    @property
    def eabi_version(self) -> int | None:
        if self.machine != EM_ARM:
            return None
        return (self.flags >> 24) & 0xFF

    def describe(self) -> str:
        """Describe the binary the way file(1) does, e.g.
        'ELF 32-bit LSB executable, ARM, EABI5, soft-float'."""
        machine = MACHINE_NAMES.get(self.machine)
        if machine is None:
            machine = (
                self.machine if isinstance(self.machine, str) else f"machine {self.machine}"
            )
        parts = [
            f"ELF {self.bits}-bit {self.endianness} "
            f"{ET_NAMES.get(self.file_type, 'unknown type')}",
            machine,
        ]
        if self.eabi_version:
            parts.append(f"EABI{self.eabi_version}")
        if self.float_abi:
            parts.append(f"{self.float_abi}-float")
        return ", ".join(parts)

    def matches(self, architecture: str, float_abi: str | None = None) -> bool:
        """Check this marker against a declared architecture.

        Args:
            architecture: Declared architecture identifier.
            float_abi: Declared float ABI ('soft', 'softfp', 'hard') or None.

        Returns:
            True if machine and word size match, and the float ABI matches
            whenever both sides record one.
        """
        expected = ARCHITECTURE_MACHINES.get(architecture)
        if expected is None:
            return False
        if (self.machine, self.bits) != expected:
            return False
        if float_abi is None or self.float_abi is None:
            return True
        # softfp passes arguments in core registers, same as soft
        wanted = "hard" if float_abi == "hard" else "soft"
        return self.float_abi == wanted


def _marker_from_stream(stream: BinaryIO) -> ArchitectureMarker:
    try:
        elffile = ELFFile(stream)
    except ELFError as e:
        raise ElfFormatError(f"not an ELF file ({e})") from e

    header = elffile.header
    return ArchitectureMarker(
        machine=header.e_machine,
        bits=elffile.elfclass,
        endianness="LSB" if elffile.little_endian else "MSB",
        file_type=header.e_type,
        flags=header.e_flags,
    )


def parse_header(data: bytes) -> ArchitectureMarker:
    """Parse an ELF header from raw bytes.

    Raises:
        ElfFormatError: If the data is not an ELF header.
    """
    return _marker_from_stream(io.BytesIO(data))


def read_marker(path: Path) -> ArchitectureMarker:
    """Read the architecture marker of a binary on disk.

    Raises:
        ElfFormatError: If the file is not an ELF binary.
        OSError: If the file cannot be read.
    """
    with path.open("rb") as f:
        return _marker_from_stream(f)


__all__ = [
    "ARCHITECTURE_MACHINES",
    "ArchitectureMarker",
    "ElfFormatError",
    "parse_header",
    "read_marker",
]
