"""Tests for binary verification."""

import dataclasses
from pathlib import Path

import pytest
from fakes import FakeRunner, elf_for, make_elf

from crossmatrix.builds.runner import PipelineCancelledError
from crossmatrix.packaging.bundle import PackageBundle
from crossmatrix.profiles.schema import TargetProfileSchema
from crossmatrix.toolchain.elf import EM_X86_64
from crossmatrix.verify import Verifier, format_size


def _bundle(tmp_path: Path, profile: TargetProfileSchema, content: bytes) -> PackageBundle:
    directory = tmp_path / f"camstream-{profile.id}"
    directory.mkdir()
    binary = directory / "camstream"
    binary.write_bytes(content)
    return PackageBundle(
        project="camstream", profile=profile, directory=directory, primary_binary=binary
    )


def _with_secondary(bundle: PackageBundle, content: bytes) -> PackageBundle:
    secondary = bundle.directory / "camcompress"
    secondary.write_bytes(content)
    return dataclasses.replace(bundle, secondary_binary=secondary)


class TestFormatSize:
    """Tests for format_size."""

    @pytest.mark.parametrize(
        ("size", "expected"),
        [
            (0, "0"),
            (900, "900"),
            (2048, "2.0K"),
            (int(2.4 * 1024 * 1024), "2.4M"),
            (3 * 1024**3, "3.0G"),
            (5 * 1024**4, "5120.0G"),
        ],
    )
    def test_sizes(self, size: int, expected: str):
        """Sizes render like ls -lh."""
        assert format_size(size) == expected


class TestVerifier:
    """Tests for Verifier.verify."""

    def test_all_checks_pass(self, tmp_path: Path, pi_zero: TargetProfileSchema):
        """A correct binary with a working strip tool verifies."""
        runner = FakeRunner()
        bundle = _bundle(tmp_path, pi_zero, elf_for(pi_zero) + b"\0" * 1000)
        report = Verifier(tmp_path / "logs", runner=runner).verify(bundle)

        assert report.verified
        assert report.failures() == []
        assert [c.name for c in report.checks] == ["binary_size", "architecture", "strip_tool"]
        assert report.binary_size_bytes == 1052
        assert report.architecture == "ELF 32-bit LSB executable, ARM, EABI5, soft-float"
        assert runner.calls == [["arm-linux-gnueabi-strip", "--version"]]
        assert runner.log_paths == [tmp_path / "logs" / "strip-version.log"]

    def test_wrong_architecture(self, tmp_path: Path, pi_zero: TargetProfileSchema):
        """A host binary in an ARM bundle fails the architecture check."""
        bundle = _bundle(tmp_path, pi_zero, make_elf(EM_X86_64, 64))
        report = Verifier(tmp_path / "logs", runner=FakeRunner()).verify(bundle)

        assert not report.verified
        failure = report.failures()[0]
        assert failure.name == "architecture"
        assert "expected armv6" in failure.detail

    def test_secondary_checked(self, tmp_path: Path, arm64: TargetProfileSchema):
        """A bundled secondary binary gets its own architecture check."""
        bundle = _with_secondary(_bundle(tmp_path, arm64, elf_for(arm64)), elf_for(arm64))
        report = Verifier(tmp_path / "logs", runner=FakeRunner()).verify(bundle)

        assert report.verified
        assert [c.name for c in report.checks] == [
            "binary_size",
            "architecture",
            "architecture:camcompress",
            "strip_tool",
        ]

    def test_wrong_secondary_architecture(self, tmp_path: Path, pi_zero: TargetProfileSchema):
        """A secondary built for the host fails even when the primary is right."""
        bundle = _with_secondary(
            _bundle(tmp_path, pi_zero, elf_for(pi_zero)), make_elf(EM_X86_64, 64)
        )
        report = Verifier(tmp_path / "logs", runner=FakeRunner()).verify(bundle)

        assert not report.verified
        failure = report.failures()[0]
        assert failure.name == "architecture:camcompress"
        assert failure.detail.startswith("camcompress: ELF 64-bit LSB executable, x86-64")
        assert report.architecture == "ELF 32-bit LSB executable, ARM, EABI5, soft-float"

    def test_not_elf(self, tmp_path: Path, arm64: TargetProfileSchema):
        """A non-ELF primary binary fails the architecture check."""
        bundle = _bundle(tmp_path, arm64, b"#!/bin/sh\necho hi\n")
        report = Verifier(tmp_path / "logs", runner=FakeRunner()).verify(bundle)
        assert [c.name for c in report.failures()] == ["architecture"]
        assert report.architecture is None

    def test_strip_unavailable(self, tmp_path: Path, arm64: TargetProfileSchema):
        """A strip tool that cannot run fails its check."""
        bundle = _bundle(tmp_path, arm64, elf_for(arm64))
        report = Verifier(tmp_path / "logs", runner=FakeRunner(exit_code=127)).verify(bundle)
        failure = report.failures()[0]
        assert failure.name == "strip_tool"
        assert failure.detail == "aarch64-linux-gnu-strip failed with exit code 127"

    def test_empty_binary(self, tmp_path: Path, arm64: TargetProfileSchema):
        """An empty primary binary fails the size check."""
        bundle = _bundle(tmp_path, arm64, b"")
        report = Verifier(tmp_path / "logs", runner=FakeRunner()).verify(bundle)
        assert {c.name for c in report.failures()} == {"binary_size", "architecture"}

    def test_cancelled(self, tmp_path: Path, arm64: TargetProfileSchema):
        """Cancellation during the strip check propagates."""

        def cancel(cmd: list[str]) -> None:
            raise PipelineCancelledError()

        bundle = _bundle(tmp_path, arm64, elf_for(arm64))
        with pytest.raises(PipelineCancelledError):
            Verifier(tmp_path / "logs", runner=FakeRunner(on_run=cancel)).verify(bundle)
