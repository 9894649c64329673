"""Built-in matrix for the v4l2rtspserver Raspberry Pi releases.

Used when no matrix file is configured. Pi Zero builds with fewer jobs and
no debug info because ARMv6 builds run on constrained, emulated hosts.
"""

from crossmatrix.profiles.schema import (
    CompilerPairSchema,
    MatrixSchema,
    ProjectSchema,
    RuntimeRecommendationSchema,
    TargetProfileSchema,
)
from crossmatrix.types import RuntimeClass

# Warnings raised by the bundled live555 sources
LIVE555_WARNING_FLAGS = (
    "-Wno-format",
    "-Wno-format-overflow",
    "-Wno-format-security",
    "-Wno-stringop-overflow",
    "-Wno-int-to-pointer-cast",
    "-Wno-pointer-to-int-cast",
    "-Wno-cast-function-type",
    "-Wno-unused-variable",
    "-Wno-unused-parameter",
    "-Wno-sign-compare",
    "-Wno-maybe-uninitialized",
)

COMMON_PACKAGES = ("build-essential", "cmake", "pkg-config")

ARMEL_PACKAGES = (
    "gcc-arm-linux-gnueabi",
    "g++-arm-linux-gnueabi",
    "libc6-armel-cross",
    "libc6-dev-armel-cross",
) + COMMON_PACKAGES

ARMHF_PACKAGES = (
    "gcc-arm-linux-gnueabihf",
    "g++-arm-linux-gnueabihf",
    "libc6-dev-armhf-cross",
) + COMMON_PACKAGES

ARM64_PACKAGES = (
    "gcc-aarch64-linux-gnu",
    "g++-aarch64-linux-gnu",
    "libc6-dev-arm64-cross",
) + COMMON_PACKAGES

STATIC_LINK_FLAGS = ("-static", "-Wl,--gc-sections")

PROJECT = ProjectSchema(
    name="v4l2rtspserver",
    source_dir=".",
    primary_binary="v4l2rtspserver",
    secondary_target="v4l2compress",
    resource_files=("index.html", "hls.js"),
    build_type="Release",
    build_options={"WITH_SSL": False, "ALSA": False, "STATICSTDCPP": True},
    warning_flags=LIVE555_WARNING_FLAGS,
    usage=(
        "./v4l2rtspserver /dev/video0",
        "./v4l2rtspserver -w 8080 /dev/video0",
    ),
    access=(
        "RTSP: rtsp://PI_IP:8554/unicast",
        "Web: http://PI_IP:8080 (if -w enabled)",
    ),
    runtime_recommendations={
        RuntimeClass.CONSTRAINED: RuntimeRecommendationSchema(
            title="Low resolution",
            arguments="-W 320 -H 240 -F 10 -f MJPG /dev/video0",
            notes=(
                "Use low resolution: -W 320 -H 240",
                "Reduce framerate: -F 10 or -F 5",
                "Use MJPEG format: -f MJPG",
            ),
        ),
        RuntimeClass.STANDARD: RuntimeRecommendationSchema(
            title="Standard resolution",
            arguments="-W 640 -H 480 -F 15 /dev/video0",
            notes=(
                "Good performance with: -W 640 -H 480 -F 15",
                "Can handle H264: -f H264",
            ),
        ),
        RuntimeClass.CAPABLE: RuntimeRecommendationSchema(
            title="High resolution",
            arguments="-W 1280 -H 720 -F 30 /dev/video0",
            notes=(
                "High performance: -W 1280 -H 720 -F 30",
                "Full H264 support: -f H264",
            ),
        ),
    },
)

PI_ZERO = TargetProfileSchema(
    id="pi-zero",
    display_name="Pi Zero",
    description="Raspberry Pi Zero/Zero W",
    architecture="armv6",
    compiler=CompilerPairSchema(c="arm-linux-gnueabi-gcc", cxx="arm-linux-gnueabi-g++"),
    compile_flags=(
        "-march=armv6",
        "-mfpu=vfp",
        "-mfloat-abi=soft",
        "-O2",
        "-g0",
        "-DNDEBUG",
        "-static",
        "-D_GNU_SOURCE",
    ),
    link_flags=STATIC_LINK_FLAGS,
    parallelism=2,
    packages=ARMEL_PACKAGES,
    build_options={"CMAKE_SKIP_RPATH": True},
    runtime_class=RuntimeClass.CONSTRAINED,
)

PI3_4 = TargetProfileSchema(
    id="pi3-4",
    display_name="Pi 3/4",
    description="Raspberry Pi 3/4 32-bit",
    architecture="armv7",
    compiler=CompilerPairSchema(
        c="arm-linux-gnueabihf-gcc", cxx="arm-linux-gnueabihf-g++"
    ),
    compile_flags=(
        "-march=armv7-a",
        "-mfpu=neon-vfpv4",
        "-mfloat-abi=hard",
        "-O2",
        "-static",
        "-D_GNU_SOURCE",
    ),
    link_flags=STATIC_LINK_FLAGS,
    parallelism=4,
    packages=ARMHF_PACKAGES,
    runtime_class=RuntimeClass.STANDARD,
)

ARM64 = TargetProfileSchema(
    id="arm64",
    display_name="ARM64",
    description="ARM64/AArch64 64-bit",
    architecture="aarch64",
    compiler=CompilerPairSchema(c="aarch64-linux-gnu-gcc", cxx="aarch64-linux-gnu-g++"),
    compile_flags=("-march=armv8-a", "-O2", "-static", "-D_GNU_SOURCE"),
    link_flags=STATIC_LINK_FLAGS,
    parallelism=4,
    packages=ARM64_PACKAGES,
    runtime_class=RuntimeClass.CAPABLE,
)

DEFAULT_MATRIX = MatrixSchema(version="1", project=PROJECT, profiles=(PI_ZERO, PI3_4, ARM64))

__all__ = ["ARM64", "DEFAULT_MATRIX", "PI3_4", "PI_ZERO", "PROJECT"]
