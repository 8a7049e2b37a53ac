# SPDX-License-Identifier: LGPL-2.1-or-later

from xnubuild.util import StrEnum


class Architecture(StrEnum):
    """Kernel architecture as spelled in the xnu TARGET_CONFIGS/ARCH_CONFIG variables."""

    ARM64  = "ARM64"
    X86_64 = "X86_64"

    @classmethod
    def from_config(cls, s: str) -> "Architecture":
        try:
            return cls[s.upper().replace("-", "_")]
        except KeyError:
            raise ValueError(f"Architecture {s} is not supported, use one of {', '.join(cls.values())}")

    def to_kmutil(self) -> str:
        return {
            Architecture.ARM64  : "arm64e",
            Architecture.X86_64 : "x86_64",
        }[self]  # fmt: skip


# Architectures that architecture-generic host tools and headers are built for.
HOST_TOOL_ARCHS = "arm64 x86_64"
KERNEL_HEADER_ARCH_CONFIGS = "X86_64 ARM64"
USERSPACE_HEADER_ARCHS = "arm64 arm64e"
FIREHOSE_ARCHS = "x86_64 arm64e"
