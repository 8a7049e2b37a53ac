# SPDX-License-Identifier: LGPL-2.1-or-later

from pathlib import Path

from xnubuild.config import BuildTarget, Config, Release

# Components fetched from apple-oss-distributions, in the order they are needed.
COMPONENTS = (
    "xnu",
    "bootstrap_cmds",
    "dtrace",
    "AvailabilityVersions",
    "Libsystem",
    "libplatform",
    "libdispatch",
)


class Context:
    """Paths of the workspace shared by all steps of one build."""

    def __init__(self, config: Config) -> None:
        assert config.release is not None

        self.config = config
        self.release: Release = config.release
        self.target: BuildTarget = config.target()

    @property
    def work_dir(self) -> Path:
        return self.config.work_dir

    @property
    def sources_dir(self) -> Path:
        return self.work_dir / "sources"

    @property
    def fakeroot(self) -> Path:
        return self.work_dir / "fakeroot"

    @property
    def build_dir(self) -> Path:
        return self.work_dir / f"build_{self.target.build_suffix}"

    @property
    def cache_dir(self) -> Path:
        return self.work_dir / ".cache" / self.release.version

    @property
    def patches_dir(self) -> Path:
        return self.work_dir / "patches"

    @property
    def progress_log(self) -> Path:
        return self.work_dir / "log.txt"

    @property
    def kdk_root(self) -> Path:
        return self.config.kdk_dir / self.release.kdk_folder_name

    @property
    def kernel(self) -> Path:
        return self.build_dir / "xnu.obj" / f"kernel.{self.target.kernel_type}"

    def component(self, name: str) -> Path:
        return self.work_dir / name

    def build_variables(self) -> list[str]:
        """Variables passed to every make/xcodebuild invocation that installs into the fakeroot."""
        return [
            f"DSTROOT={self.fakeroot}",
            f"FAKEROOT_DIR={self.fakeroot}",
        ]

    def object_roots(self, name: str) -> list[str]:
        return [
            f"OBJROOT={self.build_dir / f'{name}.obj'}",
            f"SYMROOT={self.build_dir / f'{name}.sym'}",
        ]
