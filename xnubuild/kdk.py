# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional

from xnubuild.archive import expand_pkg, install_pkg
from xnubuild.context import Context
from xnubuild.download import download
from xnubuild.errors import ToolkitInstallFailed
from xnubuild.log import complete_step
from xnubuild.manifest import lookup_kdk_url
from xnubuild.mounts import mount_image
from xnubuild.run import run

# Kits installed below here are managed by the system and need root to be written to.
SYSTEM_KDK_PREFIX = "/Library/"
KDK_PKG = "KernelDebugKit.pkg"


@dataclasses.dataclass(frozen=True)
class KdkPaths:
    root: Path
    image: Path
    mountpoint: Path

    @classmethod
    def for_context(cls, context: Context, *, tmp: Path = Path("/tmp")) -> "KdkPaths":
        root = context.kdk_root
        download_dir = tmp if is_system_managed(root) else context.config.kdk_dir

        return cls(
            root=root,
            image=download_dir / f"{context.release.kdk_name.replace(' ', '_')}.dmg",
            mountpoint=tmp / context.release.kdk_folder_name,
        )

    @property
    def system_managed(self) -> bool:
        return is_system_managed(self.root)

    @property
    def staging(self) -> Path:
        """Where the package is expanded to before it is moved into place."""
        return self.root.with_name(f".{self.root.name}.partial")


def is_system_managed(path: Path) -> bool:
    return str(path)[: len(SYSTEM_KDK_PREFIX)] == SYSTEM_KDK_PREFIX


def make_root(paths: KdkPaths) -> None:
    if paths.system_managed:
        run(["sudo", "mkdir", "-p", paths.root])
        run(["sudo", "chmod", "755", paths.root])
    else:
        paths.staging.mkdir(parents=True, exist_ok=True)
        paths.staging.chmod(0o755)


def remove_root(paths: KdkPaths) -> None:
    # A half populated kit would satisfy the existence check on the next run, so get rid of it.
    if paths.system_managed:
        if paths.root.exists():
            logging.info(f"Removing incomplete Kernel Debug Kit at {paths.root}")
            run(["sudo", "rm", "-rf", paths.root], check=False)
        return

    for p in (paths.staging, paths.root):
        if p.exists():
            logging.info(f"Removing incomplete Kernel Debug Kit at {p}")
            shutil.rmtree(p, ignore_errors=True)


def install_kdk(paths: KdkPaths) -> None:
    with mount_image(paths.image, paths.mountpoint) as mnt:
        make_root(paths)

        if paths.system_managed:
            install_pkg(mnt / KDK_PKG)
        else:
            expand_pkg(mnt / KDK_PKG, paths.staging)
            # The root only appears once the whole payload is there.
            os.replace(paths.staging, paths.root)


def ensure_kdk(
    context: Context,
    *,
    paths: Optional[KdkPaths] = None,
    lookup: Callable[[str], str] = lookup_kdk_url,
    fetch: Callable[[str, Path], Path] = download,
) -> Path:
    """Make sure the Kernel Debug Kit of the release is installed and return its root directory."""
    paths = paths or KdkPaths.for_context(context)

    logging.info(f"KDK root directory: {paths.root}")
    logging.info(f"KDK .dmg path: {paths.image}")

    if paths.root.is_dir():
        return paths.root

    if not paths.image.exists():
        url = lookup(context.release.kdk_name)
        fetch(url, paths.image)

    with complete_step(f"Installing KDK from {paths.image}"):
        try:
            install_kdk(paths)
        except BaseException as e:
            remove_root(paths)

            if isinstance(e, subprocess.CalledProcessError):
                raise ToolkitInstallFailed(
                    f"Failed to install {context.release.kdk_name}: {e.cmd[0]} returned {e.returncode}"
                ) from e
            # die() already said what's missing, e.g. one of the tools needed to expand the package.
            if isinstance(e, SystemExit):
                raise ToolkitInstallFailed(f"Failed to install {context.release.kdk_name}") from e

            raise

    return paths.root
