# SPDX-License-Identifier: LGPL-2.1-or-later

import shutil
import subprocess
from pathlib import Path

from xnubuild.log import log_step
from xnubuild.run import run, spawn

# Files xar leaves behind next to the payload that are of no use once the payload is expanded.
PKG_METADATA = ("Distribution", "Resources", "KDK.pkg")


def expand_pkg(pkg: Path, dst: Path, *, payload: str = "KDK.pkg/Payload") -> None:
    """Expand the payload of the flat installer package @pkg into @dst without running the installer."""
    log_step(f"Expanding installer package {pkg}…")

    dst.mkdir(parents=True, exist_ok=True)

    run(["xar", "-f", pkg, "-x"], cwd=dst)

    with spawn(["pbzx", "-n", payload], cwd=dst, stdout=subprocess.PIPE) as pbzx:
        assert pbzx.stdout
        run(["cpio", "-i"], cwd=dst, stdin=pbzx.stdout)
        pbzx.stdout.close()

    for name in PKG_METADATA:
        p = dst / name
        if p.is_dir() and not p.is_symlink():
            shutil.rmtree(p)
        elif p.exists() or p.is_symlink():
            p.unlink()


def install_pkg(pkg: Path, *, target: Path = Path("/")) -> None:
    log_step(f"Installing {pkg}…")
    run(["sudo", "installer", "-pkg", pkg, "-target", target])
