# SPDX-License-Identifier: LGPL-2.1-or-later

import contextlib
import logging
import subprocess
from collections.abc import Iterator
from pathlib import Path

from xnubuild.log import complete_step
from xnubuild.run import run


@contextlib.contextmanager
def mount_image(image: Path, mountpoint: Path) -> Iterator[Path]:
    """Attach @image read-only at @mountpoint for the duration of the with block.

    The image is detached and the mount point removed on every way out of the block, including when
    attaching itself or the body fails.
    """
    mountpoint.mkdir(parents=True, exist_ok=True)

    try:
        with complete_step(f"Mounting {image} at {mountpoint}"):
            run(["hdiutil", "attach", "-readonly", "-mountpoint", mountpoint, image])

        yield mountpoint
    finally:
        with complete_step(f"Unmounting {mountpoint}"):
            detach(mountpoint)


def detach(mountpoint: Path) -> None:
    # If attaching failed there is nothing to detach, so don't treat a failure here as fatal as it would
    # hide the original error.
    if run(["hdiutil", "detach", mountpoint], check=False, stdout=subprocess.DEVNULL).returncode != 0:
        logging.debug(f"Nothing mounted at {mountpoint}")

    try:
        mountpoint.rmdir()
    except FileNotFoundError:
        pass
    except OSError as e:
        logging.warning(f"Failed to remove mount point {mountpoint}: {e}")
