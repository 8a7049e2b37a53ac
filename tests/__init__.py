# SPDX-License-Identifier: LGPL-2.1-or-later

import os
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Callable, Optional

from xnubuild.architecture import Architecture
from xnubuild.config import DEFAULT_KC_FILTER, RELEASES, Config, KernelConfig
from xnubuild.util import PathString


def make_config(work_dir: Path, **kwargs: Any) -> Config:
    settings: dict[str, Any] = dict(
        work_dir=work_dir,
        kernel_config=KernelConfig.RELEASE,
        architecture=Architecture.ARM64,
        machine_config="VMAPPLE",
        release=RELEASES["14.4"],
        json_compilation_database=False,
        build_kernel_collection=False,
        pristine_sources=False,
        kc_filter=DEFAULT_KC_FILTER,
        kdk_dir=work_dir / "kdks",
    )
    settings.update(kwargs)
    return Config(**settings)


Handler = Callable[[list[str], dict[str, Any]], Optional[subprocess.CompletedProcess]]


class FakeRun:
    """Stands in for xnubuild.run.run and records every command line instead of executing it."""

    def __init__(self, handler: Optional[Handler] = None) -> None:
        self.calls: list[list[str]] = []
        self.handler = handler

    def __call__(self, cmdline: Sequence[PathString], *args: Any, **kwargs: Any) -> subprocess.CompletedProcess:
        cmd = [os.fspath(c) for c in cmdline]
        self.calls.append(cmd)

        if self.handler and (result := self.handler(cmd, kwargs)) is not None:
            return result

        return subprocess.CompletedProcess(cmd, 0, "", "")

    def commands(self) -> list[str]:
        return [c[0] for c in self.calls]
