# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import enum
import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Callable, Optional

from xnubuild.context import Context
from xnubuild.errors import StageFailed
from xnubuild.log import complete_step, record_progress
from xnubuild.util import StrEnum, find_in_tree

Finder = Callable[[Path, str], Optional[Path]]


class StageState(StrEnum):
    pending  = enum.auto()
    complete = enum.auto()


@dataclasses.dataclass(frozen=True)
class Stage:
    """One step of the build.

    @sentinel returns the path whose existence proves the stage already ran. With @anywhere set only its file
    name matters and it may be found anywhere below its parent directory. @build produces that output,
    usually by installing into the fakeroot.
    """

    name: str
    description: str
    sentinel: Callable[[Context], Path]
    build: Callable[[Context], None]
    anywhere: bool = False


@dataclasses.dataclass(frozen=True)
class StageResult:
    stage: str
    skipped: bool


class Pipeline:
    def __init__(
        self,
        stages: Sequence[Stage],
        *,
        exists: Callable[[Path], bool] = Path.exists,
        find: Finder = find_in_tree,
    ) -> None:
        self.stages = stages
        self.exists = exists
        self.find = find

    def state(self, stage: Stage, context: Context) -> StageState:
        sentinel = stage.sentinel(context)

        if stage.anywhere:
            done = self.find(sentinel.parent, sentinel.name) is not None
        else:
            done = self.exists(sentinel)

        return StageState.complete if done else StageState.pending

    def run(self, context: Context) -> list[StageResult]:
        results = []

        for stage in self.stages:
            record_progress(context.progress_log, stage.description)

            if self.state(stage, context) == StageState.complete:
                logging.info(f"{stage.name} already built, skipping")
                results += [StageResult(stage.name, skipped=True)]
                continue

            with complete_step(stage.description):
                try:
                    stage.build(context)
                except subprocess.CalledProcessError as e:
                    raise StageFailed(stage.name, e.returncode) from e

            results += [StageResult(stage.name, skipped=False)]

        return results
