# SPDX-License-Identifier: LGPL-2.1-or-later

from pathlib import Path

import pytest

from xnubuild.config import Config
from xnubuild.context import Context

from . import make_config


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return make_config(tmp_path / "work")


@pytest.fixture
def context(config: Config) -> Context:
    config.work_dir.mkdir(parents=True, exist_ok=True)
    return Context(config)
