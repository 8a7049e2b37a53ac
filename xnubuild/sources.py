# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import shutil
import subprocess
from collections.abc import Iterable
from pathlib import Path
from typing import Callable

from xnubuild.config import Release
from xnubuild.context import Context
from xnubuild.errors import WorkspaceCorruption
from xnubuild.log import complete_step
from xnubuild.manifest import resolve
from xnubuild.run import run

GIT_URL = "https://github.com/apple-oss-distributions/{component}.git"

ResolveCallback = Callable[[Release, str], str]


def check_link(path: Path) -> None:
    # Dangling symlinks don't "exist" so check for them explicitly.
    if (path.exists() or path.is_symlink()) and not path.is_symlink():
        raise WorkspaceCorruption(f"{path} should be a symbolic link")


def check_workspace_links(context: Context, components: Iterable[str]) -> None:
    for component in components:
        check_link(context.component(component))


def clone(component: str, tag: str, dst: Path) -> None:
    run(
        [
            "git",
            "clone",
            "--depth", "1",
            "--branch", tag,
            GIT_URL.format(component=component),
            dst,
        ]
    )  # fmt: skip


def ensure_component(context: Context, component: str, *, resolve: ResolveCallback = resolve) -> Path:
    """Make sure the sources of @component at the release's tag are linked into the work directory.

    Clones are kept in sources/<tag> and reused across runs, only the link in the work directory is
    recreated.
    """
    context.sources_dir.mkdir(parents=True, exist_ok=True)

    link = context.component(component)
    check_link(link)
    if link.is_symlink():
        link.unlink()

    tag = resolve(context.release, component)
    src = context.sources_dir / tag
    logging.info(f"{component} version: {tag}")
    logging.info(f"{component} directory: {src}")

    if not src.is_dir():
        with complete_step(f"Cloning {component}"):
            clone(component, tag, src)

    link.symlink_to(src)
    return link


def describe_source(path: Path) -> str:
    return run(
        ["git", "describe", "--always"],
        cwd=path,
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        check=False,
    ).stdout.strip()


def restore_compilation_database(context: Context, tree: Path) -> None:
    cached = context.cache_dir / "compile_commands.json"

    if cached.exists():
        logging.info(f"Restoring cached {cached}")
        shutil.copyfile(cached, tree / "compile_commands.json")


def save_compilation_database(context: Context, database: Path, tree: Path) -> None:
    logging.info(f"JSON compilation database: {database}")
    shutil.copyfile(database, tree / "compile_commands.json")

    context.cache_dir.mkdir(parents=True, exist_ok=True)
    logging.info(f"Caching JSON compilation database in: {context.cache_dir}")
    shutil.copyfile(database, context.cache_dir / "compile_commands.json")
