# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import shutil
from pathlib import Path
from typing import Callable, Optional

from xnubuild.collection import compose
from xnubuild.config import Args, CleanMode, Config
from xnubuild.context import COMPONENTS, Context
from xnubuild.errors import MissingPrecondition
from xnubuild.kdk import ensure_kdk
from xnubuild.log import complete_step, log_notice, log_step, record_progress
from xnubuild.patch import patch_xnu
from xnubuild.pipeline import Pipeline, StageResult
from xnubuild.run import find_binary
from xnubuild.sources import check_workspace_links, ensure_component, restore_compilation_database
from xnubuild.stages import STAGES


def clean_paths(work_dir: Path, mode: CleanMode) -> list[Path]:
    """Return the paths removed by cleaning @work_dir in @mode, existing or not."""
    # Every target configuration gets its own build directory so pick up all of them.
    paths = sorted(p for p in work_dir.glob("build_*") if p.is_dir())
    paths = [work_dir / "build", *paths, work_dir / "fakeroot"]

    if mode == CleanMode.full:
        paths += [work_dir / c for c in COMPONENTS]
        paths += [work_dir / "sources"]

    return paths


def remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def run_clean(args: Args, config: Config, *, confirm: Callable[[str], str] = input) -> list[Path]:
    """Remove build artifacts after asking for confirmation and return what was removed."""
    assert args.clean is not None

    paths = clean_paths(config.work_dir, args.clean)

    with complete_step("Cleaning build directories…" if args.clean == CleanMode.partial else "Cleaning…"):
        for p in paths:
            logging.info(f"Will delete {p}")

        try:
            reply = confirm("Are you sure? ").strip()
        except EOFError:
            reply = ""

        if reply[:1] not in ("y", "Y"):
            logging.info("Not deleting anything")
            return []

        for p in paths:
            log_step(f"Deleting {p}")
            remove_path(p)

    return paths


def run_build(config: Config) -> Optional[list[Path]]:
    config.work_dir.mkdir(parents=True, exist_ok=True)
    context = Context(config)

    logging.info(f"Building {context.release.kdk_name} for {context.target.target_configs}")
    logging.info(f"Build directory: {context.build_dir}")

    # Refuse to touch a workspace where a component path isn't ours before doing anything else.
    check_workspace_links(context, COMPONENTS)

    # Check this early on, there's no point in building everything first if we can't create the collection
    # at the end.
    if config.build_kernel_collection and not find_binary("ipsw"):
        raise MissingPrecondition("ipsw is required to create a kernel collection, please install it")

    record_progress(context.progress_log, "Installing the Kernel Debug Kit")
    ensure_kdk(context)

    record_progress(context.progress_log, "Getting XNU sources")
    xnu = ensure_component(context, "xnu")
    restore_compilation_database(context, xnu)

    record_progress(context.progress_log, "Applying patches")
    patch_xnu(context)

    for d in (context.fakeroot, context.build_dir):
        d.mkdir(parents=True, exist_ok=True)

    results: list[StageResult] = Pipeline(STAGES).run(context)
    skipped = [r.stage for r in results if r.skipped]
    if skipped:
        logging.info(f"Stages that were already complete: {', '.join(skipped)}")

    record_progress(context.progress_log, "XNU Build Done")
    log_notice("XNU Build Done!")

    if not config.build_kernel_collection:
        return None

    record_progress(context.progress_log, "Building kernel collection")
    return compose(context)


def run_verb(args: Args, config: Config) -> None:
    if args.clean:
        run_clean(args, config)
        return

    run_build(config)
