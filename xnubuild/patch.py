# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import logging
import re
import subprocess
from collections.abc import Sequence
from pathlib import Path

from xnubuild.config import Release
from xnubuild.context import Context
from xnubuild.errors import CorruptPatch, MissingPrecondition
from xnubuild.log import complete_step, log_step
from xnubuild.run import run

# git apply exits with 1 when a patch doesn't apply and with 128 when it can't make sense of the patch.
GIT_APPLY_FATAL = 128


@dataclasses.dataclass(frozen=True)
class Substitution:
    """Rewrite every line of @path matching @pattern to @replacement.

    The replacement never matches the pattern again so applying a substitution twice leaves the file as it
    was after the first time.
    """

    path: str
    pattern: str
    replacement: str

    def apply(self, tree: Path) -> bool:
        p = tree / self.path
        if not p.exists():
            raise MissingPrecondition(f"{p} does not exist, cannot redirect it to the fakeroot")

        text = p.read_text()
        new = re.sub(self.pattern, lambda m: self.replacement, text, flags=re.MULTILINE)

        if new == text:
            return False

        p.write_text(new)
        return True


def literal(s: str) -> str:
    return re.escape(s)


# Point the xnu build at the fakeroot instead of the SDK for everything the earlier stages install there.
XNU_SUBSTITUTIONS = (
    Substitution(
        "bsd/sys/make_symbol_aliasing.sh",
        "^" + literal('AVAILABILITY_PL="${SDKROOT}/${DRIVERKITROOT}'),
        'AVAILABILITY_PL="${FAKEROOT_DIR}',
    ),
    Substitution(
        "libsyscall/Libsyscall.xcconfig",
        r"^#include.*BSD\.xcconfig.*$",
        "",
    ),
    Substitution(
        "makedefs/MakeInc.def",
        "^" + literal("LDFLAGS_KERNEL_SDK\t= -L$(SDKROOT)") + ".*$",
        "LDFLAGS_KERNEL_SDK\t= -L$(FAKEROOT_DIR)/usr/local/lib/kernel -lfirehose_kernel",
    ),
    Substitution(
        "makedefs/MakeInc.def",
        "^" + literal("INCFLAGS_SDK\t= -I$(SDKROOT)"),
        "INCFLAGS_SDK\t= -I$(FAKEROOT_DIR)",
    ),
    Substitution(
        "makedefs/MakeInc.cmd",
        literal("export MIG := $(shell $(XCRUN) -sdk $(SDKROOT) -find mig)"),
        'export MIG := $(shell find $(FAKEROOT_DIR) -name "mig")',
    ),
    Substitution(
        "makedefs/MakeInc.cmd",
        literal("export MIGCOM := $(shell $(XCRUN) -sdk $(SDKROOT) -find migcom)"),
        'export MIGCOM := $(shell find $(FAKEROOT_DIR) -name "migcom")',
    ),
)

BOOTSTRAP_CMDS_SUBSTITUTIONS = (
    # Installing mig must not require root.
    Substitution("xcodescripts/install-mig.sh", literal("-o root -g wheel"), ""),
)

LIBSYSTEM_SUBSTITUTIONS = (
    Substitution("Libsystem.xcconfig", r"^#include.*BSD\.xcconfig.*$", ""),
)

LIBFIREHOSE_SUBSTITUTIONS = (
    Substitution(
        "xcodeconfig/libfirehose_kernel.xcconfig",
        literal("$(SDKROOT)/System/Library/Frameworks/Kernel.framework/PrivateHeaders"),
        "$(FAKEROOT_DIR)/System/Library/Frameworks/Kernel.framework/PrivateHeaders",
    ),
    Substitution(
        "xcodeconfig/libfirehose_kernel.xcconfig",
        literal("$(SDKROOT)/usr/local/include"),
        "$(FAKEROOT_DIR)/usr/local/include",
    ),
)


def apply_substitutions(tree: Path, substitutions: Sequence[Substitution]) -> None:
    for s in substitutions:
        if s.apply(tree):
            logging.debug(f"Rewrote {s.path} in {tree}")


def select_patch_dir(patches_dir: Path, release: Release) -> Path:
    return patches_dir / "14.4" if release.uses_split_patch_set() else patches_dir


def patch_set(patches_dir: Path, release: Release) -> list[Path]:
    d = select_patch_dir(patches_dir, release)

    if not d.is_dir():
        logging.warning(f"Patch directory {d} does not exist, not applying any patches")
        return []

    return sorted(d.glob("*.patch"))


def apply_patches(tree: Path, patches: Sequence[Path]) -> list[Path]:
    """Apply every patch of @patches that applies cleanly to @tree and return the ones that were applied.

    Patches that don't apply, e.g. because they were applied by an earlier run, are skipped.
    """
    applied = []

    for patch in patches:
        check = run(
            ["git", "apply", "--check", patch.absolute()],
            cwd=tree,
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )

        if check.returncode == GIT_APPLY_FATAL:
            error = check.stderr.strip().splitlines()[0] if check.stderr.strip() else "unknown error"
            raise CorruptPatch(f"Cannot parse patch {patch}: {error}")

        if check.returncode != 0:
            logging.debug(f"Skipping patch {patch} as it does not apply")
            continue

        log_step(f"Applying patch: {patch}")
        run(["git", "apply", patch.absolute()], cwd=tree)
        applied += [patch]

    return applied


def patch_xnu(context: Context) -> list[Path]:
    tree = context.component("xnu")

    with complete_step("Patching xnu files"):
        apply_substitutions(tree, XNU_SUBSTITUTIONS)

        # Keep the sources as they are upstream when they are used to build a CodeQL database.
        if context.config.pristine_sources:
            logging.info("Not applying patches to keep the xnu sources pristine")
            return []

        return apply_patches(tree, patch_set(context.patches_dir, context.release))
