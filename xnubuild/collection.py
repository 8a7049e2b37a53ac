# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Optional

from xnubuild.architecture import Architecture
from xnubuild.context import Context
from xnubuild.log import complete_step
from xnubuild.run import run
from xnubuild.util import PathString
from xnubuild.versioncomp import ReleaseVersion

# kmutil learned the --kdk option with macOS 13.
KMUTIL_KDK_FLAG_MINIMUM = "13.0"


@dataclasses.dataclass(frozen=True)
class CollectionRecipe:
    """How to invoke kmutil create for one architecture."""

    architecture: Architecture
    # Collection name -> (kmutil option, file name template) of every collection that is created.
    collections: tuple[tuple[str, str, str], ...]
    elide: tuple[str, ...] = ()

    def outputs(self, context: Context) -> list[Path]:
        return [context.fakeroot / self.format_name(t, context) for _, _, t in self.collections]

    def format_name(self, template: str, context: Context) -> str:
        return template.format(
            release=context.release.version,
            machine=context.target.machine_config.lower(),
        )

    def cmdline(
        self,
        context: Context,
        *,
        kdk: Optional[Path],
        excluded: list[str],
    ) -> list[PathString]:
        cmdline: list[PathString] = [
            "kmutil", "create",
            "-v",
            "-V", context.target.kc_variant,
            "-a", self.architecture.to_kmutil(),
            "-n", *(name for name, _, _ in self.collections),
            "-s", "none",
            *(["--kdk", kdk] if kdk else []),
        ]  # fmt: skip

        for _, option, template in self.collections:
            cmdline += [option, context.fakeroot / self.format_name(template, context)]

        cmdline += ["-k", context.kernel]

        for identifier in self.elide:
            cmdline += ["--elide-identifier", identifier]

        # Explicit-only mode: just the kexts listed with -b go into the collection. ipsw leaves out the ones
        # matching the filter and every kext depending on them.
        cmdline += ["-x", *excluded]

        return cmdline


RECIPES = {
    Architecture.ARM64: CollectionRecipe(
        Architecture.ARM64,
        collections=(("boot", "-B", "oss-xnu.macOS.{release}.kc.{machine}"),),
    ),
    Architecture.X86_64: CollectionRecipe(
        Architecture.X86_64,
        collections=(
            ("boot", "-B", "BootKernelExtensions.{release}.{machine}.kc"),
            ("sys", "-S", "SystemKernelExtensions.{release}.{machine}.kc"),
        ),
        elide=("com.apple.ExclaveKextClient",),
    ),
}


def host_version() -> ReleaseVersion:
    return ReleaseVersion(
        run(["sw_vers", "-productVersion"], stdout=subprocess.PIPE).stdout.strip()
    ).major_minor()


def host_supports_kdk_flag() -> bool:
    return host_version() >= KMUTIL_KDK_FLAG_MINIMUM


def excluded_kexts(pattern: str) -> list[str]:
    """Ask ipsw for the kmutil exclusion arguments matching the regular expression @pattern."""
    out = run(
        ["ipsw", "kernel", "kmutil", "inspect", "-x", "--filter", pattern],
        stdout=subprocess.PIPE,
    ).stdout

    return shlex.split(out)


def compose(context: Context) -> Optional[list[Path]]:
    """Create the kernel collection(s) for the kernel that was built.

    Returns None without doing anything if the kernel hasn't been built.
    """
    if not context.kernel.exists():
        logging.info(f"kernel.{context.target.kernel_type} has not been built, not creating a kernel collection")
        return None

    recipe = RECIPES[context.target.architecture]

    with complete_step(f"Building kernel collection for kernel.{context.target.kernel_type}"):
        kdk = context.kdk_root if host_supports_kdk_flag() else None
        run(recipe.cmdline(context, kdk=kdk, excluded=excluded_kexts(context.config.kc_filter)))

    logging.info("KC Build Done!")
    return recipe.outputs(context)
