# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import os
import shutil
from pathlib import Path
from typing import Callable

from xnubuild.architecture import (
    FIREHOSE_ARCHS,
    HOST_TOOL_ARCHS,
    KERNEL_HEADER_ARCH_CONFIGS,
    USERSPACE_HEADER_ARCHS,
)
from xnubuild.context import Context
from xnubuild.errors import MissingPrecondition, StageFailed
from xnubuild.patch import (
    BOOTSTRAP_CMDS_SUBSTITUTIONS,
    LIBFIREHOSE_SUBSTITUTIONS,
    LIBSYSTEM_SUBSTITUTIONS,
    apply_substitutions,
)
from xnubuild.pipeline import Stage
from xnubuild.run import run
from xnubuild.sources import describe_source, ensure_component, save_compilation_database
from xnubuild.util import find_in_tree

TIGHTBEAMC = "tightbeamc-not-supported"
XNU_HEADERS_SENTINEL = ".xnu_headers_installed"


def jobs() -> str:
    return f"-j{os.cpu_count() or 8}"


def xcodebuild(verb: str, *options: str, cwd: Path) -> None:
    run(["xcodebuild", verb, "-sdk", "macosx", *options], cwd=cwd)


def kernel_variables(context: Context) -> list[str]:
    return [
        f"KDKROOT={context.kdk_root}",
        f"TIGHTBEAMC={TIGHTBEAMC}",
        f"RC_DARWIN_KERNEL_VERSION={context.release.darwin_kernel_version}",
    ]


def require_kdk(context: Context) -> None:
    if not context.kdk_root.is_dir():
        raise MissingPrecondition(
            f"KDKROOT not found: {context.kdk_root} - please install from the Developer Portal"
        )


def build_bootstrap_cmds(context: Context) -> None:
    src = ensure_component(context, "bootstrap_cmds")
    apply_substitutions(src, BOOTSTRAP_CMDS_SUBSTITUTIONS)

    xcodebuild(
        "install",
        "-project", "mig.xcodeproj",
        f"ARCHS={HOST_TOOL_ARCHS}",
        "CODE_SIGN_IDENTITY=-",
        *context.object_roots("bootstrap_cmds"),
        f"DSTROOT={context.fakeroot}",
        f"RC_ProjectNameAndSourceVersion={describe_source(src)}",
        cwd=src,
    )  # fmt: skip


def build_dtrace(context: Context) -> None:
    src = ensure_component(context, "dtrace")

    xcodebuild(
        "install",
        "-target", "ctfconvert",
        "-target", "ctfdump",
        "-target", "ctfmerge",
        f"ARCHS={HOST_TOOL_ARCHS}",
        "CODE_SIGN_IDENTITY=-",
        *context.object_roots("dtrace"),
        f"DSTROOT={context.fakeroot}",
        cwd=src,
    )  # fmt: skip


def build_availability_versions(context: Context) -> None:
    src = ensure_component(context, "AvailabilityVersions")

    run(
        [
            "make", "install", jobs(),
            f"OBJROOT={context.build_dir}/",
            f"SYMROOT={context.build_dir}/",
            f"DSTROOT={context.fakeroot}",
        ],
        cwd=src,
    )  # fmt: skip


def install_xnu_headers(context: Context) -> None:
    run(
        [
            "make", "installhdrs",
            "SDKROOT=macosx",
            f"ARCH_CONFIGS={KERNEL_HEADER_ARCH_CONFIGS}",
            *context.object_roots("xnu-hdrs"),
            *context.build_variables(),
            *kernel_variables(context),
        ],
        cwd=context.component("xnu"),
    )  # fmt: skip

    (context.fakeroot / XNU_HEADERS_SENTINEL).touch()


def install_libsystem_headers(context: Context) -> None:
    src = ensure_component(context, "Libsystem")
    apply_substitutions(src, LIBSYSTEM_SUBSTITUTIONS)

    xcodebuild(
        "installhdrs",
        f"ARCHS={USERSPACE_HEADER_ARCHS}",
        f"VALID_ARCHS={USERSPACE_HEADER_ARCHS}",
        *context.object_roots("Libsystem"),
        *context.build_variables(),
        cwd=src,
    )


def install_libsyscall_headers(context: Context) -> None:
    xcodebuild(
        "installhdrs",
        f"TARGET_CONFIGS={context.target.target_configs}",
        f"ARCHS={USERSPACE_HEADER_ARCHS}",
        f"VALID_ARCHS={USERSPACE_HEADER_ARCHS}",
        *context.object_roots("libsyscall"),
        *context.build_variables(),
        cwd=context.component("xnu") / "libsyscall",
    )


def build_libplatform(context: Context) -> None:
    src = ensure_component(context, "libplatform")

    for d in ("include", "private"):
        run(["ditto", src / d, context.fakeroot / "usr/local/include"], cwd=src)


def build_libdispatch(context: Context) -> None:
    src = ensure_component(context, "libdispatch")
    apply_substitutions(src, LIBFIREHOSE_SUBSTITUTIONS)

    xcodebuild(
        "install",
        "-target", "libfirehose_kernel",
        f"ARCHS={FIREHOSE_ARCHS}",
        f"VALID_ARCHS={FIREHOSE_ARCHS}",
        *context.object_roots("libfirehose_kernel"),
        *context.build_variables(),
        cwd=src,
    )  # fmt: skip

    # The target's product name gets the lib prefix added a second time.
    libdir = context.fakeroot / "usr/local/lib/kernel"
    os.replace(libdir / "liblibfirehose_kernel.a", libdir / "libfirehose_kernel.a")


def build_xnu(context: Context) -> None:
    require_kdk(context)

    if context.config.json_compilation_database:
        build_compilation_database(context)
        return

    logging.info(f'TARGET_CONFIGS="{context.target.target_configs}"')

    src = context.component("xnu")
    run(
        [
            "make", "install", jobs(),
            "VERBOSE=YES",
            "SDKROOT=macosx",
            f"TARGET_CONFIGS={context.target.target_configs}",
            "CONCISE=0",
            "LOGCOLORS=y",
            "BUILD_WERROR=0",
            "BUILD_LTO=0",
            f"SRCROOT={src}",
            *context.object_roots("xnu"),
            *context.build_variables(),
            *kernel_variables(context),
        ],
        cwd=src,
    )  # fmt: skip


def build_compilation_database(context: Context) -> None:
    src = context.component("xnu")
    objroot = context.build_dir / "xnu-compiledb.obj"

    for d in (objroot, context.build_dir / "xnu-compiledb.sym"):
        shutil.rmtree(d, ignore_errors=True)

    # Only the compilation database is of interest here, which is written out before the build gets to the
    # point where it might fail, so don't let a failing build stop us.
    result = run(
        [
            "make",
            "SDKROOT=macosx",
            f"TARGET_CONFIGS={context.target.target_configs}",
            "LOGCOLORS=y",
            "BUILD_WERROR=0",
            "BUILD_LTO=0",
            "BUILD_JSON_COMPILATION_DATABASE=1",
            f"SRCROOT={src}",
            *context.object_roots("xnu-compiledb"),
            *context.build_variables(),
            *kernel_variables(context),
        ],
        cwd=src,
        check=False,
    )

    if result.returncode != 0:
        logging.warning(f"xnu build exited with status {result.returncode}, looking for the database anyway")

    database = find_in_tree(objroot, "compile_commands.json")
    if not database:
        raise StageFailed("xnu", result.returncode)

    save_compilation_database(context, database, src)


def fakeroot_path(path: str) -> Callable[[Context], Path]:
    return lambda context: context.fakeroot / path


# Every stage installs into the fakeroot what the later ones compile against, so the order matters.
STAGES = (
    Stage(
        "bootstrap_cmds",
        "Building bootstrap commands",
        sentinel=fakeroot_path("mig"),
        anywhere=True,
        build=build_bootstrap_cmds,
    ),
    Stage(
        "dtrace",
        "Building DTrace",
        sentinel=fakeroot_path("ctfmerge"),
        anywhere=True,
        build=build_dtrace,
    ),
    Stage(
        "AvailabilityVersions",
        "Building availability versions",
        sentinel=fakeroot_path("availability.pl"),
        anywhere=True,
        build=build_availability_versions,
    ),
    Stage(
        "xnu_headers",
        "Making XNU headers",
        sentinel=fakeroot_path(XNU_HEADERS_SENTINEL),
        build=install_xnu_headers,
    ),
    Stage(
        "Libsystem",
        "Making libsystem headers",
        sentinel=fakeroot_path("System/Library/Frameworks/System.framework"),
        build=install_libsystem_headers,
    ),
    Stage(
        "libsyscall",
        "Making libsyscall headers",
        sentinel=fakeroot_path("usr/include/os/proc.h"),
        build=install_libsyscall_headers,
    ),
    Stage(
        "libplatform",
        "Building libplatform",
        sentinel=fakeroot_path("usr/local/include/_simple.h"),
        build=build_libplatform,
    ),
    Stage(
        "libdispatch",
        "Building libdispatch",
        sentinel=fakeroot_path("usr/local/lib/kernel/libfirehose_kernel.a"),
        build=build_libdispatch,
    ),
    Stage(
        "xnu",
        "Building XNU",
        sentinel=lambda context: context.kernel,
        build=build_xnu,
    ),
)
