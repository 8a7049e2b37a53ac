# SPDX-License-Identifier: LGPL-2.1-or-later

import argparse
import dataclasses
import enum
import logging
import os
import textwrap
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Callable, Optional

from xnubuild._version import __version__
from xnubuild.architecture import Architecture
from xnubuild.errors import InvalidReleaseIdentifier
from xnubuild.log import Style, die
from xnubuild.util import StrEnum
from xnubuild.versioncomp import ReleaseVersion

RELEASE_MANIFEST_URL = "https://raw.githubusercontent.com/apple-oss-distributions/distribution-macOS/macos-{tag}/release.json"  # noqa: E501
DEFAULT_KC_FILTER = "com.apple.driver.SEPHibernation"
DEFAULT_KDK_DIR = Path("/Library/Developer/KDKs")
DEFAULT_MACHINE_CONFIG = "VMAPPLE"


class KernelConfig(StrEnum):
    RELEASE     = "RELEASE"
    DEVELOPMENT = "DEVELOPMENT"
    DEBUG       = "DEBUG"
    KASAN       = "KASAN"


class CleanMode(StrEnum):
    full    = enum.auto()
    partial = enum.auto()


@dataclasses.dataclass(frozen=True)
class Release:
    version: str
    build: str
    darwin_kernel_version: str

    @property
    def manifest_url(self) -> str:
        return RELEASE_MANIFEST_URL.format(tag=self.version.replace(".", ""))

    @property
    def kdk_name(self) -> str:
        return f"Kernel Debug Kit {self.version} build {self.build}"

    @property
    def kdk_folder_name(self) -> str:
        return f"{self.version}_{self.build}"

    def uses_split_patch_set(self) -> bool:
        # Starting with 14.4 the patches live in their own subdirectory as the xnu sources diverged too much
        # for the older ones to apply.
        return ReleaseVersion(self.version) >= "14.4"


RELEASES = {
    r.version: r
    for r in (
        Release("12.5", "21G72",  "22.6.0"),
        Release("13.0", "22A380", "22.1.0"),
        Release("13.1", "22C65",  "22.2.0"),
        Release("13.2", "22D49",  "22.3.0"),
        Release("13.3", "22E252", "22.4.0"),
        Release("13.4", "22F66",  "22.5.0"),
        Release("13.5", "22G74",  "22.6.0"),
        Release("14.0", "23A344", "23.0.0"),
        Release("14.1", "23B74",  "23.1.0"),
        Release("14.2", "23C64",  "23.2.0"),
        Release("14.3", "23D56",  "23.3.0"),
        Release("14.4", "23E214", "23.4.0"),
        Release("14.5", "23F79",  "23.5.0"),
        Release("14.6", "23G80",  "23.6.0"),
    )
}  # fmt: skip


def find_release(version: str) -> Release:
    try:
        return RELEASES[version.strip()]
    except KeyError:
        raise InvalidReleaseIdentifier(
            f"Invalid macOS version {version!r}, expected one of {', '.join(RELEASES)}"
        )


@dataclasses.dataclass(frozen=True)
class BuildTarget:
    kernel_config: KernelConfig
    architecture: Architecture
    machine_config: str
    release: str

    @property
    def kc_variant(self) -> str:
        return str(self.kernel_config).lower()

    @property
    def kernel_type(self) -> str:
        return f"{self.kc_variant}.{self.machine_config.lower()}"

    @property
    def target_configs(self) -> str:
        return f"{self.kernel_config} {self.architecture} {self.machine_config}"

    @property
    def build_suffix(self) -> str:
        return "_".join(
            (
                str(self.architecture).lower(),
                self.machine_config.lower(),
                self.kc_variant,
                self.release.replace(".", "_"),
            )
        )


@dataclasses.dataclass(frozen=True)
class Args:
    directory: Path
    clean: Optional[CleanMode]
    debug: bool


@dataclasses.dataclass(frozen=True)
class Config:
    work_dir: Path
    kernel_config: KernelConfig
    architecture: Architecture
    machine_config: str
    release: Optional[Release]
    json_compilation_database: bool
    build_kernel_collection: bool
    pristine_sources: bool
    kc_filter: str
    kdk_dir: Path

    def target(self) -> BuildTarget:
        assert self.release is not None
        return BuildTarget(self.kernel_config, self.architecture, self.machine_config, self.release.version)


def try_parse_boolean(s: str) -> Optional[bool]:
    "Parse 1/true/yes/y/t/on as true and 0/false/no/n/f/off/None as false"

    s_l = s.lower()
    if s_l in {"1", "true", "yes", "y", "t", "on", "always"}:
        return True

    if s_l in {"0", "false", "no", "n", "f", "off", "never"}:
        return False

    return None


def parse_boolean(s: str) -> bool:
    value = try_parse_boolean(s)

    if value is None:
        die(f"Invalid boolean literal: {s!r}")

    return value


@dataclasses.dataclass(frozen=True)
class EnvironmentSetting:
    """An option read from the environment, documented in --help."""

    name: str
    dest: str
    default: Any
    help: str
    parse: Callable[[str], Any] = str


def parse_kernel_config(value: str) -> KernelConfig:
    try:
        return KernelConfig(value.upper())
    except ValueError:
        die(f"Invalid kernel configuration {value!r}", hint=f"Use one of {', '.join(KernelConfig.values())}")


def parse_architecture(value: str) -> Architecture:
    try:
        return Architecture.from_config(value)
    except ValueError as e:
        die(str(e))


ENVIRONMENT_SETTINGS = (
    EnvironmentSetting(
        "KERNEL_CONFIG",
        dest="kernel_config",
        default=KernelConfig.RELEASE,
        parse=parse_kernel_config,
        help="Kernel configuration to build (RELEASE, DEVELOPMENT, DEBUG, KASAN)",
    ),
    EnvironmentSetting(
        "ARCH_CONFIG",
        dest="architecture",
        default=Architecture.ARM64,
        parse=parse_architecture,
        help="Kernel architecture (ARM64, X86_64)",
    ),
    EnvironmentSetting(
        "MACHINE_CONFIG",
        dest="machine_config",
        default=DEFAULT_MACHINE_CONFIG,
        parse=lambda s: s.upper(),
        help="Machine configuration of the kernel",
    ),
    EnvironmentSetting(
        "MACOS_VERSION",
        dest="release",
        default=None,
        help="macOS release to build the kernel of, prompted for if unset",
    ),
    EnvironmentSetting(
        "JSONDB",
        dest="json_compilation_database",
        default=False,
        parse=parse_boolean,
        help="Generate a JSON compilation database instead of building the kernel",
    ),
    EnvironmentSetting(
        "BUILDKC",
        dest="build_kernel_collection",
        default=False,
        parse=parse_boolean,
        help="Create a kernel collection after building the kernel",
    ),
    EnvironmentSetting(
        "CODEQL",
        dest="pristine_sources",
        default=False,
        parse=parse_boolean,
        help="Leave the xnu sources unpatched, e.g. to create a CodeQL database",
    ),
    EnvironmentSetting(
        "KC_FILTER",
        dest="kc_filter",
        default=DEFAULT_KC_FILTER,
        help="Regular expression of kernel extensions to leave out of the kernel collection",
    ),
    EnvironmentSetting(
        "KDK_DST_DIR",
        dest="kdk_dir",
        default=DEFAULT_KDK_DIR,
        parse=Path,
        help="Directory the Kernel Debug Kit is installed to",
    ),
)


def parse_environment(environ: Mapping[str, str]) -> dict[str, Any]:
    settings = {}

    for s in ENVIRONMENT_SETTINGS:
        value = environ.get(s.name)
        settings[s.dest] = s.parse(value) if value else s.default

    return settings


def prompt_release(input: Callable[[str], str] = input) -> str:
    logging.info(f"Choose {Style.bold}macOS{Style.reset} version to build:")
    for version in RELEASES:
        logging.info(f"  {version}")

    try:
        return input("macOS version: ").strip()
    except EOFError:
        raise InvalidReleaseIdentifier("No macOS version given and no terminal to prompt on")


def parse_chdir(path: str) -> Optional[Path]:
    if not path:
        # The current directory should be ignored
        return None

    p = Path(path)
    if not p.is_dir():
        die(f"{path} is not a directory!")

    return p.absolute()


def create_argument_parser() -> argparse.ArgumentParser:
    environment = "\n".join(
        f"  {s.name:<15} {s.help}" + (f" (default: {s.default})" if s.default not in (None, False) else "")
        for s in ENVIRONMENT_SETTINGS
    )

    parser = argparse.ArgumentParser(
        prog="xnubuild",
        description="Build the macOS XNU kernel and its dependencies from source",
        epilog=textwrap.dedent(
            """\
            Environment variables:
            {environment}
            """
        ).format(environment=environment),
        allow_abbrev=False,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s " + __version__,
    )
    parser.add_argument(
        "-C",
        "--directory",
        type=parse_chdir,
        default=Path.cwd(),
        help="Work directory holding sources, build output and the fakeroot",
        metavar="PATH",
    )
    clean = parser.add_mutually_exclusive_group()
    clean.add_argument(
        "-c",
        "--clean",
        action="store_const",
        const=CleanMode.full,
        dest="clean",
        help="Remove build artifacts and cloned repositories",
    )
    clean.add_argument(
        "--clean-partial",
        action="store_const",
        const=CleanMode.partial,
        dest="clean",
        help="Remove build artifacts only",
    )
    parser.add_argument(
        "-k",
        "--kc",
        action="store_true",
        dest="build_kernel_collection",
        default=None,
        help="Create a kernel collection (via kmutil create)",
    )
    parser.add_argument(
        "--kdk-dirs",
        type=Path,
        dest="kdk_dir",
        default=None,
        help="Override the default Kernel Debug Kit installation location",
        metavar="PATH",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Turn on debugging output",
    )

    return parser


def parse_config(
    argv: Sequence[str] = (),
    *,
    environ: Mapping[str, str] = os.environ,
    prompt: Callable[[], str] = prompt_release,
) -> tuple[Args, Config]:
    ns = create_argument_parser().parse_args(argv)

    args = Args(
        directory=ns.directory or Path.cwd(),
        clean=ns.clean,
        debug=ns.debug,
    )

    settings = parse_environment(environ)

    # Command line options take precedence over the environment.
    if ns.build_kernel_collection:
        settings["build_kernel_collection"] = True
    if ns.kdk_dir:
        settings["kdk_dir"] = ns.kdk_dir

    # Cleaning doesn't need to know the release so don't prompt for it in that case.
    release = None
    if not args.clean:
        release = find_release(settings["release"] or prompt())

    settings["release"] = release

    return args, Config(work_dir=args.directory, **settings)
