# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import shutil
import textwrap
from pathlib import Path

import pytest

from xnubuild.config import RELEASES
from xnubuild.context import Context
from xnubuild.errors import CorruptPatch, MissingPrecondition
from xnubuild.patch import (
    XNU_SUBSTITUTIONS,
    Substitution,
    apply_patches,
    apply_substitutions,
    patch_set,
    patch_xnu,
    select_patch_dir,
)

XNU_FILES = {
    "bsd/sys/make_symbol_aliasing.sh": textwrap.dedent(
        """\
        #!/bin/sh
        AVAILABILITY_PL="${SDKROOT}/${DRIVERKITROOT}/usr/local/libexec/availability.pl"
        """
    ),
    "libsyscall/Libsyscall.xcconfig": textwrap.dedent(
        """\
        #include "<DEVELOPER_DIR>/Makefiles/CoreOS/Xcode/BSD.xcconfig"
        BUILD_VARIANTS = normal
        """
    ),
    "makedefs/MakeInc.def": (
        "LDFLAGS_KERNEL_SDK\t= -L$(SDKROOT)/usr/local/lib/kernel -lfirehose_kernel\n"
        "INCFLAGS_SDK\t= -I$(SDKROOT)/usr/local/include\n"
    ),
    "makedefs/MakeInc.cmd": textwrap.dedent(
        """\
        export MIG := $(shell $(XCRUN) -sdk $(SDKROOT) -find mig)
        export MIGCOM := $(shell $(XCRUN) -sdk $(SDKROOT) -find migcom)
        """
    ),
}

PATCH = textwrap.dedent(
    """\
    diff --git a/hello.txt b/hello.txt
    --- a/hello.txt
    +++ b/hello.txt
    @@ -1 +1 @@
    -hello
    +world
    """
)


def make_tree(root: Path) -> Path:
    for name, content in XNU_FILES.items():
        p = root / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content)

    return root


def read_tree(root: Path) -> dict[str, str]:
    return {name: (root / name).read_text() for name in XNU_FILES}


def test_substitutions(tmp_path: Path) -> None:
    tree = make_tree(tmp_path / "xnu")

    apply_substitutions(tree, XNU_SUBSTITUTIONS)
    files = read_tree(tree)

    assert "SDKROOT" not in files["bsd/sys/make_symbol_aliasing.sh"]
    assert 'AVAILABILITY_PL="${FAKEROOT_DIR}/usr/local/libexec/availability.pl"' in files["bsd/sys/make_symbol_aliasing.sh"]  # noqa: E501
    assert "BSD.xcconfig" not in files["libsyscall/Libsyscall.xcconfig"]
    assert "BUILD_VARIANTS = normal" in files["libsyscall/Libsyscall.xcconfig"]
    assert files["makedefs/MakeInc.def"] == (
        "LDFLAGS_KERNEL_SDK\t= -L$(FAKEROOT_DIR)/usr/local/lib/kernel -lfirehose_kernel\n"
        "INCFLAGS_SDK\t= -I$(FAKEROOT_DIR)/usr/local/include\n"
    )
    assert files["makedefs/MakeInc.cmd"] == textwrap.dedent(
        """\
        export MIG := $(shell find $(FAKEROOT_DIR) -name "mig")
        export MIGCOM := $(shell find $(FAKEROOT_DIR) -name "migcom")
        """
    )


def test_substitutions_idempotent(tmp_path: Path) -> None:
    tree = make_tree(tmp_path / "xnu")

    apply_substitutions(tree, XNU_SUBSTITUTIONS)
    once = read_tree(tree)

    assert not any(s.apply(tree) for s in XNU_SUBSTITUTIONS)
    assert read_tree(tree) == once


def test_substitution_missing_file(tmp_path: Path) -> None:
    with pytest.raises(MissingPrecondition):
        Substitution("makedefs/MakeInc.def", "foo", "bar").apply(tmp_path)


def test_substitution_replacement_is_literal(tmp_path: Path) -> None:
    (tmp_path / "f").write_text("a\n")

    assert Substitution("f", "^a$", r"\1 $(X)").apply(tmp_path)
    assert (tmp_path / "f").read_text() == "\\1 $(X)\n"


def test_patch_dir_selection(tmp_path: Path) -> None:
    assert select_patch_dir(tmp_path, RELEASES["14.4"]) == tmp_path / "14.4"
    assert select_patch_dir(tmp_path, RELEASES["14.6"]) == tmp_path / "14.4"
    assert select_patch_dir(tmp_path, RELEASES["14.3"]) == tmp_path
    assert select_patch_dir(tmp_path, RELEASES["12.5"]) == tmp_path


def test_patch_set(tmp_path: Path) -> None:
    assert patch_set(tmp_path / "missing", RELEASES["14.0"]) == []

    for name in ("b.patch", "a.patch", "README"):
        (tmp_path / name).write_text("")
    (tmp_path / "14.4").mkdir()
    (tmp_path / "14.4/c.patch").write_text("")

    assert patch_set(tmp_path, RELEASES["14.0"]) == [tmp_path / "a.patch", tmp_path / "b.patch"]
    assert patch_set(tmp_path, RELEASES["14.5"]) == [tmp_path / "14.4/c.patch"]


needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@needs_git
def test_apply_patches(tmp_path: Path) -> None:
    tree = tmp_path / "tree"
    tree.mkdir()
    (tree / "hello.txt").write_text("hello\n")

    patch = tmp_path / "0001-hello.patch"
    patch.write_text(PATCH)

    assert apply_patches(tree, [patch]) == [patch]
    assert (tree / "hello.txt").read_text() == "world\n"

    # Already applied patches no longer apply and are skipped.
    assert apply_patches(tree, [patch]) == []
    assert (tree / "hello.txt").read_text() == "world\n"


@needs_git
def test_apply_patches_mismatch(tmp_path: Path) -> None:
    tree = tmp_path / "tree"
    tree.mkdir()
    (tree / "hello.txt").write_text("goodbye\n")

    patch = tmp_path / "0001-hello.patch"
    patch.write_text(PATCH)

    assert apply_patches(tree, [patch]) == []
    assert (tree / "hello.txt").read_text() == "goodbye\n"


@needs_git
def test_apply_patches_corrupt(tmp_path: Path) -> None:
    tree = tmp_path / "tree"
    tree.mkdir()
    (tree / "hello.txt").write_text("hello\n")

    patch = tmp_path / "0001-broken.patch"
    patch.write_text("this is not a patch\n")

    with pytest.raises(CorruptPatch):
        apply_patches(tree, [patch])


def test_patch_xnu_pristine(context: Context, monkeypatch: pytest.MonkeyPatch) -> None:
    context.config = dataclasses.replace(context.config, pristine_sources=True)
    make_tree(context.component("xnu"))
    (context.patches_dir / "14.4").mkdir(parents=True)
    (context.patches_dir / "14.4/0001-hello.patch").write_text(PATCH)

    def fail(*args: object, **kwargs: object) -> None:
        pytest.fail("Applied patches to pristine sources")

    monkeypatch.setattr("xnubuild.patch.apply_patches", fail)

    assert patch_xnu(context) == []
    # The redirections to the fakeroot are needed to build at all so they still happen.
    assert "SDKROOT" not in read_tree(context.component("xnu"))["makedefs/MakeInc.def"]


def test_patch_xnu(context: Context, monkeypatch: pytest.MonkeyPatch) -> None:
    make_tree(context.component("xnu"))
    (context.patches_dir / "14.4").mkdir(parents=True)
    patch = context.patches_dir / "14.4/0001-hello.patch"
    patch.write_text(PATCH)

    applied: list[list[Path]] = []

    def apply(tree: Path, patches: list[Path]) -> list[Path]:
        assert tree == context.component("xnu")
        applied.append(list(patches))
        return list(patches)

    monkeypatch.setattr("xnubuild.patch.apply_patches", apply)

    assert patch_xnu(context) == [patch]
    assert applied == [[patch]]
