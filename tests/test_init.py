# SPDX-License-Identifier: LGPL-2.1-or-later

from pathlib import Path
from typing import Any, NoReturn

import pytest

from xnubuild import clean_paths, run_build, run_clean
from xnubuild.config import Args, CleanMode, Config
from xnubuild.errors import MissingPrecondition, WorkspaceCorruption

from . import make_config


def populate(work_dir: Path) -> None:
    for d in ("build_arm64_vmapple_release_14_4", "build_x86_64_vmapple_kasan_13_0", "fakeroot/usr", "sources/xnu-1", "patches"):  # noqa: E501
        (work_dir / d).mkdir(parents=True)

    (work_dir / "xnu").symlink_to(work_dir / "sources/xnu-1")
    (work_dir / "log.txt").write_text("")


def clean(work_dir: Path, mode: CleanMode, reply: str) -> list[Path]:
    args = Args(directory=work_dir, clean=mode, debug=False)
    config = make_config(work_dir, release=None)
    return run_clean(args, config, confirm=lambda prompt: reply)


def test_clean_paths(tmp_path: Path) -> None:
    populate(tmp_path)

    partial = [
        tmp_path / "build",
        tmp_path / "build_arm64_vmapple_release_14_4",
        tmp_path / "build_x86_64_vmapple_kasan_13_0",
        tmp_path / "fakeroot",
    ]

    assert clean_paths(tmp_path, CleanMode.partial) == partial
    full = clean_paths(tmp_path, CleanMode.full)
    assert full[: len(partial)] == partial
    assert tmp_path / "xnu" in full
    assert tmp_path / "libdispatch" in full
    assert full[-1] == tmp_path / "sources"


def test_clean_declined(tmp_path: Path) -> None:
    populate(tmp_path)

    assert clean(tmp_path, CleanMode.full, "n") == []
    assert clean(tmp_path, CleanMode.full, "") == []
    assert (tmp_path / "fakeroot").exists()
    assert (tmp_path / "xnu").is_symlink()


def test_clean_full(tmp_path: Path) -> None:
    populate(tmp_path)

    clean(tmp_path, CleanMode.full, "y")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["log.txt", "patches"]


def test_clean_partial(tmp_path: Path) -> None:
    populate(tmp_path)

    clean(tmp_path, CleanMode.partial, "Y")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["log.txt", "patches", "sources", "xnu"]
    assert (tmp_path / "xnu").is_symlink()


def test_clean_without_terminal(tmp_path: Path) -> None:
    populate(tmp_path)

    def eof(prompt: str) -> str:
        raise EOFError()

    args = Args(directory=tmp_path, clean=CleanMode.full, debug=False)
    assert run_clean(args, make_config(tmp_path, release=None), confirm=eof) == []
    assert (tmp_path / "fakeroot").exists()


def fail(*args: Any, **kwargs: Any) -> NoReturn:
    pytest.fail("Provisioning started")


def test_build_refuses_corrupt_workspace(config: Config, monkeypatch: pytest.MonkeyPatch) -> None:
    (config.work_dir / "dtrace").mkdir(parents=True)
    monkeypatch.setattr("xnubuild.ensure_kdk", fail)
    monkeypatch.setattr("xnubuild.ensure_component", fail)

    with pytest.raises(WorkspaceCorruption):
        run_build(config)


def test_build_kernel_collection_needs_ipsw(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = make_config(tmp_path / "work", build_kernel_collection=True)
    monkeypatch.setattr("xnubuild.find_binary", lambda *names: None)
    monkeypatch.setattr("xnubuild.ensure_kdk", fail)

    with pytest.raises(MissingPrecondition):
        run_build(config)


def test_build(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = make_config(tmp_path / "work", build_kernel_collection=True)
    steps: list[str] = []

    monkeypatch.setattr("xnubuild.find_binary", lambda *names: "/usr/local/bin/ipsw")
    monkeypatch.setattr("xnubuild.ensure_kdk", lambda context: steps.append("kdk"))
    monkeypatch.setattr("xnubuild.ensure_component", lambda context, name: steps.append(name))
    monkeypatch.setattr("xnubuild.patch_xnu", lambda context: steps.append("patch"))
    monkeypatch.setattr("xnubuild.Pipeline.run", lambda self, context: steps.append("stages") or [])
    monkeypatch.setattr("xnubuild.compose", lambda context: steps.append("kc") or [])

    assert run_build(config) == []
    assert steps == ["kdk", "xnu", "patch", "stages", "kc"]
    assert (config.work_dir / "fakeroot").is_dir()

    log = (config.work_dir / "log.txt").read_text()
    assert "Getting XNU sources" in log
    assert "XNU Build Done" in log


def test_build_restores_compilation_database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = make_config(tmp_path / "work")
    xnu = tmp_path / "xnu"
    xnu.mkdir()

    cached = config.work_dir / ".cache/14.4/compile_commands.json"
    cached.parent.mkdir(parents=True)
    cached.write_text("[]")

    monkeypatch.setattr("xnubuild.ensure_kdk", lambda context: None)
    monkeypatch.setattr("xnubuild.ensure_component", lambda context, name: xnu)
    monkeypatch.setattr("xnubuild.patch_xnu", lambda context: [])
    monkeypatch.setattr("xnubuild.Pipeline.run", lambda self, context: [])

    assert not config.json_compilation_database
    run_build(config)

    assert (xnu / "compile_commands.json").read_text() == "[]"
