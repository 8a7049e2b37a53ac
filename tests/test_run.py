# SPDX-License-Identifier: LGPL-2.1-or-later

import subprocess

import pytest

from xnubuild.errors import StageFailed
from xnubuild.run import find_binary, run, uncaught_exception_handler


def test_run() -> None:
    assert run(["sh", "-c", "echo hello"], stdout=subprocess.PIPE).stdout == "hello\n"
    assert run(["sh", "-c", "exit 3"], check=False).returncode == 3

    with pytest.raises(subprocess.CalledProcessError) as e:
        run(["sh", "-c", "exit 3"])

    assert e.value.returncode == 3


def test_run_missing_binary() -> None:
    with pytest.raises(SystemExit):
        run(["xnubuild-this-binary-does-not-exist"])


def test_find_binary() -> None:
    assert find_binary("xnubuild-this-binary-does-not-exist") is None
    assert find_binary("xnubuild-this-binary-does-not-exist", "sh")


def test_uncaught_build_error(caplog: pytest.LogCaptureFixture) -> None:
    codes: list[int] = []

    with uncaught_exception_handler(exit=codes.append):  # type: ignore
        raise StageFailed("xnu", 2)

    assert codes == [1]
    assert "Stage xnu failed with exit status 2" in caplog.text


def test_uncaught_process_failure() -> None:
    codes: list[int] = []

    with uncaught_exception_handler(exit=codes.append):  # type: ignore
        raise subprocess.CalledProcessError(4, ["make"])

    assert codes == [4]


def test_success() -> None:
    codes: list[int] = []

    with uncaught_exception_handler(exit=codes.append):  # type: ignore
        pass

    assert codes == [0]
