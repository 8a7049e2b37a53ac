# SPDX-License-Identifier: LGPL-2.1-or-later

import enum
import os
from collections.abc import Sequence
from pathlib import Path
from typing import IO, Any, Optional, Union

# Borrowed from https://github.com/python/typeshed/blob/3d14016085aed8bcf0cf67e9e5a70790ce1ad8ea/stdlib/3/subprocess.pyi#L24
_FILE = Union[None, int, IO[Any]]
PathString = Union[Path, str]


class StrEnum(enum.Enum):
    def __str__(self) -> str:
        assert isinstance(self.value, str)
        return self.value

    # Used by enum.auto() to get the next value.
    @staticmethod
    def _generate_next_value_(name: str, start: int, count: int, last_values: Sequence[str]) -> str:
        return name.replace("_", "-")

    @classmethod
    def values(cls) -> list[str]:
        return list(map(str, cls))


def find_in_tree(root: Path, name: str) -> Optional[Path]:
    """Return the first file called @name below @root, or None if there is none."""
    if not root.exists():
        return None

    for dirpath, dirnames, filenames in os.walk(root):
        if name in filenames:
            return Path(dirpath) / name

        # Sort so repeated lookups return the same match.
        dirnames.sort()

    return None
