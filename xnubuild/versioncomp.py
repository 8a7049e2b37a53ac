# SPDX-License-Identifier: LGPL-2.1-or-later

import functools
import itertools
import re


@functools.total_ordering
class ReleaseVersion:
    """Dotted numeric version as printed by sw_vers or used to name macOS releases.

    Comparison pads the shorter version with zeroes, so "13" == "13.0" and "13.0" < "13.0.1". Anything
    following the leading run of digits and dots (e.g. a build suffix such as "beta2") is ignored.
    """

    def __init__(self, version: str):
        self._version = version.strip()

    @property
    def components(self) -> tuple[int, ...]:
        m = re.match(r"\d+(\.\d+)*", self._version)
        if not m:
            return ()

        return tuple(int(c) for c in m.group(0).split("."))

    def major_minor(self) -> "ReleaseVersion":
        return ReleaseVersion(".".join(str(c) for c in (self.components + (0, 0))[:2]))

    @classmethod
    def compare_versions(cls, v1: str, v2: str) -> int:
        a = cls(v1).components
        b = cls(v2).components

        for x, y in itertools.zip_longest(a, b, fillvalue=0):
            if x < y:
                return -1
            if x > y:
                return 1

        return 0

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (str, int, float)):
            other = ReleaseVersion(str(other))
        elif not isinstance(other, ReleaseVersion):
            return False
        return self.compare_versions(self._version, other._version) == 0

    def __lt__(self, other: object) -> bool:
        if isinstance(other, (str, int, float)):
            other = ReleaseVersion(str(other))
        elif not isinstance(other, ReleaseVersion):
            return NotImplemented
        return self.compare_versions(self._version, other._version) < 0

    def __hash__(self) -> int:
        return hash(tuple(reversed(tuple(itertools.dropwhile(lambda c: c == 0, reversed(self.components))))))

    def __str__(self) -> str:
        return self._version

    def __repr__(self) -> str:
        return f"ReleaseVersion({self._version!r})"
