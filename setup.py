#!/usr/bin/python3
# SPDX-License-Identifier: LGPL-2.1-or-later

from setuptools import find_packages, setup

setup(
    name="xnubuild",
    version="1",
    description="Build the macOS XNU kernel and its dependencies from source",
    maintainer="xnubuild contributors",
    license="LGPLv2+",
    python_requires=">=3.9",
    packages = find_packages(".", exclude=["tests"]),
    entry_points = { "console_scripts": ["xnubuild = xnubuild.__main__:main"] },
    extras_require = { "test": ["pytest"] },
)
