# SPDX-License-Identifier: LGPL-2.1-or-later

import importlib.metadata
import os


def version_from_metadata() -> str:
    if v := os.getenv("XNUBUILD_VERSION"):
        return v

    try:
        return importlib.metadata.version("xnubuild")
    except importlib.metadata.PackageNotFoundError:
        return "0"


__version__ = version_from_metadata()
