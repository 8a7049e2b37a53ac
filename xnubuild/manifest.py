# SPDX-License-Identifier: LGPL-2.1-or-later

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Callable

from xnubuild.config import Release
from xnubuild.errors import ComponentNotFound, ManifestUnavailable, ToolkitFetchFailed

KDK_MANIFEST_URL = "https://raw.githubusercontent.com/dortania/KdkSupportPkg/gh-pages/manifest.json"

FetchCallback = Callable[[str], Any]


def fetch_manifest(url: str, timeout: float = 60) -> Any:
    """Download and decode a JSON document."""
    logging.debug(f"Fetching {url}")

    try:
        with urllib.request.urlopen(url, timeout=timeout) as r:
            return json.load(r)
    except (urllib.error.URLError, OSError) as e:
        raise ManifestUnavailable(f"Failed to fetch {url}: {e}") from e
    except ValueError as e:
        raise ManifestUnavailable(f"Failed to parse {url}: {e}") from e


def parse_manifest(url: str, document: Any) -> dict[str, str]:
    projects = document.get("projects") if isinstance(document, dict) else None

    if not isinstance(projects, list):
        raise ManifestUnavailable(f"Release manifest {url} does not list any projects")

    return {
        p["project"]: p["tag"]
        for p in projects
        if isinstance(p, dict) and "project" in p and "tag" in p
    }


def resolve(release: Release, component: str, *, fetch: FetchCallback = fetch_manifest) -> str:
    """Look up the source tag of @component in the release manifest of @release.

    The manifest is fetched anew on every call, nothing is cached between calls.
    """
    tags = parse_manifest(release.manifest_url, fetch(release.manifest_url))

    if component not in tags:
        raise ComponentNotFound(component, release.manifest_url)

    return tags[component]


def lookup_kdk_url(kdk_name: str, *, fetch: FetchCallback = fetch_manifest) -> str:
    try:
        kdks = fetch(KDK_MANIFEST_URL)
    except ManifestUnavailable as e:
        raise ToolkitFetchFailed(str(e)) from e

    if isinstance(kdks, list):
        for kdk in kdks:
            if isinstance(kdk, dict) and kdk.get("name") == kdk_name and kdk.get("url"):
                return str(kdk["url"])

    raise ToolkitFetchFailed(f"{kdk_name} is not listed in {KDK_MANIFEST_URL}")
