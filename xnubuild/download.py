# SPDX-License-Identifier: LGPL-2.1-or-later

import concurrent.futures
import dataclasses
import http.client
import logging
import os
import shutil
import threading
import time
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Callable, Optional

from xnubuild.errors import ToolkitFetchFailed
from xnubuild.log import complete_step

# Small enough that a cancelled download notices quickly.
CHUNK_SIZE = 64 * 1024

Opener = Callable[..., Any]

# Errors after which a transfer is worth retrying. HTTPError is a subclass of URLError so 4xx responses are
# retried as well, which is harmless as the number of attempts is bounded.
TRANSIENT_ERRORS = (urllib.error.URLError, http.client.HTTPException, OSError)


class DownloadCancelled(Exception):
    pass


@dataclasses.dataclass(frozen=True)
class Segment:
    index: int
    start: int
    # Inclusive, like the HTTP Range header.
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start + 1


def part_path(dest: Path, index: int) -> Path:
    return dest.with_name(f"{dest.name}.part{index}")


def split(length: int, segments: int) -> list[Segment]:
    segments = max(1, min(segments, length))
    size, rest = divmod(length, segments)

    result = []
    start = 0
    for i in range(segments):
        n = size + (1 if i < rest else 0)
        result += [Segment(i, start, start + n - 1)]
        start += n

    return result


def query_size(url: str, *, timeout: float, urlopen: Opener) -> tuple[Optional[int], bool]:
    """Return the size of the resource at @url and whether the server supports byte ranges."""
    request = urllib.request.Request(url, method="HEAD")

    with urlopen(request, timeout=timeout) as r:
        length = r.headers.get("Content-Length")
        ranges = r.headers.get("Accept-Ranges", "").lower() == "bytes"

    return (int(length) if length else None), ranges


def with_retries(
    fn: Callable[[], Any],
    *,
    what: str,
    retries: int,
    backoff: float,
    cancel: Optional[threading.Event] = None,
) -> Any:
    for attempt in range(retries + 1):
        try:
            return fn()
        except TRANSIENT_ERRORS as e:
            if attempt == retries:
                raise ToolkitFetchFailed(f"Failed to download {what} after {retries + 1} attempts: {e}") from e

            delay = backoff * 2**attempt
            logging.warning(f"Downloading {what} failed ({e}), retrying in {delay:.0f}s")
            if cancel is None:
                time.sleep(delay)
            elif cancel.wait(delay):
                raise DownloadCancelled(what) from e


def fetch_segment(
    url: str,
    dest: Path,
    segment: Segment,
    *,
    timeout: float,
    urlopen: Opener,
    cancel: Optional[threading.Event] = None,
) -> None:
    part = part_path(dest, segment.index)
    have = part.stat().st_size if part.exists() else 0

    if have >= segment.size:
        return

    request = urllib.request.Request(url, headers={"Range": f"bytes={segment.start + have}-{segment.end}"})

    with urlopen(request, timeout=timeout) as r:
        if r.status != 206:
            raise http.client.HTTPException(f"Expected partial content for {request.headers}, got {r.status}")

        with part.open("ab") as f:
            while have < segment.size:
                if cancel is not None and cancel.is_set():
                    raise DownloadCancelled(f"{dest.name} (segment {segment.index})")

                chunk = r.read(min(CHUNK_SIZE, segment.size - have))
                if not chunk:
                    break

                f.write(chunk)
                have += len(chunk)

    if have < segment.size:
        raise http.client.IncompleteRead(b"", segment.size - have)


def fetch_whole(url: str, dest: Path, *, timeout: float, urlopen: Opener) -> None:
    # Without range support there is nothing to resume from so always start over.
    part = part_path(dest, 0)

    with urlopen(url, timeout=timeout) as r, part.open("wb") as f:
        shutil.copyfileobj(r, f, CHUNK_SIZE)


def assemble(dest: Path, count: int, length: Optional[int]) -> None:
    tmp = dest.with_name(f"{dest.name}.tmp")

    with tmp.open("wb") as f:
        for i in range(count):
            with part_path(dest, i).open("rb") as p:
                shutil.copyfileobj(p, f, CHUNK_SIZE)

    if length is not None and (size := tmp.stat().st_size) != length:
        tmp.unlink()
        raise ToolkitFetchFailed(f"Downloaded {size} bytes of {dest.name} but expected {length}")

    os.replace(tmp, dest)

    for i in range(count):
        part_path(dest, i).unlink()


def download(
    url: str,
    dest: Path,
    *,
    segments: int = 4,
    retries: int = 5,
    backoff: float = 3,
    timeout: float = 60,
    urlopen: Opener = urllib.request.urlopen,
) -> Path:
    """Download @url to @dest using several concurrent byte-range segments.

    Every segment is written to its own dest.partN file which is appended to on later attempts, so an
    interrupted download picks up where it stopped instead of starting from scratch. The final file only
    appears once all segments are complete.
    """
    if dest.exists():
        return dest

    dest.parent.mkdir(parents=True, exist_ok=True)

    length, ranges = with_retries(
        lambda: query_size(url, timeout=timeout, urlopen=urlopen),
        what=url,
        retries=retries,
        backoff=backoff,
    )

    with complete_step(f"Downloading {url} to {dest}"):
        if not length or not ranges:
            with_retries(
                lambda: fetch_whole(url, dest, timeout=timeout, urlopen=urlopen),
                what=dest.name,
                retries=retries,
                backoff=backoff,
            )
            assemble(dest, 1, length)
            return dest

        parts = split(length, segments)

        cancel = threading.Event()
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=len(parts))

        # The segments have to be told to stop before the pool is shut down, otherwise an interrupt only
        # takes effect once the whole file has been fetched.
        try:
            futures = [
                pool.submit(
                    with_retries,
                    lambda s=s: fetch_segment(url, dest, s, timeout=timeout, urlopen=urlopen, cancel=cancel),
                    what=f"{dest.name} (segment {s.index})",
                    retries=retries,
                    backoff=backoff,
                    cancel=cancel,
                )
                for s in parts
            ]

            concurrent.futures.wait(futures)
        except BaseException:
            # Whatever the segments wrote so far stays in the part files for the next attempt.
            cancel.set()
            raise
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        # Only surface the first failure once every segment has finished so that the progress of the other
        # segments is kept on disk for the next attempt.
        for f in futures:
            f.result()

        assemble(dest, len(parts), length)

    return dest
