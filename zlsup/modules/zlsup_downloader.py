#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
zlsup_downloader.py — HTTP fetcher for zlsup

Features:
 - fetch_bytes / fetch_text over requests with a caller-supplied timeout
 - optional overall deadline (total_timeout) on top of the per-read timeout
 - timeouts reported as DownloadTimeout, everything else as DownloadFailed
 - size cap on downloaded bodies
 - progress bars with tqdm
 - no retries: the caller decides whether to run again
"""

from __future__ import annotations
import io
import sys
import time
from typing import Optional

import requests
from tqdm import tqdm
from urllib3.exceptions import ReadTimeoutError

from zlsup_errors import DownloadFailed, DownloadTimeout
from zlsup_logger import get_logger

LOG = get_logger("downloader")

CHUNK_SIZE = 1024 * 64
USER_AGENT = "zlsup/0.1"


def _read_timed_out(exc: requests.ConnectionError) -> bool:
    # requests re-raises urllib3's ReadTimeoutError from iter_content as a ConnectionError
    return any(isinstance(arg, ReadTimeoutError) for arg in exc.args)


def fetch_bytes(url: str, timeout: float = 30.0, max_bytes: int = 0, progress: bool = False,
                total_timeout: Optional[float] = None) -> bytes:
    """
    GET ``url`` and return the body.
    timeout: limit for connecting and for each socket read
    total_timeout: limit for the whole transfer, checked between chunks (None = no limit)
    max_bytes: abort once the body grows past this (0 = no limit)
    progress: draw a tqdm bar on stderr
    """
    LOG.debug("GET %s (timeout=%ss, total_timeout=%ss)", url, timeout, total_timeout)
    deadline = time.monotonic() + total_timeout if total_timeout else None
    buf = io.BytesIO()
    try:
        with requests.get(url, stream=True, timeout=timeout, headers={"User-Agent": USER_AGENT}) as r:
            if r.status_code != 200:
                raise DownloadFailed(f"GET {url} returned HTTP {r.status_code}")
            total = int(r.headers.get("Content-Length") or 0)
            if max_bytes and total > max_bytes:
                raise DownloadFailed(f"{url} is {total} bytes, limit is {max_bytes}")
            pbar = tqdm(total=total or None, unit="B", unit_scale=True,
                        desc=url.rsplit("/", 1)[-1], file=sys.stderr, disable=not progress)
            with pbar:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    if deadline is not None and time.monotonic() > deadline:
                        raise DownloadTimeout(
                            f"GET {url} did not finish within {total_timeout}s ({buf.tell()} bytes read)")
                    if not chunk:
                        continue
                    buf.write(chunk)
                    if max_bytes and buf.tell() > max_bytes:
                        raise DownloadFailed(f"{url} exceeded the limit of {max_bytes} bytes")
                    pbar.update(len(chunk))
    except requests.Timeout as e:
        raise DownloadTimeout(f"GET {url} timed out after {timeout}s") from e
    except requests.ConnectionError as e:
        if _read_timed_out(e):
            raise DownloadTimeout(f"GET {url} stalled for {timeout}s after {buf.tell()} bytes") from e
        raise DownloadFailed(f"GET {url} failed: {e}") from e
    except requests.RequestException as e:
        raise DownloadFailed(f"GET {url} failed: {e}") from e
    LOG.info("downloaded %s (%d bytes)", url, buf.tell())
    return buf.getvalue()


def fetch_text(url: str, timeout: float = 30.0, max_bytes: int = 1024 * 1024, encoding: Optional[str] = "utf-8",
               total_timeout: Optional[float] = None) -> str:
    """GET ``url`` and decode it as text (signature files, JSON metadata)."""
    data = fetch_bytes(url, timeout=timeout, max_bytes=max_bytes, total_timeout=total_timeout)
    try:
        return data.decode(encoding or "utf-8")
    except UnicodeDecodeError as e:
        raise DownloadFailed(f"{url} is not valid {encoding} text: {e}") from e


__all__ = ["fetch_bytes", "fetch_text"]
