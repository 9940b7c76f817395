#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
zlsup_release.py — find the ZLS release that matches the local zig

Features:
 - read the installed toolchain version (``zig version``)
 - build the select-version API query
 - map the host to the release platform key ("linux-x86_64", ...)
 - pick the tarball URL out of the API JSON
"""

from __future__ import annotations
import sys
import json
import platform
import subprocess
import urllib.parse
from typing import Any, Dict, Optional

from zlsup_errors import InvalidResponse, TarballNotFound, ToolchainNotFound, UnsupportedPlatform
from zlsup_logger import get_logger

LOG = get_logger("release")

SIGNATURE_SUFFIX = ".minisig"

_OS_NAMES = {
    "darwin": "macos",
    "linux": "linux",
    "freebsd": "freebsd",
    "win32": "windows",
}

_ARCH_NAMES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv7l": "armv7a",
    "armv7": "armv7a",
    "arm": "armv7a",
    "riscv64": "riscv64",
}


def get_zig_version(zig: str = "zig", timeout: float = 30.0) -> str:
    """Run ``zig version`` and return its trimmed output."""
    try:
        proc = subprocess.run([zig, "version"], capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise ToolchainNotFound(f"{zig} not found on PATH") from e
    except subprocess.TimeoutExpired as e:
        raise ToolchainNotFound(f"'{zig} version' did not finish in {timeout}s") from e
    if proc.returncode != 0:
        raise ToolchainNotFound(f"'{zig} version' failed (rc={proc.returncode}): {proc.stderr.strip()}")
    version = proc.stdout.strip()
    if not version:
        raise ToolchainNotFound(f"'{zig} version' printed nothing")
    return version


def platform_key(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    system = system if system is not None else sys.platform
    machine = (machine if machine is not None else platform.machine()).lower()
    os_name = next((v for k, v in _OS_NAMES.items() if system.startswith(k)), None)
    arch = _ARCH_NAMES.get(machine)
    if os_name is None or arch is None:
        raise UnsupportedPlatform(f"no ZLS builds for {system}/{machine}")
    return f"{os_name}-{arch}"


def build_select_url(api_url: str, zig_version: str, compatibility: str = "only-runtime") -> str:
    query = urllib.parse.urlencode({"zig_version": zig_version, "compatibility": compatibility})
    return f"{api_url}?{query}"


def parse_tarball_url(json_text: str, key: str) -> str:
    """
    Pick ``<key>.tarball`` out of the select-version response.
    The API reports failures as an object carrying a "code" field.
    """
    try:
        doc: Any = json.loads(json_text)
    except ValueError as e:
        raise InvalidResponse(f"select-version response is not JSON: {e}") from e
    if not isinstance(doc, dict):
        raise InvalidResponse("select-version response is not a JSON object")
    if "code" in doc:
        raise InvalidResponse(f"select-version API error {doc['code']}: {doc.get('message', 'no message')}")

    entry = doc.get(key)
    if not isinstance(entry, dict):
        raise UnsupportedPlatform(f"release {doc.get('version', '?')} has no build for {key}")
    tarball = entry.get("tarball")
    if not isinstance(tarball, str) or not tarball:
        raise TarballNotFound(f"release entry for {key} has no tarball URL")
    LOG.debug("release %s for %s: %s", doc.get("version", "?"), key, tarball)
    return tarball


def release_info(json_text: str, key: str) -> Dict[str, Any]:
    """Tarball URL, signature URL and version in one dict."""
    url = parse_tarball_url(json_text, key)
    doc = json.loads(json_text)
    return {
        "version": doc.get("version"),
        "tarball": url,
        "signature": signature_url(url),
    }


def signature_url(tarball_url: str) -> str:
    return tarball_url + SIGNATURE_SUFFIX


__all__ = ["get_zig_version", "platform_key", "build_select_url", "parse_tarball_url",
           "release_info", "signature_url"]
