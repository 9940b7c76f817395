#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
zlsup_errors.py — exception hierarchy for zlsup

Every failure the install pipeline can report carries a stable ``kind``
string so the CLI (and callers) can tell a forged signature apart from a
corrupt archive or a full disk without parsing messages.
"""

from __future__ import annotations
from typing import Optional


class ZlsupError(Exception):
    """Base exception class for zlsup errors."""
    kind = "Error"


# configuration ---------------------------------------------------------------
class ConfigError(ZlsupError):
    """Raised when a configuration value is missing or has the wrong type."""
    kind = "ConfigError"


class InvalidPublicKey(ConfigError):
    """Raised when the configured public key cannot be decoded."""
    kind = "InvalidPublicKey"


# signature -------------------------------------------------------------------
class InvalidSignatureFormat(ZlsupError):
    """Raised when no decodable signature line exists in the signature text."""
    kind = "InvalidSignatureFormat"


class VerificationFailed(ZlsupError):
    """Raised when the ed25519 check does not pass."""
    kind = "VerificationFailed"


# archive ---------------------------------------------------------------------
class DecompressionFailed(ZlsupError):
    """Raised on a malformed, truncated or oversized gzip stream."""
    kind = "DecompressionFailed"


class TarParseFailed(ZlsupError):
    """Raised when a tar header is impossible or points past the buffer."""
    kind = "TarParseFailed"


class UnsafePath(ZlsupError):
    """Raised when an entry would be written outside the destination root."""
    kind = "UnsafePath"

    def __init__(self, name: str, reason: str):
        super().__init__(f"unsafe entry name {name!r}: {reason}")
        self.name = name
        self.reason = reason


class ExtractionFailed(ZlsupError):
    """Raised when writing an entry to disk fails; wraps the OS error."""
    kind = "ExtractionFailed"

    def __init__(self, path: str, cause: Optional[BaseException] = None):
        msg = f"failed to write {path}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
        self.path = path
        self.cause = cause


class InstallCancelled(ZlsupError):
    """Raised when an external cancel signal stops extraction."""
    kind = "Cancelled"


# download / release ----------------------------------------------------------
class DownloadFailed(ZlsupError):
    kind = "DownloadFailed"


class DownloadTimeout(DownloadFailed):
    kind = "DownloadTimeout"


class InvalidResponse(ZlsupError):
    """Raised when the version-selection API returns an error or bad JSON."""
    kind = "InvalidResponse"


class UnsupportedPlatform(ZlsupError):
    kind = "UnsupportedPlatform"


class TarballNotFound(ZlsupError):
    kind = "TarballNotFound"


class ToolchainNotFound(ZlsupError):
    """Raised when ``zig version`` cannot be run."""
    kind = "ToolchainNotFound"


__all__ = [
    "ZlsupError", "ConfigError", "InvalidPublicKey",
    "InvalidSignatureFormat", "VerificationFailed",
    "DecompressionFailed", "TarParseFailed", "UnsafePath", "ExtractionFailed",
    "InstallCancelled", "DownloadFailed", "DownloadTimeout",
    "InvalidResponse", "UnsupportedPlatform", "TarballNotFound", "ToolchainNotFound",
]
