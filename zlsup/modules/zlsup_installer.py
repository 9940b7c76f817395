#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
zlsup_installer.py — verify-then-extract install pipeline

Features:
 - InstallPipeline: VERIFYING -> DECOMPRESSING -> EXTRACTING -> DONE, with
   FAILED / CANCELLED terminal states; nothing is decompressed before the
   signature has been checked
 - ZlsupInstaller: resolve release -> download -> pipeline -> bin link
 - local mode: verify and unpack an archive already on disk
 - cancellation through a threading.Event, checked between stages and
   between tar entries

A failed install leaves whatever was already written in the destination
directory; there is no rollback.
"""

from __future__ import annotations
import os
import stat
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from zlsup_archive import Extractor, ExtractResult, decompress
from zlsup_config import ConfigManager
from zlsup_downloader import fetch_bytes, fetch_text
from zlsup_errors import ExtractionFailed, InstallCancelled
from zlsup_logger import get_logger, log_event, log_exception, perf_timer
from zlsup_release import build_select_url, get_zig_version, platform_key, release_info
from zlsup_signature import PublicKey, Signature, minisign_verify

LOG = get_logger("installer")


class InstallState(Enum):
    PENDING = "pending"
    VERIFYING = "verifying"
    DECOMPRESSING = "decompressing"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


_NEXT = {
    InstallState.PENDING: InstallState.VERIFYING,
    InstallState.VERIFYING: InstallState.DECOMPRESSING,
    InstallState.DECOMPRESSING: InstallState.EXTRACTING,
    InstallState.EXTRACTING: InstallState.DONE,
}


@dataclass
class InstallReport:
    state: InstallState = InstallState.PENDING
    history: List[InstallState] = field(default_factory=lambda: [InstallState.PENDING])
    failure_kind: Optional[str] = None
    error: Optional[str] = None
    signature: Optional[Signature] = None
    extracted: Optional[ExtractResult] = None

    @property
    def ok(self) -> bool:
        return self.state is InstallState.DONE

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "ok": self.ok,
            "state": self.state.value,
            "history": [s.value for s in self.history],
        }
        if self.failure_kind:
            out["kind"] = self.failure_kind
            out["error"] = self.error
        if self.signature is not None:
            out["trusted_comment"] = self.signature.trusted_comment
        if self.extracted is not None:
            out.update(self.extracted.to_dict())
        return out


class InstallPipeline:
    """
    One-shot verify -> decompress -> extract run.

    Each stage runs only after the previous one finished; the first error
    moves the pipeline to FAILED (or CANCELLED) and is re-raised.
    """

    def __init__(self, public_key: PublicKey, strip_components: int = 1,
                 max_unpacked_bytes: int = 0, cancel_event: Optional[threading.Event] = None):
        if strip_components < 0:
            raise ValueError("strip_components must not be negative")
        self.public_key = public_key
        self.strip_components = strip_components
        self.max_unpacked_bytes = max_unpacked_bytes
        self.cancel_event = cancel_event or threading.Event()
        self.report = InstallReport()

    @property
    def state(self) -> InstallState:
        return self.report.state

    def _advance(self):
        nxt = _NEXT[self.report.state]
        if nxt is not InstallState.DONE and self.cancel_event.is_set():
            raise InstallCancelled(f"cancelled before {nxt.value}")
        self._set(nxt)

    def _set(self, state: InstallState):
        LOG.debug("pipeline: %s -> %s", self.report.state.value, state.value)
        self.report.state = state
        self.report.history.append(state)

    def cancel(self):
        self.cancel_event.set()

    @perf_timer("installer", "pipeline")
    def run(self, artifact: bytes, sig_text: str, dest_root: Union[str, Path]) -> InstallReport:
        if self.report.state is not InstallState.PENDING:
            raise RuntimeError(f"pipeline already ran (state={self.report.state.value})")
        try:
            self._advance()
            self.report.signature = minisign_verify(self.public_key, artifact, sig_text)
            log_event("installer", "verify", f"signature ok ({len(artifact)} bytes)")

            self._advance()
            tar_bytes = decompress(artifact, max_bytes=self.max_unpacked_bytes)

            self._advance()
            extractor = Extractor(dest_root, self.strip_components, self.cancel_event)
            self.report.extracted = extractor.extract(tar_bytes)

            self._advance()
        except InstallCancelled as e:
            self._finish(InstallState.CANCELLED, e)
            raise
        except Exception as e:
            # non-zlsup errors are reported under their class name
            self._finish(InstallState.FAILED, e)
            raise
        return self.report

    def _finish(self, state: InstallState, exc: Exception):
        failed_in = self.report.state.value
        self._set(state)
        self.report.failure_kind = getattr(exc, "kind", type(exc).__name__)
        self.report.error = str(exc)
        log_exception("installer", failed_in, exc)


# ---------------------------
# Post-install helpers
# ---------------------------
def link_binary(root: Union[str, Path], binary_name: str) -> Optional[Path]:
    """
    Mark ``<root>/<binary_name>`` executable and point ``<root>/bin/<binary_name>``
    at it with a relative symlink. POSIX only; returns the link path.
    """
    if os.name != "posix":
        LOG.debug("skipping bin link on %s", os.name)
        return None
    root = Path(root)
    binary = root / binary_name
    if not binary.is_file():
        LOG.warning("no %s in %s; not creating bin link", binary_name, root)
        return None
    link = root / "bin" / binary_name
    try:
        mode = binary.stat().st_mode
        binary.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        link.parent.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.exists():
            link.unlink()
        os.symlink(os.path.join("..", binary_name), link)
    except OSError as e:
        raise ExtractionFailed(str(link), e) from e
    LOG.info("created symlink %s -> ../%s", link, binary_name)
    return link


# ---------------------------
# High level installer
# ---------------------------
class ZlsupInstaller:
    def __init__(self, config: ConfigManager, cancel_event: Optional[threading.Event] = None):
        self.config = config
        self.cancel_event = cancel_event or threading.Event()
        self.public_key = config.public_key()

    def _pipeline(self, strip_components: Optional[int] = None) -> InstallPipeline:
        strip = self.config.strip_components() if strip_components is None else strip_components
        return InstallPipeline(self.public_key, strip,
                               self.config.get("extract", "max_unpacked_bytes", default=0),
                               self.cancel_event)

    def resolve(self, zig_version: Optional[str] = None) -> Dict[str, str]:
        """Find tarball and signature URLs for the given (or installed) zig."""
        timeout = self.config.get("download", "timeout")
        zig_version = zig_version or get_zig_version()
        LOG.info("zig version: %s", zig_version)
        api = build_select_url(self.config.get("release", "api_url"), zig_version,
                               self.config.get("release", "compatibility"))
        LOG.info("fetching version info from %s", api)
        text = fetch_text(api, timeout=timeout, total_timeout=self.config.get("download", "total_timeout"))
        release = release_info(text, platform_key())
        release["zig_version"] = zig_version
        return release

    def install(self, zig_version: Optional[str] = None, dest: Optional[Union[str, Path]] = None,
                strip_components: Optional[int] = None, link: Optional[bool] = None) -> Dict[str, Any]:
        dest = Path(dest) if dest else self.config.install_dir()
        release = self.resolve(zig_version)
        timeout = self.config.get("download", "timeout")
        total_timeout = self.config.get("download", "total_timeout")

        artifact = fetch_bytes(release["tarball"], timeout=timeout,
                               max_bytes=self.config.get("download", "max_bytes"),
                               progress=self.config.get("download", "progress"),
                               total_timeout=total_timeout)
        LOG.info("fetching signature from %s", release["signature"])
        sig_text = fetch_text(release["signature"], timeout=timeout, total_timeout=total_timeout)

        report = self._pipeline(strip_components).run(artifact, sig_text, dest)
        result = report.to_dict()
        result.update(release)

        binary_name = self.config.get("release", "binary_name")
        if self.config.get("release", "keep_archive"):
            archive_path = dest.parent / f"{binary_name}.tar.gz"
            try:
                archive_path.write_bytes(artifact)
            except OSError as e:
                raise ExtractionFailed(str(archive_path), e) from e
            LOG.info("saved tarball to %s", archive_path)
            result["archive"] = str(archive_path)

        if link is None:
            link = self.config.get("release", "link_bin")
        if link:
            linked = link_binary(dest, binary_name)
            result["link"] = str(linked) if linked else None
        LOG.info("installed %s into %s", binary_name, dest)
        return result

    def install_local(self, archive: Union[str, Path], sig: Union[str, Path], dest: Union[str, Path],
                      strip_components: Optional[int] = None) -> Dict[str, Any]:
        artifact = Path(archive).read_bytes()
        sig_text = Path(sig).read_text(encoding="utf-8")
        report = self._pipeline(strip_components).run(artifact, sig_text, dest)
        return report.to_dict()

    def verify_local(self, archive: Union[str, Path], sig: Union[str, Path]) -> Dict[str, Any]:
        signature = minisign_verify(self.public_key, Path(archive).read_bytes(),
                                    Path(sig).read_text(encoding="utf-8"))
        return {"ok": True, "archive": str(archive), "trusted_comment": signature.trusted_comment}


__all__ = ["InstallState", "InstallReport", "InstallPipeline", "ZlsupInstaller", "link_binary"]
