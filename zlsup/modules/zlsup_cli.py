#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
zlsup CLI — single entry point for the zlsup modules.

Commands:
  install   : resolve the ZLS build for the local zig, download, verify, unpack, link
  unpack    : verify and unpack an archive + .minisig already on disk
  verify    : only check an archive against its .minisig
  config    : print the merged configuration

Every command prints a JSON result on stdout; logs go to stderr.
Exit codes: 0 success, 1 install/verification error, 2 usage error.
"""

from __future__ import annotations
import sys
import json
import argparse
import threading
from typing import Any, Dict, List, Optional

from zlsup_config import ConfigManager
from zlsup_errors import ZlsupError
from zlsup_installer import ZlsupInstaller
from zlsup_logger import configure_logging, get_logger

log = get_logger("cli")


def print_json(data: Dict[str, Any]):
    print(json.dumps(data, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zlsup", description="Verified ZLS installer")
    parser.add_argument("--config", help="extra TOML config file")
    parser.add_argument("--public-key", help="base64 minisign/ed25519 public key (overrides config)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_install = sub.add_parser("install", help="download, verify and install ZLS")
    p_install.add_argument("--zig-version", help="zig version to match (default: output of 'zig version')")
    p_install.add_argument("--dest", help="install directory")
    p_install.add_argument("--strip", type=int, help="leading path components to strip")
    p_install.add_argument("--timeout", type=float, help="download timeout in seconds")
    p_install.add_argument("--no-link", action="store_true", help="do not create bin/<binary> symlink")
    p_install.add_argument("--no-progress", action="store_true")

    p_unpack = sub.add_parser("unpack", help="verify and unpack a local archive")
    p_unpack.add_argument("archive")
    p_unpack.add_argument("--sig", required=True, help="detached .minisig file")
    p_unpack.add_argument("--dest", required=True)
    p_unpack.add_argument("--strip", type=int)

    p_verify = sub.add_parser("verify", help="verify a local archive")
    p_verify.add_argument("archive")
    p_verify.add_argument("--sig", required=True, help="detached .minisig file")

    sub.add_parser("config", help="show merged configuration")
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if args.public_key:
        out.setdefault("security", {})["public_key"] = args.public_key
    if args.log_level:
        out.setdefault("logging", {})["level"] = args.log_level
    if getattr(args, "timeout", None) is not None:
        out.setdefault("download", {})["timeout"] = args.timeout
    if getattr(args, "no_progress", False):
        out.setdefault("download", {})["progress"] = False
    return out


def _error(exc: BaseException, kind: Optional[str] = None) -> Dict[str, Any]:
    return {"ok": False, "kind": kind or getattr(exc, "kind", type(exc).__name__), "error": str(exc)}


# --- Command implementations ---
def cmd_config(args, cfg: ConfigManager) -> int:
    print_json(cfg.summary())
    return 0


def cmd_install(args, cfg: ConfigManager, cancel_event: Optional[threading.Event] = None) -> int:
    inst = ZlsupInstaller(cfg, cancel_event=cancel_event)
    res = inst.install(zig_version=args.zig_version, dest=args.dest,
                       strip_components=args.strip, link=False if args.no_link else None)
    print_json(res)
    return 0


def cmd_unpack(args, cfg: ConfigManager, cancel_event: Optional[threading.Event] = None) -> int:
    inst = ZlsupInstaller(cfg, cancel_event=cancel_event)
    print_json(inst.install_local(args.archive, args.sig, args.dest, strip_components=args.strip))
    return 0


def cmd_verify(args, cfg: ConfigManager) -> int:
    print_json(ZlsupInstaller(cfg).verify_local(args.archive, args.sig))
    return 0


def run(args: argparse.Namespace, cancel_event: Optional[threading.Event] = None) -> int:
    cfg = ConfigManager(extra_config=args.config, overrides=_overrides(args))
    configure_logging(cfg.get("logging", "level"), cfg.log_dir())

    if args.cmd == "config":
        return cmd_config(args, cfg)
    if args.cmd == "install":
        return cmd_install(args, cfg, cancel_event)
    if args.cmd == "unpack":
        return cmd_unpack(args, cfg, cancel_event)
    return cmd_verify(args, cfg)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if getattr(args, "strip", None) is not None and args.strip < 0:
        parser.error("--strip must not be negative")
    try:
        return run(args)
    except ZlsupError as e:
        log.error("%s: %s", e.kind, e)
        print_json(_error(e))
        return 1
    except OSError as e:
        log.error("I/O error: %s", e)
        print_json(_error(e, "IOError"))
        return 1
    except KeyboardInterrupt:
        print_json({"ok": False, "kind": "Cancelled", "error": "interrupted"})
        return 130


if __name__ == "__main__":
    sys.exit(main())
