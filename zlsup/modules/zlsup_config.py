#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
zlsup_config.py — config loader and validator for zlsup

Features:
 - hierarchical config load (defaults, system file, user file, env, CLI overrides)
 - TOML files via tomllib (py3.11+) or the toml package
 - env overrides: ZLSUP_<SECTION>__<KEY>=value
 - type coercion against the defaults, with ConfigError on bad values
 - the signing public key is plain configuration, so each distribution
   channel can ship its own key without code changes
"""

from __future__ import annotations
import os
import json
import copy
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from zlsup_errors import ConfigError
from zlsup_logger import get_logger
from zlsup_signature import PublicKey, decode_public_key

try:
    import tomllib  # py3.11+

    def _load_toml_text(path: Path) -> Dict[str, Any]:
        with open(path, "rb") as f:
            return tomllib.load(f)
except ImportError:
    import toml

    def _load_toml_text(path: Path) -> Dict[str, Any]:
        return toml.load(str(path))

LOG = get_logger("config")

ENV_PREFIX = "ZLSUP_"
DEFAULT_SYS_CONFIG = Path("/etc/zlsup/config.toml")
DEFAULT_USER_CONFIG = Path.home() / ".config" / "zlsup" / "config.toml"

# minisign public key of the ZLS release builds
DEFAULT_PUBLIC_KEY = "RWR+9B91GBZ0zOjh6Lr17+zKf5BoSuFvrx2xSeDE57uIYvnKBGmMjOex"

DEFAULT_CONFIG: Dict[str, Any] = {
    "paths": {
        "install_dir": "zls_install",
        "log_dir": "",
    },
    "release": {
        "api_url": "https://releases.zigtools.org/v1/zls/select-version",
        "compatibility": "only-runtime",
        "binary_name": "zls",
        "keep_archive": False,
        "link_bin": True,
    },
    "security": {
        "public_key": DEFAULT_PUBLIC_KEY,
    },
    "extract": {
        "strip_components": 1,
        "max_unpacked_bytes": 512 * 1024 * 1024,
    },
    "download": {
        "timeout": 30.0,
        "total_timeout": 600.0,
        "max_bytes": 256 * 1024 * 1024,
        "progress": True,
    },
    "logging": {
        "level": "INFO",
    },
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


# merge deep util
def _deep_merge(a: Dict[str, Any], b: Mapping[str, Any]) -> Dict[str, Any]:
    for k, v in b.items():
        if k in a and isinstance(a[k], dict) and isinstance(v, Mapping):
            a[k] = _deep_merge(a[k], v)
        else:
            a[k] = v
    return a


def _coerce(section: str, key: str, value: Any, default: Any) -> Any:
    """Convert ``value`` to the type of ``default``."""
    where = f"{section}.{key}"
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ConfigError(f"{where}: expected a boolean, got {value!r}")
    if isinstance(default, int):
        if isinstance(value, bool):
            raise ConfigError(f"{where}: expected an integer, got {value!r}")
        try:
            out = int(str(value).strip()) if not isinstance(value, int) else value
        except ValueError:
            raise ConfigError(f"{where}: expected an integer, got {value!r}") from None
        if out < 0:
            raise ConfigError(f"{where}: must not be negative, got {out}")
        return out
    if isinstance(default, float):
        try:
            out = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{where}: expected a number, got {value!r}") from None
        if out <= 0:
            raise ConfigError(f"{where}: must be positive, got {out}")
        return out
    if not isinstance(value, str):
        raise ConfigError(f"{where}: expected a string, got {value!r}")
    return value


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    # ZLSUP_EXTRACT__STRIP_COMPONENTS -> extract.strip_components
    out: Dict[str, Any] = {}
    for k, v in environ.items():
        if not k.startswith(ENV_PREFIX) or "__" not in k:
            continue
        section, _, key = k[len(ENV_PREFIX):].lower().partition("__")
        out.setdefault(section, {})[key] = v
    return out


class ConfigManager:
    def __init__(self,
                 sys_config: Optional[Path] = None,
                 user_config: Optional[Path] = None,
                 extra_config: Optional[Path] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 overrides: Optional[Mapping[str, Any]] = None):
        self.sys_config = Path(sys_config) if sys_config else DEFAULT_SYS_CONFIG
        self.user_config = Path(user_config) if user_config else DEFAULT_USER_CONFIG
        self.extra_config = Path(extra_config) if extra_config else None
        self.environ = os.environ if environ is None else environ
        self.overrides = overrides or {}
        self.loaded_from: List[Path] = []
        self.config: Dict[str, Any] = {}
        self.load()

    def load(self) -> Dict[str, Any]:
        """
        Load config from:
          1) built-in defaults
          2) system config (/etc/zlsup/config.toml)
          3) user config (~/.config/zlsup/config.toml)
          4) --config file given on the command line
          5) env overrides (ZLSUP_<SECTION>__<KEY>)
          6) explicit overrides (CLI flags)
        """
        if self.extra_config is not None and not self.extra_config.exists():
            raise ConfigError(f"config file not found: {self.extra_config}")
        cfg = copy.deepcopy(DEFAULT_CONFIG)
        self.loaded_from = []
        for path in (self.sys_config, self.user_config, self.extra_config):
            if path is None or not path.exists():
                continue
            LOG.debug("loading config: %s", path)
            try:
                loaded = _load_toml_text(path)
            except (OSError, ValueError) as e:
                raise ConfigError(f"failed to read config {path}: {e}") from e
            cfg = _deep_merge(cfg, loaded or {})
            self.loaded_from.append(path)

        cfg = _deep_merge(cfg, _env_overrides(self.environ))
        cfg = _deep_merge(cfg, self.overrides)
        self.config = self._validate(cfg)
        LOG.debug("config loaded (from %s)", [str(p) for p in self.loaded_from] or "defaults")
        return self.config

    def _validate(self, cfg: Dict[str, Any]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for section, defaults in DEFAULT_CONFIG.items():
            values = cfg.get(section, {})
            if not isinstance(values, Mapping):
                raise ConfigError(f"{section}: expected a table, got {values!r}")
            unknown = set(values) - set(defaults)
            if unknown:
                LOG.warning("ignoring unknown config keys in [%s]: %s", section, ", ".join(sorted(unknown)))
            out[section] = {k: _coerce(section, k, values.get(k, d), d) for k, d in defaults.items()}
        return out

    # helpers
    def get(self, *keys, default=None):
        cfg = self.config
        for k in keys:
            if not isinstance(cfg, dict) or k not in cfg:
                return default
            cfg = cfg[k]
        return cfg

    def public_key(self) -> PublicKey:
        return decode_public_key(self.config["security"]["public_key"])

    def strip_components(self) -> int:
        return self.config["extract"]["strip_components"]

    def install_dir(self) -> Path:
        return Path(self.config["paths"]["install_dir"])

    def log_dir(self) -> Optional[Path]:
        raw = self.config["paths"]["log_dir"]
        return Path(raw) if raw else None

    def summary(self) -> Dict[str, Any]:
        s = copy.deepcopy(self.config)
        s["loaded_from"] = [str(p) for p in self.loaded_from]
        return s


# simple CLI for config inspection
def _cli():
    import argparse
    p = argparse.ArgumentParser(prog="zlsup-config", description="zlsup configuration inspector")
    p.add_argument("--config", help="extra TOML config file")
    args = p.parse_args()
    mgr = ConfigManager(extra_config=args.config)
    print(json.dumps(mgr.summary(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    _cli()
