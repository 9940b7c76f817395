#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
zlsup_logger.py — logging for zlsup

Features:
 - one shared set of handlers for every ``zlsup.<name>`` logger
 - console output on stderr (with colors when attached to a tty)
 - optional session-based file logging (session-YYYYmmdd-HHMMSS) with a
   text log and a JSON-lines event log
 - structured events via log_event / log_exception
 - perf_timer decorator for stage durations
"""

from __future__ import annotations
import sys
import json
import time
import logging
import datetime
import traceback
from pathlib import Path
from typing import Optional, Dict, Any, Callable
from functools import wraps

LEVEL_COLORS = {
    "DEBUG": "\033[36m",   # cyan
    "INFO": "\033[32m",    # green
    "WARNING": "\033[33m", # yellow
    "ERROR": "\033[31m",   # red
    "CRITICAL": "\033[41m" # red bg
}
RESET_COLOR = "\033[0m"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _colorize(level: str, text: str, enabled: bool) -> str:
    if not enabled:
        return text
    color = LEVEL_COLORS.get(level.upper(), "")
    return f"{color}{text}{RESET_COLOR}" if color else text


class AnsiFormatter(logging.Formatter):
    def __init__(self, fmt: str, stream=None):
        super().__init__(fmt)
        isatty = getattr(stream, "isatty", None)
        self.ansi = bool(isatty and isatty())

    def format(self, record):
        return _colorize(record.levelname, super().format(record), self.ansi)


# -------------------------
# Logger Manager
# -------------------------
class ZlsupLoggerManager:
    def __init__(self, level: str = "INFO", log_dir: Optional[Path] = None):
        self.level = getattr(logging, str(level).upper(), logging.INFO)
        self.session_id: Optional[str] = None
        self.session_dir: Optional[Path] = None
        self.text_log_path: Optional[Path] = None
        self.json_log_path: Optional[Path] = None
        self.handlers = []
        self.loggers: Dict[str, logging.Logger] = {}

        ch = logging.StreamHandler(sys.stderr)
        ch.setFormatter(AnsiFormatter(LOG_FORMAT, sys.stderr))
        self.handlers.append(ch)
        if log_dir is not None:
            self._open_session(Path(log_dir))

    def _open_session(self, log_dir: Path):
        ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.session_id = f"session-{ts}"
        self.session_dir = log_dir / self.session_id
        self.session_dir.mkdir(parents=True, exist_ok=True)
        self.text_log_path = self.session_dir / f"{self.session_id}.log"
        self.json_log_path = self.session_dir / f"{self.session_id}.json"
        fh = logging.FileHandler(self.text_log_path, encoding="utf-8")
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        self.handlers.append(fh)

    def get_logger(self, name: str) -> logging.Logger:
        if name in self.loggers:
            return self.loggers[name]
        logger = logging.getLogger(f"zlsup.{name}")
        logger.setLevel(self.level)
        for h in self.handlers:
            logger.addHandler(h)
        # handlers are attached per logger; do not print twice via root
        logger.propagate = False
        self.loggers[name] = logger
        return logger

    def emit_json(self, record: Dict[str, Any]):
        if self.json_log_path is None:
            return
        with open(self.json_log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    def close(self):
        for logger in self.loggers.values():
            for h in list(logger.handlers):
                logger.removeHandler(h)
        for h in self.handlers:
            h.close()
        self.handlers = []


_manager: Optional[ZlsupLoggerManager] = None


def _get_manager() -> ZlsupLoggerManager:
    global _manager
    if _manager is None:
        _manager = ZlsupLoggerManager()
    return _manager


# -------------------------
# Public API
# -------------------------
def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> ZlsupLoggerManager:
    """
    (Re)build the shared handlers. Loggers handed out earlier are re-wired
    to the new handlers so module-level LOG objects keep working.
    """
    global _manager
    names = []
    if _manager is not None:
        names = list(_manager.loggers)
        _manager.close()
    _manager = ZlsupLoggerManager(level=level, log_dir=log_dir)
    for name in names:
        _manager.get_logger(name)
    return _manager


def get_logger(name: str) -> logging.Logger:
    """
    Return a configured logger instance. Use like:
        LOG = get_logger("archive")
        LOG.info("extracting")
    """
    return _get_manager().get_logger(name)


def session_id() -> Optional[str]:
    return _get_manager().session_id


def log_event(component: str, stage: str, message: str, level: str = "info", extra: Optional[Dict[str, Any]] = None):
    """
    High-level event logging: text log line plus one JSON line in the
    session event log (when file logging is enabled).
    """
    lvl = getattr(logging, level.upper(), logging.INFO)
    get_logger(component).log(lvl, "[%s] %s", stage, message)
    _get_manager().emit_json({
        "ts": int(time.time()),
        "session": session_id(),
        "component": component,
        "stage": stage,
        "level": level.upper(),
        "message": message,
        "extra": extra or {},
    })


def log_exception(component: str, stage: str, exc: BaseException, level: str = "error", extra: Optional[Dict[str, Any]] = None):
    msg = f"{exc}"
    tb = getattr(exc, "__traceback__", None)
    if tb and get_logger(component).isEnabledFor(logging.DEBUG):
        msg += "\n" + "".join(traceback.format_tb(tb))
    data = {"kind": getattr(exc, "kind", type(exc).__name__)}
    data.update(extra or {})
    log_event(component, stage, msg, level=level, extra=data)


def perf_timer(component: str, op: str):
    """
    Decorator to record how long ``op`` took as a debug event.
    Usage:
        @perf_timer("installer", "verify")
        def verify(...): ...
    """
    def decorator(func: Callable):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.monotonic()
            try:
                return func(*args, **kwargs)
            finally:
                duration = time.monotonic() - start
                log_event(component, "perf", f"{op} took {duration:.3f}s", level="debug",
                          extra={"operation": op, "duration_s": duration})
        return wrapper
    return decorator


__all__ = ["configure_logging", "get_logger", "log_event", "log_exception", "perf_timer", "session_id"]
