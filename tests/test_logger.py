from __future__ import annotations

import json
import logging

import pytest

import zlsup_logger
from zlsup_errors import VerificationFailed
from zlsup_logger import configure_logging, get_logger, log_event, log_exception, perf_timer


@pytest.fixture
def session(tmp_path):
    mgr = configure_logging("DEBUG", tmp_path / "logs")
    yield mgr
    configure_logging("INFO")


def _events(mgr):
    with open(mgr.json_log_path, encoding="utf-8") as f:
        return [json.loads(line) for line in f]


def test_session_files(session, tmp_path):
    assert session.session_id.startswith("session-")
    assert session.session_dir.parent == tmp_path / "logs"
    get_logger("archive").info("hello from the test")
    log_event("archive", "extract", "wrote 3 files", extra={"files": 3})

    text = session.text_log_path.read_text(encoding="utf-8")
    assert "[zlsup.archive] hello from the test" in text
    (event,) = _events(session)
    assert event["component"] == "archive"
    assert event["stage"] == "extract"
    assert event["extra"] == {"files": 3}
    assert event["session"] == session.session_id


def test_log_exception_records_kind(session):
    log_exception("installer", "verifying", VerificationFailed("bad signature"))
    (event,) = _events(session)
    assert event["level"] == "ERROR"
    assert event["extra"]["kind"] == "VerificationFailed"
    assert event["message"].startswith("bad signature")


def test_perf_timer(session):
    @perf_timer("installer", "sleep")
    def work(x):
        return x * 2

    assert work(21) == 42
    (event,) = _events(session)
    assert event["stage"] == "perf"
    assert event["extra"]["operation"] == "sleep"
    assert event["extra"]["duration_s"] >= 0


def test_reconfigure_keeps_existing_loggers(tmp_path):
    log = get_logger("release")
    configure_logging("WARNING")
    try:
        assert log.level == logging.WARNING
        assert log.handlers
        assert not log.propagate
        assert zlsup_logger.session_id() is None
    finally:
        configure_logging("INFO")
