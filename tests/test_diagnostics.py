"""Tests for diagnostics: crash dumps, structured logging, console logging."""

import json
import logging
import os
import sys
import time
from unittest.mock import patch

import pytest

import diagnostics
from diagnostics import (
    CRASH_GLOB,
    MAX_CRASH_REPORTS,
    MAX_LOG_AGE_DAYS,
    JSONFormatter,
    _prune,
    resolve_log_dir,
    setup_console_logging,
    setup_excepthook,
    setup_structured_logging,
    write_crash_report,
)

pytestmark = pytest.mark.smoke


@pytest.fixture
def fake_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("APP_LOG_DIR", raising=False)
    return tmp_path


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def _record(msg="hello %s", args=("world",), exc_info=None):
    return logging.LogRecord(
        "engine.sweep", logging.WARNING, __file__, 1, msg, args, exc_info
    )


class TestJSONFormatter:
    def test_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "engine.sweep"
        assert entry["message"] == "hello world"
        assert entry["location"].endswith(":1")
        assert "timestamp" in entry

    def test_exception_included(self):
        try:
            raise ValueError("bad frame")
        except ValueError:
            exc_info = sys.exc_info()
        entry = json.loads(JSONFormatter().format(_record(exc_info=exc_info)))
        assert entry["exception"]["type"] == "ValueError"
        assert "bad frame" in entry["exception"]["traceback"]


class TestLogDir:
    def test_default_under_app_dir(self, fake_home):
        assert resolve_log_dir("") == os.path.join(str(fake_home), ".pixelsort", "logs")

    def test_outside_prefix_falls_back(self, fake_home, tmp_path):
        default = os.path.join(str(fake_home), ".pixelsort", "logs")
        assert resolve_log_dir("/var/tmp/elsewhere") == default

    def test_inside_prefix_accepted(self, fake_home):
        inside = fake_home / ".pixelsort" / "custom"
        inside.mkdir(parents=True)
        assert resolve_log_dir(str(inside)) == os.path.realpath(inside)

    def test_setup_writes_json_log(self, fake_home, restore_root_logger):
        log_dir = setup_structured_logging()
        logging.getLogger("engine.sweep").warning("frame %d written", 3)
        for handler in restore_root_logger.handlers:
            handler.flush()

        lines = (fake_home / ".pixelsort" / "logs" / "pixelsort.log").read_text().splitlines()
        assert log_dir == os.path.join(str(fake_home), ".pixelsort", "logs")
        assert json.loads(lines[-1])["message"] == "frame 3 written"

    def test_log_level_from_env(self, fake_home, monkeypatch, restore_root_logger):
        monkeypatch.setenv("APP_LOG_LEVEL", "debug")
        setup_structured_logging()
        assert restore_root_logger.level == logging.DEBUG


class TestConsoleLogging:
    def test_quiet_by_default(self, restore_root_logger):
        handler = setup_console_logging()
        assert handler.level == logging.WARNING

    def test_verbose(self, restore_root_logger):
        handler = setup_console_logging(verbose=True)
        assert handler.level == logging.DEBUG
        assert restore_root_logger.level == logging.DEBUG


class TestCrashReports:
    def test_write_crash_report(self, tmp_path):
        crash_dir = tmp_path / "crash_reports"
        try:
            raise RuntimeError("sweep blew up")
        except RuntimeError:
            path = write_crash_report(str(crash_dir), *sys.exc_info())

        data = json.loads(open(path).read())
        assert data["exception_type"] == "RuntimeError"
        assert data["exception_message"] == "sweep blew up"
        assert any("sweep blew up" in line for line in data["traceback"])

    def test_crash_dump_file_permissions(self, tmp_path):
        try:
            raise RuntimeError("x")
        except RuntimeError:
            path = write_crash_report(str(tmp_path / "c"), *sys.exc_info())
        assert os.stat(path).st_mode & 0o777 == 0o600

    def test_cleanup_keeps_newest(self, tmp_path):
        for i in range(MAX_CRASH_REPORTS + 3):
            f = tmp_path / f"crash_{i:02d}.json"
            f.write_text("{}")
            os.utime(f, (1_000_000 + i, 1_000_000 + i))

        _prune(str(tmp_path), CRASH_GLOB, keep=MAX_CRASH_REPORTS)

        remaining = sorted(p.name for p in tmp_path.glob("crash_*.json"))
        assert len(remaining) == MAX_CRASH_REPORTS
        assert remaining[0] == "crash_03.json"

    def test_prune_by_age_keeps_fresh_logs(self, tmp_path):
        stale = tmp_path / "pixelsort.log.3"
        fresh = tmp_path / "pixelsort.log"
        stale.write_text("")
        fresh.write_text("")
        old = time.time() - (MAX_LOG_AGE_DAYS + 1) * 86400
        os.utime(stale, (old, old))

        _prune(str(tmp_path), "pixelsort.log*", max_age_days=MAX_LOG_AGE_DAYS)

        assert [p.name for p in tmp_path.iterdir()] == ["pixelsort.log"]

    def test_excepthook_writes_dump_and_chains(self, tmp_path):
        original = sys.excepthook
        try:
            setup_excepthook(str(tmp_path))
            try:
                raise ValueError("unhandled")
            except ValueError:
                exc = sys.exc_info()
            with patch("sys.__excepthook__") as chained:
                sys.excepthook(*exc)
            chained.assert_called_once()
        finally:
            sys.excepthook = original

        dumps = list(tmp_path.glob("crash_*.json"))
        assert len(dumps) == 1

    def test_excepthook_survives_write_failure(self, tmp_path, capsys):
        original = sys.excepthook
        try:
            setup_excepthook(str(tmp_path))
            with patch.object(diagnostics, "write_crash_report", side_effect=OSError("ro")):
                with patch("sys.__excepthook__") as chained:
                    sys.excepthook(ValueError, ValueError("x"), None)
            chained.assert_called_once()
        finally:
            sys.excepthook = original
        assert "Could not write crash report" in capsys.readouterr().err
