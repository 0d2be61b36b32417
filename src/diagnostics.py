"""Diagnostics for the pixelsort CLI.

Layers, installed by init_diagnostics():
1. JSON log file under ~/.pixelsort/logs, rotated by size and pruned by age
2. Human-readable console log on stderr (DEBUG with --verbose)
3. faulthandler dumps for C-level crashes inside numpy or Pillow
4. sys.excepthook writing PII-stripped JSON crash dumps
"""

import datetime
import faulthandler
import json
import logging
import logging.handlers
import os
import sys
import traceback
from pathlib import Path

from security import strip_pii

logger = logging.getLogger(__name__)

APP_DIR = Path("~/.pixelsort")

LOG_FILE_NAME = "pixelsort.log"
LOG_MAX_BYTES = 10_000_000
LOG_BACKUPS = 7
MAX_LOG_AGE_DAYS = 7

CRASH_GLOB = "crash_*.json"
MAX_CRASH_REPORTS = 5


def resolve_log_dir(requested: str = "") -> str:
    """Directory for the JSON log.

    A requested directory is honoured only if it resolves inside ~/.pixelsort;
    anything else falls back to ~/.pixelsort/logs with a warning.
    """
    app_dir = APP_DIR.expanduser()
    default = app_dir / "logs"
    if not requested:
        return str(default)
    resolved = Path(os.path.realpath(requested))
    if not resolved.is_relative_to(os.path.realpath(app_dir)):
        logger.warning("APP_LOG_DIR %s is outside %s, using default", requested, app_dir)
        return str(default)
    return str(resolved)


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc)
        entry = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "location": f"{record.module}:{record.lineno}",
            "message": record.getMessage(),
        }
        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            entry["exception"] = {
                "type": type(exc).__name__,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry)


def _prune(
    directory: str,
    pattern: str,
    *,
    keep: int | None = None,
    max_age_days: int | None = None,
):
    """Delete files matching ``pattern``: all but the newest ``keep``, and
    any older than ``max_age_days``. Failures are logged, never raised."""
    try:
        files = sorted(
            Path(directory).glob(pattern), key=lambda f: f.stat().st_mtime, reverse=True
        )
        doomed = files[keep:] if keep is not None else []
        if max_age_days is not None:
            cutoff = datetime.datetime.now().timestamp() - max_age_days * 86400
            doomed += [f for f in files if f.stat().st_mtime < cutoff and f not in doomed]
        for f in doomed:
            f.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Pruning %s/%s skipped: %s", directory, pattern, e)


def setup_structured_logging(log_dir: str | None = None) -> str:
    """Attach the rotating JSON file handler to the root logger.

    The level comes from APP_LOG_LEVEL (default INFO). Returns the log directory.
    """
    directory = resolve_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(directory, mode=0o700, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(directory, LOG_FILE_NAME),
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUPS,
    )
    handler.setFormatter(JSONFormatter())

    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    _prune(directory, f"{LOG_FILE_NAME}*", max_age_days=MAX_LOG_AGE_DAYS)
    return directory


def setup_console_logging(verbose: bool = False) -> logging.Handler:
    """Log to stderr: DEBUG when verbose, WARNING otherwise."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    if verbose:
        root.setLevel(logging.DEBUG)
    root.addHandler(handler)
    return handler


def setup_faulthandler(log_dir: str) -> bool:
    """Send faulthandler output to its own owner-only file in ``log_dir``.

    Kept apart from the JSON log: rotation would close the descriptor
    faulthandler holds.
    """
    fault_path = os.path.join(log_dir, "pixelsort_fault.log")
    try:
        fault_file = open(fault_path, "a", buffering=1)  # noqa: SIM115
        os.chmod(fault_path, 0o600)
    except OSError as e:
        print(f"WARNING: Could not enable faulthandler: {e}", file=sys.stderr)
        return False
    faulthandler.enable(file=fault_file, all_threads=True)
    return True


def write_crash_report(crash_dir: str, exc_type, exc_value, exc_tb) -> str:
    """Write a PII-stripped JSON crash dump. Returns its path."""
    os.makedirs(crash_dir, mode=0o700, exist_ok=True)

    stamp = datetime.datetime.now(tz=datetime.timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    report = strip_pii(
        {
            "extra": {
                "timestamp": stamp,
                "exception_type": getattr(exc_type, "__name__", "Unknown"),
                "exception_message": str(exc_value),
                "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
                "python_version": sys.version,
                "platform": sys.platform,
            }
        },
        {},
    )["extra"]

    crash_path = os.path.join(crash_dir, f"crash_{stamp}.json")
    old_umask = os.umask(0o077)
    try:
        with open(crash_path, "w") as f:
            json.dump(report, f, indent=2)
    finally:
        os.umask(old_umask)

    _prune(crash_dir, CRASH_GLOB, keep=MAX_CRASH_REPORTS)
    return crash_path


def setup_excepthook(crash_dir: str | None = None):
    """Dump unhandled exceptions to ``crash_dir`` before the default hook runs."""
    crash_dir = crash_dir or str(APP_DIR.expanduser() / "crash_reports")

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            write_crash_report(crash_dir, exc_type, exc_value, exc_tb)
        except Exception as e:
            print(f"WARNING: Could not write crash report: {e}", file=sys.stderr)
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics(verbose: bool = False):
    """Install every diagnostic layer. Called once from main()."""
    log_dir = setup_structured_logging()
    setup_console_logging(verbose)
    faults = setup_faulthandler(log_dir)
    setup_excepthook()
    logger.info("Diagnostics initialized: logging=%s, faulthandler=%s", log_dir, faults)
