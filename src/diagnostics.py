"""Diagnostics — structured logging, faulthandler, crash dumps.

Everything lives under ~/.dithercam:
    logs/dithercam.log*        JSON lines, rotated at 10 MB
    logs/dithercam_fault.log   faulthandler output (C-level crashes)
    crash_reports/crash_*.json unhandled Python exceptions, PII-stripped
"""

import datetime
import faulthandler
import json
import logging
import logging.handlers
import os
import sys
import time
import traceback
from pathlib import Path

from security import strip_pii

logger = logging.getLogger(__name__)

APP_DIR = "~/.dithercam"
LOG_NAME = "dithercam.log"
FAULT_LOG_NAME = "dithercam_fault.log"

MAX_CRASH_REPORTS = 5
MAX_LOG_AGE_DAYS = 7

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def app_dir() -> str:
    return os.path.expanduser(APP_DIR)


def _validate_log_dir(env_dir: str) -> str:
    """Keep APP_LOG_DIR inside the app directory. Returns the directory to use."""
    default = os.path.join(app_dir(), "logs")
    if not env_dir:
        return default
    resolved = os.path.realpath(env_dir)
    allowed = os.path.realpath(app_dir())
    if resolved != allowed and not resolved.startswith(allowed + os.sep):
        logger.warning("APP_LOG_DIR outside %s, using default", APP_DIR)
        return default
    return resolved


# LogRecord attributes copied into the JSON entry when set via extra={...}
CONTEXT_FIELDS = ("component", "cell_size", "threshold", "surface", "source")


class JSONFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, thread, message.

    Render context passed through ``extra`` (see CONTEXT_FIELDS) is kept
    as top-level keys so log lines can be filtered per component.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc)
        entry = {
            "ts": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                entry[field] = getattr(record, field)
        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            entry["exc_type"] = type(exc).__name__
            entry["exc_trace"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _prune(directory: str, pattern: str, keep: int | None = None, max_age_days: int | None = None):
    """Delete files matching pattern beyond the newest `keep`, or older than max_age_days."""
    try:
        files = sorted(
            Path(directory).glob(pattern), key=lambda f: f.stat().st_mtime, reverse=True
        )
        kept, doomed = (files, []) if keep is None else (files[:keep], files[keep:])
        if max_age_days is not None:
            cutoff = time.time() - max_age_days * 86400
            doomed += [f for f in kept if f.stat().st_mtime < cutoff]
        for f in doomed:
            f.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Pruning %s in %s skipped: %s", pattern, directory, e)


def setup_structured_logging(
    log_dir: str | None = None, level: str | None = None, console: bool = True
) -> str:
    """Install the rotating JSON file handler (and a plain console handler).

    Args:
        log_dir: Override log directory (must stay under ~/.dithercam).
        level:   Log level name; defaults to APP_LOG_LEVEL or INFO.
        console: Also log to stderr in human-readable form.

    Returns:
        The log directory actually used.
    """
    resolved_dir = _validate_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(resolved_dir, mode=0o700, exist_ok=True)

    level_name = (level or os.environ.get("APP_LOG_LEVEL", "INFO")).upper()

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(resolved_dir, LOG_NAME),
        maxBytes=10_000_000,
        backupCount=7,
    )
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root.addHandler(stream)

    _prune(resolved_dir, LOG_NAME + "*", max_age_days=MAX_LOG_AGE_DAYS)
    return resolved_dir


def setup_faulthandler(log_dir: str):
    """Enable faulthandler on its own file.

    Kept apart from the rotating log: rotation would leave faulthandler
    writing to a stale descriptor.
    """
    fault_path = os.path.join(log_dir, FAULT_LOG_NAME)
    try:
        fault_file = open(fault_path, "a", buffering=1)  # noqa: SIM115
        os.chmod(fault_path, 0o600)
        faulthandler.enable(file=fault_file, all_threads=True)
    except OSError as e:
        logger.warning("Could not enable faulthandler: %s", e)


def write_crash_report(exc_type, exc_value, exc_tb, crash_dir: str | None = None) -> str:
    """Write a PII-stripped JSON crash dump. Returns its path."""
    crash_dir = crash_dir or os.path.join(app_dir(), "crash_reports")
    os.makedirs(crash_dir, mode=0o700, exist_ok=True)

    timestamp = datetime.datetime.now(tz=datetime.timezone.utc).strftime(
        "%Y%m%dT%H%M%S%fZ"
    )
    crash_path = os.path.join(crash_dir, f"crash_{timestamp}.json")

    crash_data = {
        "timestamp": timestamp,
        "exception_type": exc_type.__name__ if exc_type else "Unknown",
        "exception_message": str(exc_value),
        "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
        "python_version": sys.version,
        "platform": sys.platform,
    }
    crash_data = strip_pii({"extra": crash_data}, {}).get("extra", crash_data)

    old_umask = os.umask(0o077)
    try:
        with open(crash_path, "w") as f:
            json.dump(crash_data, f, indent=2)
    finally:
        os.umask(old_umask)

    _prune(crash_dir, "crash_*.json", keep=MAX_CRASH_REPORTS)
    return crash_path


def setup_excepthook(crash_dir: str | None = None):
    """Install a sys.excepthook that writes a crash dump, then defers to the default."""

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            write_crash_report(exc_type, exc_value, exc_tb, crash_dir)
        except Exception:
            # Never let the crash handler mask the original exception
            logger.debug("Crash report could not be written", exc_info=True)
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics(level: str | None = None) -> str:
    """Initialize all diagnostic layers. Call once from main()."""
    log_dir = setup_structured_logging(level=level)
    setup_faulthandler(log_dir)
    setup_excepthook()
    logger.info("Diagnostics initialized: logging=%s, faulthandler=enabled", log_dir)
    return log_dir
