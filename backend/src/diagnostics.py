"""Diagnostics: structured logging, faulthandler, crash dumps.

Layers:
1. Structured JSON logging to a rotating file under ~/.kaleido/logs
2. Optional plain-text console logging for interactive CLI runs
3. faulthandler: C-level crash tracebacks from numpy/Pillow
4. sys.excepthook: unhandled exceptions → PII-stripped JSON crash dumps
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

logger = logging.getLogger(__name__)

APP_HOME = os.path.expanduser("~/.kaleido")
LOG_FILE_NAME = "kaleido.log"

MAX_CRASH_REPORTS = 5
MAX_LOG_AGE_DAYS = 7
LOG_MAX_BYTES = 10_000_000
LOG_BACKUP_COUNT = 7


def _validate_log_dir(env_dir: str) -> str:
    """Keep APP_LOG_DIR under APP_HOME. Returns a safe path."""
    default = os.path.join(APP_HOME, "logs")
    if not env_dir:
        return default
    resolved = os.path.realpath(env_dir)
    allowed = os.path.realpath(APP_HOME)
    if not resolved.startswith(allowed + os.sep) and resolved != allowed:
        logger.warning("APP_LOG_DIR outside %s, using default", APP_HOME)
        return default
    return resolved


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry)


def _cleanup_old_logs(log_dir: str):
    cutoff = datetime.datetime.now() - datetime.timedelta(days=MAX_LOG_AGE_DAYS)
    try:
        for f in Path(log_dir).glob(f"{LOG_FILE_NAME}*"):
            if f.stat().st_mtime < cutoff.timestamp():
                f.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Log cleanup skipped: %s", e)


def _cleanup_old_crash_reports(crash_dir: str):
    """Keep only the newest MAX_CRASH_REPORTS crash files."""
    try:
        crash_files = sorted(
            Path(crash_dir).glob("crash_*.json"),
            key=lambda f: f.stat().st_mtime,
            reverse=True,
        )
        for old in crash_files[MAX_CRASH_REPORTS:]:
            old.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Crash report cleanup skipped: %s", e)


def setup_structured_logging(log_dir: str | None = None) -> str:
    """Attach a rotating JSON file handler to the root logger.

    Args:
        log_dir: Override log directory (validated against APP_HOME).

    Returns:
        The directory actually used.
    """
    resolved_dir = _validate_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(resolved_dir, mode=0o700, exist_ok=True)

    log_level = os.environ.get("APP_LOG_LEVEL", "INFO").upper()

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(resolved_dir, LOG_FILE_NAME),
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
    )
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.addHandler(handler)

    _cleanup_old_logs(resolved_dir)
    return resolved_dir


_console_handler: logging.Handler | None = None


def setup_console_logging(verbose: bool = False):
    """Plain-text stderr logging for interactive runs. Replaces any earlier one."""
    global _console_handler
    root = logging.getLogger()
    if _console_handler is not None:
        root.removeHandler(_console_handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if verbose:
        root.setLevel(logging.DEBUG)
    root.addHandler(handler)
    _console_handler = handler


def setup_faulthandler(log_dir: str):
    """Enable faulthandler in its own file.

    RotatingFileHandler would invalidate the file descriptor on rotation,
    so the fault log is never shared with the JSON log.
    """
    fault_path = os.path.join(log_dir, "kaleido_fault.log")
    try:
        fault_file = open(fault_path, "a", buffering=1)  # noqa: SIM115
        os.chmod(fault_path, 0o600)
        faulthandler.enable(file=fault_file, all_threads=True)
    except OSError as e:
        print(f"WARNING: Could not enable faulthandler: {e}", file=sys.stderr)


def write_crash_report(exc_type, exc_value, exc_tb, crash_dir: str | None = None) -> str:
    """Write a PII-stripped JSON crash dump. Returns its path."""
    from security import strip_pii

    crash_dir = crash_dir or os.path.join(APP_HOME, "crash_reports")
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

    _cleanup_old_crash_reports(crash_dir)
    return crash_path


def setup_excepthook():
    """Install sys.excepthook that writes structured crash dumps."""

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            write_crash_report(exc_type, exc_value, exc_tb)
        except OSError as e:
            print(f"WARNING: Could not write crash report: {e}", file=sys.stderr)
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics(log_dir: str | None = None) -> str:
    """Initialize file logging, faulthandler and crash dumps. Call from main."""
    resolved = setup_structured_logging(log_dir)
    setup_faulthandler(resolved)
    setup_excepthook()
    logger.info("Diagnostics initialized: logging=%s, faulthandler=enabled", resolved)
    return resolved
