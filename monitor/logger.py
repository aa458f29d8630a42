"""
Logging for the scanner.

Every scan log line may carry context via extra={...}: the cycle number,
the platform, a market id or an alert id. Both formatters surface it:
  - stderr: short colored lines, context appended as "[cycle=3 platform=kalshi]"
  - logs/scan_YYYYMMDD_HHMMSS.log: full debug trail with logger names
  - optional ndjson file: one JSON object per record, context as keys
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

_RESET = "\033[0m"
_DIM = "\033[2m"

_LEVEL_STYLES = {
    "DEBUG": ("\033[2m", "DBG"),
    "INFO": ("\033[36m", "INF"),
    "WARNING": ("\033[33m", "WRN"),
    "ERROR": ("\033[31m", "ERR"),
    "CRITICAL": ("\033[1;31m", "CRT"),
}

CONTEXT_KEYS = ("cycle", "platform", "market_id", "alert_id")

# Chatty libraries: HTTP request lines per Dome call, uvicorn per API request
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.error", "uvicorn.access")


def scan_context(record: logging.LogRecord) -> dict[str, object]:
    """Context fields attached to a record, in CONTEXT_KEYS order."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class ConsoleFormatter(logging.Formatter):
    """HH:MM:SS TAG message [key=value ...]"""

    def __init__(self, use_color: bool = True):
        super().__init__()
        self._use_color = use_color and _supports_color()

    def _paint(self, style: str, text: str) -> str:
        return f"{style}{text}{_RESET}" if self._use_color else text

    def format(self, record: logging.LogRecord) -> str:
        style, tag = _LEVEL_STYLES.get(record.levelname, ("", record.levelname[:3]))
        ts = time.strftime("%H:%M:%S", time.localtime(record.created))
        parts = [self._paint(_DIM, ts), self._paint(style, tag), record.getMessage()]

        context = scan_context(record)
        if context:
            parts.append(self._paint(_DIM, "[" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"))

        line = " ".join(parts)
        if record.exc_info and record.exc_info[1]:
            line += "\n     " + self._paint(_LEVEL_STYLES["ERROR"][0], str(record.exc_info[1]))
        return line


class JSONFormatter(logging.Formatter):
    """Single-line JSON for machine consumption."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(scan_context(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, separators=(",", ":"), default=str)


def setup_logging(
    level: str = "INFO",
    json_log_file: str | None = None,
    log_dir: str | None = None,
) -> str:
    """
    Replace the root handlers with console + scan log file (+ ndjson file).

    The console honours *level*; the files always capture DEBUG.
    Returns the path of the scan log file.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(ConsoleFormatter())
    root.addHandler(console)

    if log_dir is None:
        log_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "logs")
    os.makedirs(log_dir, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_path = os.path.join(log_dir, f"scan_{stamp}.log")

    scan_file = logging.FileHandler(log_path, mode="a")
    scan_file.setLevel(logging.DEBUG)
    scan_file.setFormatter(logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s:%(lineno)d %(threadName)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(scan_file)

    if json_log_file:
        ndjson = logging.FileHandler(json_log_file, mode="a")
        ndjson.setFormatter(JSONFormatter())
        root.addHandler(ndjson)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_path


def _supports_color() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return sys.stderr.isatty()
