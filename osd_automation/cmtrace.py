"""CMTrace-compatible log records.

Task-sequence log viewers (CMTrace, the Support Center log viewer) parse one
record per line:

  <![LOG[message]LOG]!><time="13:37:00.123-60" date="10-18-2026" component="BIOSUpdate" context="SYSTEM" type="1" thread="4242" file="">

type: 1 = info, 2 = warning, 3 = error. The time suffix is the Windows time-zone
bias, UTC minus local time in minutes (-60 for CET, +300 for US Eastern).
"""

from __future__ import annotations

import getpass
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

SEVERITY_INFO = 1
SEVERITY_WARNING = 2
SEVERITY_ERROR = 3


def severity_for(levelno: int) -> int:
    if levelno >= logging.ERROR:
        return SEVERITY_ERROR
    if levelno >= logging.WARNING:
        return SEVERITY_WARNING
    return SEVERITY_INFO


def utc_bias(moment: datetime) -> str:
    """UTC minus local time in minutes, always signed (e.g. -60, +300, +0)."""
    offset = moment.astimezone().utcoffset()
    minutes = int(offset.total_seconds() // 60) if offset is not None else 0
    return f"{-minutes:+d}"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


class CMTraceFormatter(logging.Formatter):
    def __init__(self, component: str, context: Optional[str] = None):
        super().__init__()
        self.component = component
        self.context = _current_user() if context is None else context

    def format(self, record: logging.LogRecord) -> str:
        moment = datetime.fromtimestamp(record.created)
        clock = moment.strftime("%H:%M:%S") + f".{moment.microsecond // 1000:03d}"
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}: {record.exc_info[1]}"
        return (
            f"<![LOG[{message}]LOG]!>"
            f'<time="{clock}{utc_bias(moment)}" '
            f'date="{moment.strftime("%m-%d-%Y")}" '
            f'component="{self.component}" '
            f'context="{self.context}" '
            f'type="{severity_for(record.levelno)}" '
            f'thread="{record.process or os.getpid()}" '
            f'file="">'
        )


def configure_logging(log_file: Path, component: str, logger_name: str = "osd_automation") -> logging.Logger:
    """
    Route a logger tree into a CMTrace log file.

    Warnings and errors are echoed on stderr as well; that channel is not
    persisted anywhere.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(CMTraceFormatter(component))
    logger.addHandler(file_handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console)

    logger.propagate = False
    return logger
