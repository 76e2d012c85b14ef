"""
Logging setup for pipeline runs

Console output is human-readable and prefixed with the current stage. File
output (LOG_DIR) is plain text or one JSON object per line, carrying the
run fields stamped by LogContext.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Literal, Optional


# Record attributes stamped by LogContext and copied into JSON lines
RUN_FIELDS = ("run_id", "stage", "event", "ref", "duration_ms", "image_tag")

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(stage_prefix)s%(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s %(stage_prefix)s%(message)s"


class StagePrefixFilter(logging.Filter):
    """Adds stage_prefix ('[image-publish] ' or '') for the text formats"""

    def filter(self, record: logging.LogRecord) -> bool:
        stage = getattr(record, "stage", None)
        record.stage_prefix = f"[{stage}] " if stage else ""
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({
            key: getattr(record, key)
            for key in RUN_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Colours the level name on a terminal"""

    LEVEL_COLORS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[36m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        plain = record.levelname
        record.levelname = f"{self.LEVEL_COLORS.get(plain, '')}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def setup_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    log_dir: Optional[str] = None,
    json_format: bool = False,
    log_file: Optional[str] = None,
    quiet: bool = True
) -> logging.Logger:
    """Configure the root logger for a helmsman process

    Args:
        level: Console level
        log_dir: Also log everything at DEBUG to a file here
        json_format: File log as JSON lines instead of text
        log_file: File name inside log_dir (timestamped if None)
        quiet: Keep httpx/httpcore request chatter out of the console
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG if log_dir else getattr(logging, level))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level))
    console.addFilter(StagePrefixFilter())
    formatter_class = ColoredFormatter if sys.stderr.isatty() else logging.Formatter
    console.setFormatter(formatter_class(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(console)

    if quiet:
        for name in ("httpx", "httpcore"):
            logging.getLogger(name).setLevel(logging.WARNING)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        name = log_file or f"helmsman_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

        file_handler = logging.FileHandler(directory / name, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.addFilter(StagePrefixFilter())
        file_handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)

    return root


class LogContext:
    """Stamp run fields onto every record created inside the block

    Nested contexts add to the outer fields:

        with LogContext(run_id=record.run_id, ref=event.ref):
            with LogContext(stage="image-publish"):
                logger.info("pushing")   # carries run_id, ref and stage
    """

    def __init__(self, **fields):
        self.fields = fields
        self._previous = None

    def __enter__(self) -> "LogContext":
        self._previous = logging.getLogRecordFactory()
        previous, fields = self._previous, self.fields

        def factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            for key, value in fields.items():
                setattr(record, key, value)
            return record

        logging.setLogRecordFactory(factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        logging.setLogRecordFactory(self._previous)
        return False
