# src/doctranscribe/logger.py

import logging
from pathlib import Path
from queue import Queue
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import Union, Optional

# --- Custom Log Level for Progress ---
PROGRESS = 25
logging.addLevelName(PROGRESS, "PROGRESS")

def progress(self, msg, *args, **kwargs):
    if self.isEnabledFor(PROGRESS):
        self._log(PROGRESS, msg, args, **kwargs)

logging.Logger.progress = progress

PACKAGE_LOGGER = "doctranscribe"
FILE_FORMAT = "%(asctime)s | %(threadName)-12s | %(levelname)-8s | %(message)s"
CONSOLE_FORMAT = "%(levelname)-8s %(message)s"

# --- Handlers fed by the listener ---
class UILogHandler(logging.Handler):
    """Plain text lines for the web UI log box."""
    def __init__(self, q: Queue):
        super().__init__()
        self.q = q
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord):
        self.q.put(self.format(record))

class UIEventHandler(logging.Handler):
    """
    Progress records as dicts for the web UI progress bar. The orchestrator
    attaches phase (stage name), pct (0-100 overall) and document to each record.
    """
    def __init__(self, q: Queue):
        super().__init__()
        self.q = q

    def emit(self, record: logging.LogRecord):
        try:
            self.q.put({
                "level": record.levelname,
                "msg": record.getMessage(),
                "phase": getattr(record, "phase", None),
                "pct": getattr(record, "pct", None),
                "document": getattr(record, "document", None),
            })
        except Exception:
            self.handleError(record)

class LevelFilter(logging.Filter):
    """Keeps only records of one level, or everything but that level when exclude=True."""
    def __init__(self, levelno: int, exclude: bool = False):
        super().__init__()
        self.levelno = levelno
        self.exclude = exclude

    def filter(self, record: logging.LogRecord) -> bool:
        return (record.levelno == self.levelno) != self.exclude

def _prepare(handler: logging.Handler, level: int, only_progress: bool = False) -> logging.Handler:
    handler.setLevel(level)
    handler.addFilter(LevelFilter(PROGRESS, exclude=not only_progress))
    return handler

# --- Wiring ---
def setup_logging(
    log_queue: Queue,
    *,
    text_ui_queue: Optional[Queue] = None,
    event_ui_queue: Optional[Queue] = None,
    console: bool = False,
    level: int = logging.INFO,
    file_path: Optional[Union[str, Path]] = None,
    file_level: Optional[int] = None,
) -> QueueListener:
    """
    Build the listener that drains the package log queue.

    Args:
        log_queue: The queue the package logger writes to (see attach_queue_handler).
        text_ui_queue: Queue for the web UI text log.
        event_ui_queue: Queue for the web UI progress events.
        console: Also echo non-progress records to stderr.
        level: The base level for UI and console outputs.
        file_path: Rotating log file; progress records are kept out of it.
        file_level: Level for the file, defaults to `level`.

    Returns:
        A QueueListener instance. You must call .start() on it.
    """
    handlers = []

    if file_path:
        fp = Path(file_path)
        fp.parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(fp, maxBytes=5*1024*1024, backupCount=2, encoding="utf-8")
        fh.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(_prepare(fh, file_level if file_level is not None else level))

    if console:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        handlers.append(_prepare(ch, level))

    if text_ui_queue is not None:
        handlers.append(_prepare(UILogHandler(text_ui_queue), level))

    if event_ui_queue is not None:
        handlers.append(_prepare(UIEventHandler(event_ui_queue), PROGRESS, only_progress=True))

    return QueueListener(log_queue, *handlers, respect_handler_level=True)

def attach_queue_handler(log_queue: Queue, level: int = logging.DEBUG) -> QueueHandler:
    """
    Point the package logger at log_queue, dropping handlers from earlier runs.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()
    qh = QueueHandler(log_queue)
    logger.addHandler(qh)
    return qh
