# src/doctranscribe/ui_utils.py
from __future__ import annotations

import asyncio
import logging
import time
import traceback
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from queue import Empty, Queue
from threading import Lock, Thread
from typing import Dict, Optional

from .config import TranscribeConfig
from .exceptions import ExhaustedError, UnavailableEngineError
from .logger import attach_queue_handler, setup_logging
from .models import PageTranscript, RecognitionOptions, SourceFile
from .orchestrator import DocumentSession, TranscriptionOrchestrator

logger = logging.getLogger("doctranscribe")


def in_colab() -> bool:
    try:
        import google.colab  # type: ignore  # noqa: F401
        return True
    except ImportError:
        return False


# ---------------- Log Filtering & Progress ----------------

class UILogger:
    """Filters log messages for a cleaner UI."""
    def __init__(self, mode="Basic"):
        self.mode = mode
        self.basic_keywords = [
            "transcribing",
            "transcribed",
            "strategy",
            "only the first",
            "taking longer",
            "exhausted",
            "failed",
            "error",
        ]

    def filter(self, line: str) -> Optional[str]:
        if self.mode == "Advanced":
            return line
        low = line.strip().lower()
        if any(k in low for k in self.basic_keywords):
            return line.strip()
        return None


class ProgressView:
    """
    Consumes structured PROGRESS events (see UIEventHandler) for one document
    and keeps what the progress bar shows.
    """
    def __init__(self, document: str = ""):
        self.document = document
        self.pct = 0.0
        self.phase_name = "Starting"
        self.message = ""

    def update_from_event(self, e: dict):
        if self.document and e.get("document") not in (None, self.document):
            return
        phase = e.get("phase") or ""
        if phase:
            self.phase_name = phase.replace("-", " ").title()
        if isinstance(e.get("pct"), (int, float)):
            self.pct = float(e["pct"])
        self.message = e.get("msg") or self.message

    def get_percent(self) -> float:
        return max(0.0, min(100.0, self.pct))

    def get_description(self) -> str:
        return f"{self.phase_name} | {self.message}" if self.message else self.phase_name


def render_progress_html(pct: float, text: str = "") -> str:
    pct = max(0, min(100, int(pct)))
    return (
        "<div style='height:8px;background:#eee;border-radius:6px;overflow:hidden'>"
        f"<div style='width:{pct}%;height:100%;background:#4f46e5'></div></div>"
        f"<div style='font-size:12px;margin-top:6px;color:#555'>{text}</div>"
    )


# ---------------- Viewer state ----------------

class SessionLoop:
    """An event loop on a daemon thread. A DocumentSession and its page locks live on it."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = Thread(target=self.loop.run_forever, name="doctranscribe-loop", daemon=True)
        self._thread.start()

    def submit(self, coro) -> Future:
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def close(self):
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        self.loop.close()


@dataclass
class ViewerState:
    """What the web UI keeps between events for the uploaded document."""
    session: DocumentSession
    runner: SessionLoop = field(default_factory=SessionLoop)
    page_count: int = 1

    def close(self):
        self.runner.close()


_orchestrators: Dict[str, TranscriptionOrchestrator] = {}
_orchestrators_lock = Lock()


def get_orchestrator(config: TranscribeConfig) -> TranscriptionOrchestrator:
    """One orchestrator per backend for the life of the UI process; engines load once."""
    key = f"{config.ocr_backend}|{sorted(config.ocr_backend_kwargs.items())}|{config.languages}"
    with _orchestrators_lock:
        if key not in _orchestrators:
            _orchestrators[key] = TranscriptionOrchestrator.from_config(config)
        return _orchestrators[key]


# ---------------- Runs ----------------

def run_transcription(
    file_path,
    options: RecognitionOptions,
    *,
    log_mode: str = "Basic",
    config: Optional[TranscribeConfig] = None,
):
    """
    Streams UI updates while the document is transcribed on a SessionLoop.

    Yields dicts with 'log' and 'progress_html'; the last one also carries
    'transcript', 'page_count' and 'viewer' when transcription succeeded.
    """
    config = config or TranscribeConfig()
    path = Path(file_path) if file_path else None
    if path is None or not path.exists():
        yield {"log": "No file uploaded.\n", "progress_html": render_progress_html(0, "No input")}
        return

    text_ui_queue: Queue = Queue()
    event_ui_queue: Queue = Queue()
    log_queue: Queue = Queue(-1)
    ui_filter = UILogger(log_mode)
    view = ProgressView(path.name)
    log_history = ""

    def _drain():
        nonlocal log_history
        try:
            while True:
                line = ui_filter.filter(text_ui_queue.get_nowait())
                if line:
                    log_history += line + "\n"
        except Empty:
            pass
        try:
            while True:
                view.update_from_event(event_ui_queue.get_nowait())
        except Empty:
            pass

    attach_queue_handler(log_queue)
    listener = setup_logging(
        log_queue,
        text_ui_queue=text_ui_queue,
        event_ui_queue=event_ui_queue,
        level=logging.DEBUG if log_mode == "Advanced" else logging.INFO,
        file_path=config.log_file,
    )
    listener.start()

    viewer: Optional[ViewerState] = None
    result = None
    failure = ""
    try:
        orchestrator = get_orchestrator(config)
        source = SourceFile.from_path(path)
        viewer = ViewerState(session=orchestrator.session(source, options))
        future = viewer.runner.submit(viewer.session.transcribe())
        while not future.done():
            _drain()
            yield {"log": log_history,
                   "progress_html": render_progress_html(view.get_percent(), view.get_description())}
            time.sleep(0.2)
        result = future.result()
        viewer.page_count = max(1, result.total_pages)
    except ExhaustedError as e:
        failure = e.message
    except UnavailableEngineError as e:
        failure = f"OCR engine unavailable: {e}"
    except Exception:
        failure = "[UI Error]\n" + traceback.format_exc()
    finally:
        listener.stop()
    _drain()

    if failure:
        if viewer is not None:
            viewer.close()
        log_history += f"\n{failure}\n"
        yield {"log": log_history, "progress_html": render_progress_html(0, "Failed"), "transcript": failure}
        return

    note = ""
    if result.truncated:
        note = f" (first {config.page_cap} of {result.total_pages} pages)"
    log_history += f"\nTranscription complete via {result.method.value}{note}.\n"
    yield {
        "log": log_history,
        "progress_html": render_progress_html(100, "Done"),
        "transcript": result.text,
        "page_count": viewer.page_count,
        "viewer": viewer,
    }


def read_page(viewer: Optional[ViewerState], page_number) -> PageTranscript:
    """
    Page navigation. Served from the session cache when possible, otherwise
    the single page pipeline runs on the viewer's loop.
    """
    if viewer is None:
        raise ValueError("Upload and transcribe a document first.")
    try:
        n = int(page_number)
    except (TypeError, ValueError):
        n = 1
    return viewer.runner.submit(viewer.session.get_page(n)).result()
