# src/doctranscribe/recognizer.py
from __future__ import annotations

import asyncio
import importlib
import logging
from typing import Any, Callable, Dict, Optional

from .config import EASYOCR_BACKEND, OPENAI_BACKEND, TESSERACT_BACKEND
from .exceptions import RecognitionError, UnavailableEngineError
from .models import PageImage, RecognitionOptions
from .ocr_backends.base import BaseOCREngine, EngineMode, EngineSettings, SegmentationMode

logger = logging.getLogger("doctranscribe")

_PRINTED = EngineSettings(EngineMode.DEFAULT, SegmentationMode.AUTO_OSD, use_dictionary=True)
_HANDWRITING_QUICK = EngineSettings(EngineMode.DEFAULT, SegmentationMode.AUTO, use_dictionary=True)
_HANDWRITING = EngineSettings(EngineMode.LEGACY, SegmentationMode.SINGLE_BLOCK, use_dictionary=False)


def select_engine_settings(optimize_for_handwriting: bool, quick_mode: bool) -> EngineSettings:
    """
    | handwriting | quick | engine  | segmentation          | dictionary |
    |-------------|-------|---------|-----------------------|------------|
    | False       | any   | default | automatic + OSD       | on         |
    | True        | True  | default | automatic             | on         |
    | True        | False | legacy  | single uniform block  | off        |
    """
    if not optimize_for_handwriting:
        return _PRINTED
    if quick_mode:
        return _HANDWRITING_QUICK
    return _HANDWRITING


def settings_for(options: RecognitionOptions) -> EngineSettings:
    return select_engine_settings(options.optimize_for_handwriting, options.quick_mode)


# -----------------------------
# Backend loading
# -----------------------------

_BACKEND_ALIASES = {
    "tess": TESSERACT_BACKEND,
    "tesseract": TESSERACT_BACKEND,
    "pytesseract": TESSERACT_BACKEND,
    "easy": EASYOCR_BACKEND,
    "easyocr": EASYOCR_BACKEND,
    "openai": OPENAI_BACKEND,
    "gpt": OPENAI_BACKEND,
}


def normalize_backend_alias(name: str) -> str:
    """
    Allow short aliases (case-insensitive) and module-only shorthands.
    Returns a fully qualified dotted path 'module.Class'.
    """
    if not name:
        return name
    original = name.strip().strip('"\'')
    alias = original.lower()
    if alias in _BACKEND_ALIASES:
        return _BACKEND_ALIASES[alias]
    if alias.endswith(".tesseract_backend"):
        return TESSERACT_BACKEND
    if alias.endswith(".easyocr_backend"):
        return EASYOCR_BACKEND
    if alias.endswith(".openai_backend"):
        return OPENAI_BACKEND
    return original


def _import_obj(dotted: str):
    mod_path, _, attr = dotted.rpartition(".")
    if not mod_path or not attr:
        raise ImportError(f"Invalid backend path, {dotted}")
    mod = importlib.import_module(mod_path)
    try:
        return getattr(mod, attr)
    except AttributeError as e:
        raise ImportError(f"Backend class not found, {dotted}") from e


def load_engine(backend_path: str, backend_kwargs: Optional[Dict[str, Any]] = None) -> BaseOCREngine:
    """Import and instantiate an OCR backend. Any failure means the engine is unavailable."""
    dotted = normalize_backend_alias(backend_path)
    try:
        engine_cls = _import_obj(dotted)
        engine = engine_cls(**(backend_kwargs or {}))
    except Exception as e:
        logger.exception("Backend initialization failed for %s", dotted)
        raise UnavailableEngineError(f"OCR backend {dotted} could not be initialized, {e}") from e
    logger.info("OCR backend ready, %s", dotted)
    return engine


def load_recognizer(backend_path: str, backend_kwargs: Optional[Dict[str, Any]] = None) -> "RecognitionAdapter":
    """
    Like load_engine, but a backend that fails to load gives a not-ready
    adapter instead of an error, so text-layer extraction keeps working.
    """
    try:
        return RecognitionAdapter(load_engine(backend_path, backend_kwargs))
    except UnavailableEngineError as e:
        logger.warning("Continuing without OCR, only embedded PDF text can be read, %s", e)
        return RecognitionAdapter(None, unavailable_reason=str(e))


# -----------------------------
# Adapter
# -----------------------------

class RecognitionAdapter:
    """
    Runs OCR on one image through an already initialized backend.

    Progress ticks from the engine thread are forwarded to the event loop as
    they arrive, and a final 1.0 tick is always delivered on success.
    """

    def __init__(self, engine: Optional[BaseOCREngine], unavailable_reason: str = ""):
        self.engine = engine
        self.unavailable_reason = unavailable_reason
        self._ready: Optional[bool] = None

    @property
    def ready(self) -> bool:
        if self._ready is None:
            self._ready = self.engine is not None and bool(self.engine.is_ready())
        return self._ready

    def ensure_ready(self):
        if not self.ready:
            raise UnavailableEngineError(self.unavailable_reason or "The recognition engine is not ready")

    async def recognize(
        self,
        page: PageImage,
        options: RecognitionOptions,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> str:
        self.ensure_ready()
        settings = settings_for(options)
        loop = asyncio.get_running_loop()
        last = [0.0]

        def _deliver(value: float):
            last[0] = value
            if on_progress:
                on_progress(value)

        def _tick(value: float):
            value = min(1.0, max(0.0, float(value)))
            loop.call_soon_threadsafe(_deliver, value)

        try:
            text = await asyncio.to_thread(self.engine.recognize, page.image, settings, options.language, _tick)
        except UnavailableEngineError:
            raise
        except Exception as e:
            logger.warning("Recognition failed on page %d, %s", page.page_index + 1, e)
            raise RecognitionError(f"Recognition failed, {e}") from e

        # ticks queued by the worker thread run before this point
        if last[0] < 1.0:
            _deliver(1.0)
        return (text or "").strip()
