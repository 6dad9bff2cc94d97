# doctranscribe/ocr_backends/easyocr_backend.py
from __future__ import annotations

from typing import Dict, Any, List, Optional
import logging
import re
import warnings

import numpy as np
from PIL import Image

import easyocr

from .base import BaseOCREngine, EngineSettings, ProgressCallback, SegmentationMode

logger = logging.getLogger("doctranscribe")


# -----------------------------
# Helpers
# -----------------------------

def _as_bool(x, default=True) -> bool:
    if isinstance(x, bool):
        return x
    if isinstance(x, str):
        s = x.strip().lower()
        if s in ("true", "1", "yes", "y", "on"):
            return True
        if s in ("false", "0", "no", "n", "off"):
            return False
    return default


# Tesseract style codes used by RecognitionOptions -> EasyOCR codes
_EASYOCR_LANG_MAP = {
    "eng": "en",
    "vie": "vi",
    "fra": "fr",
    "deu": "de",
    "spa": "es",
}


def _to_easyocr_code(code: str) -> str:
    code = str(code).strip().lower()
    return _EASYOCR_LANG_MAP.get(code, code)


def _norm_langs_to_easyocr(kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """Accept languages or lang (list, or 'eng+vie' style string) as EasyOCR codes."""
    k = dict(kwargs or {})
    langs = k.pop("languages", None)
    lang = k.pop("lang", None)
    langs = langs or lang
    if isinstance(langs, str):
        langs = re.split(r"[+,]", langs)
    k["languages"] = [_to_easyocr_code(l) for l in (langs or []) if str(l).strip()] or ["en"]
    return k


def _torch_cuda_available() -> bool:
    try:
        import torch
        return bool(torch.cuda.is_available())
    except Exception:
        return False


# -----------------------------
# Backend
# -----------------------------

class EasyOCREngine(BaseOCREngine):
    """
    EasyOCR adapter.

    EasyOCR has no engine or segmentation modes and no dictionary switch, so
    EngineSettings only decides whether detected boxes are merged into paragraphs
    (always, except for the automatic-with-orientation row where lines are kept).
    Languages are fixed when the Reader is built.

    Supported kwargs (all optional):
      - languages / lang: list[str] | str (default ["en"])
      - gpu / use_gpu: bool (used only when CUDA is available)
      - model_storage_directory: str
      - download_enabled: bool (default True)
      - verbose: bool (default False)
    """

    def __init__(self, **kwargs: Dict[str, Any]):
        k = _norm_langs_to_easyocr(kwargs)
        self.languages: List[str] = k.pop("languages")

        want_gpu = _as_bool(k.pop("gpu", k.pop("use_gpu", True)), True)
        self._reader_kwargs = {
            "model_storage_directory": k.pop("model_storage_directory", None),
            "download_enabled": _as_bool(k.pop("download_enabled", True), True),
            "verbose": _as_bool(k.pop("verbose", False), False),
        }
        if k:
            logger.debug("Ignoring unsupported EasyOCR kwargs, %s", sorted(k))

        use_gpu = bool(want_gpu and _torch_cuda_available())
        try:
            self.reader = self._build_reader(use_gpu)
        except Exception as e:
            if not use_gpu:
                raise
            logger.warning("EasyOCR GPU init failed, retrying on CPU, %s", e)
            self.reader = self._build_reader(False)

    def _build_reader(self, gpu: bool):
        return easyocr.Reader(self.languages, gpu=gpu, **self._reader_kwargs)

    def recognize(self, image: Image.Image, settings: EngineSettings, language: str,
                  on_progress: Optional[ProgressCallback] = None) -> str:
        requested = [_to_easyocr_code(l) for l in re.split(r"[+,]", language or "") if l.strip()]
        missing = [l for l in requested if l not in self.languages]
        if missing:
            logger.debug("EasyOCR reader built for %s, %s not loaded", self.languages, missing)

        if on_progress:
            on_progress(0.0)
        pixels = np.array(image.convert("RGB"))
        merge = settings.segmentation != SegmentationMode.AUTO_OSD
        # the detector spams overflow warnings on blank regions
        with np.errstate(over="ignore", invalid="ignore"), warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            lines = self.reader.readtext(pixels, detail=0, paragraph=merge)
        if on_progress:
            on_progress(1.0)

        return "\n".join(str(x) for x in (lines or []) if x).strip()
