# doctranscribe/ocr_backends/tesseract_backend.py
from __future__ import annotations

from typing import Dict, Any, Optional
import os
import platform
import re
import shutil
import logging
from pathlib import Path

from PIL import Image
import pytesseract as pt

from .base import BaseOCREngine, EngineSettings, ProgressCallback

logger = logging.getLogger("doctranscribe")


def _as_int(x, default: int) -> int:
    try:
        if isinstance(x, str):
            x = x.strip().rstrip(",}] ")
        return int(x)
    except Exception:
        m = re.search(r"-?\d+", str(x))
        return int(m.group()) if m else default


def resolve_tesseract_cmd() -> str | None:
    # 1) explicit env override
    cmd = os.getenv("TESSERACT_CMD")
    if cmd and Path(cmd).exists():
        return cmd

    # 2) look on PATH
    cmd = shutil.which("tesseract")
    if cmd:
        return cmd

    # 3) common fallbacks by OS
    system = platform.system()
    if system == "Windows":
        candidates = [
            r"C:\Program Files\Tesseract-OCR\tesseract.exe",
            r"C:\Program Files (x86)\Tesseract-OCR\tesseract.exe",
        ]
    elif system == "Darwin":
        candidates = [
            "/opt/homebrew/bin/tesseract",
            "/usr/local/bin/tesseract",
        ]
    else:
        candidates = [
            "/usr/bin/tesseract",
            "/usr/local/bin/tesseract",
            "/snap/bin/tesseract",
        ]

    for p in candidates:
        if Path(p).exists():
            return p
    return None


# Map short codes to Tesseract's traineddata names
_TESS_LANG_MAP = {
    "en": "eng",
    "vi": "vie",
    "fr": "fra",
    "de": "deu",
    "es": "spa",
}


def to_tesseract_lang(language: str) -> str:
    codes = [_TESS_LANG_MAP.get(part.strip().lower(), part.strip().lower())
             for part in re.split(r"[+,]", language or "") if part.strip()]
    return "+".join(codes) or "eng"


def build_config(settings: EngineSettings, preserve_spaces: bool = True, extra_config: str = "") -> str:
    cfg_parts = [f"--oem {int(settings.engine_mode)}", f"--psm {int(settings.segmentation)}"]
    if preserve_spaces:
        cfg_parts.append("-c preserve_interword_spaces=1")
    if not settings.use_dictionary:
        cfg_parts.append("-c load_system_dawg=0")
        cfg_parts.append("-c load_freq_dawg=0")
    if extra_config:
        cfg_parts.append(extra_config)
    return " ".join(cfg_parts)


class TesseractOCREngine(BaseOCREngine):
    """
    Pytesseract-based backend.

    Kwargs supported (all optional):
      - tesseract_cmd: full path to tesseract binary
      - tessdata_prefix: path to tessdata directory
      - preserve_interword_spaces: bool (default True)
      - extra_config: str of extra flags (appended to config string)
      - timeout: seconds before pytesseract kills the process (default 0 = none)
      - (ignored safely if present): languages, lang, gpu, use_gpu
    """

    def __init__(self, **kwargs: Dict[str, Any]):
        k = dict(kwargs)  # don't mutate caller's dict

        # language is chosen per call from RecognitionOptions
        for junk in ("languages", "lang", "gpu", "use_gpu"):
            k.pop(junk, None)

        tesseract_cmd = k.pop("tesseract_cmd", None) or k.pop("tesseract_path", None) or resolve_tesseract_cmd()
        if tesseract_cmd:
            pt.pytesseract.tesseract_cmd = str(tesseract_cmd)

        tessdata_prefix = k.pop("tessdata_prefix", None)
        if tessdata_prefix:
            os.environ["TESSDATA_PREFIX"] = str(tessdata_prefix)

        self._preserve_spaces = bool(k.pop("preserve_interword_spaces", True))
        self._extra_config = str(k.pop("extra_config", "")).strip()
        self._timeout = _as_int(k.pop("timeout", 0), 0)

        if k:
            logger.debug("Ignoring unsupported Tesseract kwargs, %s", sorted(k))

    def is_ready(self) -> bool:
        try:
            pt.get_tesseract_version()
            return True
        except Exception as e:
            logger.warning("Tesseract is not available, %s", e)
            return False

    def recognize(self, image: Image.Image, settings: EngineSettings, language: str,
                  on_progress: Optional[ProgressCallback] = None) -> str:
        config = build_config(settings, self._preserve_spaces, self._extra_config)
        lang = to_tesseract_lang(language)
        logger.debug("Tesseract lang=%s config=%s", lang, config)

        # pytesseract runs the binary to completion, so only start and end ticks exist
        if on_progress:
            on_progress(0.0)
        text = pt.image_to_string(image, lang=lang, config=config, timeout=self._timeout)
        if on_progress:
            on_progress(1.0)
        return (text or "").strip()
