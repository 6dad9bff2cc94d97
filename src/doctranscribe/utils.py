# src/doctranscribe/utils.py
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Optional

from slugify import slugify

logger = logging.getLogger("doctranscribe")

SUPPORTED_SUFFIXES = (".pdf", ".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp")


def safe_fname(name: str, fallback: str = "file") -> str:
    """
    Create a filesystem safe name, preserve extension when present.
    """
    name = (name or "").strip() or fallback
    if "." in name:
        base, ext = name.rsplit(".", 1)
        return f"{slugify(base)[:100] or fallback}.{ext}"
    return slugify(name)[:100] or fallback


def write_txt_export(output_dir: Path, source_name: str, text: str) -> Path:
    """Write a transcript as <slug>.txt inside output_dir."""
    stem = Path(source_name).stem or "transcript"
    target = Path(output_dir) / safe_fname(f"{stem}.txt")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    return target


def append_error_log(error_log_path: Optional[Path], source_path: str, reason: str) -> None:
    """One JSON line per failed file. Logging failures never interrupt the run."""
    if not error_log_path:
        return
    try:
        error_log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(error_log_path, "a", encoding="utf-8") as f:
            log_entry = {
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
                "source_path": source_path,
                "error_reason": reason,
            }
            f.write(json.dumps(log_entry, ensure_ascii=False) + "\n")
    except Exception:
        logger.exception("Failed to write error log")
