# doctranscribe/config.py
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Dict, Any, Optional

TESSERACT_BACKEND = "doctranscribe.ocr_backends.tesseract_backend.TesseractOCREngine"
EASYOCR_BACKEND = "doctranscribe.ocr_backends.easyocr_backend.EasyOCREngine"
OPENAI_BACKEND = "doctranscribe.ocr_backends.openai_backend.OpenAIVisionEngine"

PREPROCESS_QUALITIES = ("low", "medium", "high")


@dataclass
class TranscribeConfig:
    """Configuration for docTranscribe, shared by the orchestrator, CLI and web UI."""

    # Orchestration policy
    page_cap: int = 3
    soft_timeout_seconds: float = 15.0
    render_scale: float = 1.5
    min_extracted_chars: int = 10
    preprocess_quality: str = "medium"
    append_truncation_note: bool = False
    format_output: bool = True

    # Engines
    languages: List[str] = field(default_factory=lambda: ["eng"])
    ocr_backend: str = TESSERACT_BACKEND
    ocr_backend_kwargs: Dict[str, Any] = field(default_factory=dict)
    pdf_engine: str = "pymupdf"

    # Batch runs
    output_path: Optional[Path] = None
    error_log_path: Optional[Path] = None
    export_txt: bool = False
    force_rerun: bool = False
    log_file: Optional[Path] = None

    def __post_init__(self):
        if self.page_cap < 1:
            raise ValueError(f"page_cap must be at least 1, got {self.page_cap}")
        if self.render_scale <= 0:
            raise ValueError(f"render_scale must be positive, got {self.render_scale}")
        if self.preprocess_quality not in PREPROCESS_QUALITIES:
            raise ValueError(
                f"preprocess_quality must be one of {PREPROCESS_QUALITIES}, got {self.preprocess_quality!r}"
            )

    def to_dict(self):
        """Converts config to a plain dictionary (paths as strings)."""
        d = asdict(self)
        for key, value in d.items():
            if isinstance(value, Path):
                d[key] = str(value)
        return d

    @classmethod
    def from_dict(cls, config_dict: dict):
        d = dict(config_dict)

        for key in ["output_path", "error_log_path", "log_file"]:
            if key in d and isinstance(d[key], str):
                d[key] = Path(d[key])

        # explicit None means use the default
        for key in ["page_cap", "soft_timeout_seconds", "render_scale", "min_extracted_chars",
                    "preprocess_quality", "languages", "ocr_backend", "pdf_engine"]:
            if d.get(key) is None:
                d.pop(key, None)

        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in d.items() if k in known})
