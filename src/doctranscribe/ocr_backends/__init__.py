# doctranscribe/ocr_backends/__init__.py
from .base import BaseOCREngine, EngineMode, EngineSettings, SegmentationMode

__all__ = ["BaseOCREngine", "EngineMode", "EngineSettings", "SegmentationMode"]
