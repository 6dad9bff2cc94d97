# doctranscribe/ocr_backends/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from PIL import Image

ProgressCallback = Callable[[float], None]


class EngineMode(int, Enum):
    """Values follow Tesseract's --oem numbering."""
    LEGACY = 2
    DEFAULT = 3


class SegmentationMode(int, Enum):
    """Values follow Tesseract's --psm numbering."""
    AUTO_OSD = 1
    AUTO = 3
    SINGLE_BLOCK = 6


@dataclass(frozen=True)
class EngineSettings:
    engine_mode: EngineMode
    segmentation: SegmentationMode
    use_dictionary: bool


class BaseOCREngine(ABC):
    @abstractmethod
    def recognize(self, image: Image.Image, settings: EngineSettings, language: str,
                  on_progress: Optional[ProgressCallback] = None) -> str:
        """Blocking recognition of one image. Returns "" when nothing was found."""
        pass

    def is_ready(self) -> bool:
        return True
