# doctranscribe/models.py
from __future__ import annotations

import io
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union

from PIL import Image

PDF_MEDIA_TYPE = "application/pdf"


@dataclass(frozen=True)
class SourceFile:
    """Raw bytes of one uploaded document plus its declared media type."""
    data: bytes = field(repr=False)
    media_type: str
    name: str = "document"

    @property
    def is_pdf(self) -> bool:
        return self.media_type.lower() == PDF_MEDIA_TYPE

    @property
    def is_image(self) -> bool:
        return self.media_type.lower().startswith("image/")

    @classmethod
    def from_path(cls, path: Union[str, Path], media_type: str | None = None) -> "SourceFile":
        p = Path(path)
        if media_type is None:
            guessed, _ = mimetypes.guess_type(p.name)
            media_type = guessed or "application/octet-stream"
        return cls(data=p.read_bytes(), media_type=media_type, name=p.name)


@dataclass
class PageImage:
    """A rendered raster of one page. page_index is the 0-based source page."""
    image: Image.Image = field(repr=False)
    page_index: int = 0
    scale: float = 1.0
    compression: float = 1.0

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    def to_bytes(self, fmt: str = "PNG") -> bytes:
        """Encode the raster. The compression level only applies to lossy formats."""
        buf = io.BytesIO()
        fmt = fmt.upper()
        if fmt in ("JPEG", "JPG", "WEBP"):
            self.image.convert("RGB").save(buf, format="JPEG" if fmt == "JPG" else fmt,
                                           quality=int(round(self.compression * 100)))
        else:
            self.image.save(buf, format=fmt)
        return buf.getvalue()


@dataclass(frozen=True)
class RecognitionOptions:
    optimize_for_handwriting: bool = False
    enhance_contrast: bool = False
    language: str = "eng"
    quick_mode: bool = False


class Stage(str, Enum):
    PDF_CONVERSION = "pdf-conversion"
    PREPROCESSING = "preprocessing"
    OCR = "ocr"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ProgressEvent:
    """progress is the stage-local fraction, overall the weighted position across stages."""
    stage: Stage
    progress: float
    message: str
    overall: float = 0.0


@dataclass(frozen=True)
class PageTranscript:
    page_number: int
    text: str

    def __post_init__(self):
        if self.page_number < 1:
            raise ValueError(f"page_number is 1-based, got {self.page_number}")


class Method(str, Enum):
    EXTRACTED = "extracted"
    OCR = "ocr"


@dataclass
class TranscriptResult:
    """Final output of one orchestration run."""
    text: str
    method: Method
    total_pages: int = 1
    truncated: bool = False

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "method": self.method.value,
            "total_pages": self.total_pages,
            "truncated": self.truncated,
        }


@dataclass
class ServerResult:
    """Reply of the server-processing collaborator."""
    text: str
    method: Method = Method.OCR
