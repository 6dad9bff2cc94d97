"""
Shared fixtures: synthetic PDFs built with PyMuPDF, images built with Pillow,
and in-process fakes for the OCR engine and the server collaborator.
"""

import io
import time
from typing import List, Optional, Sequence, Union

import fitz
import pytest
from PIL import Image, ImageDraw

from doctranscribe.config import TranscribeConfig
from doctranscribe.models import Method, ServerResult, SourceFile
from doctranscribe.ocr_backends.base import BaseOCREngine
from doctranscribe.orchestrator import TranscriptionOrchestrator
from doctranscribe.preprocess import ImagePreprocessor
from doctranscribe.rasterizer import PageRasterizer
from doctranscribe.recognizer import RecognitionAdapter
from doctranscribe.server import BaseServerProcessor
from doctranscribe.text_layer import TextLayerExtractor


def make_pdf(pages: Sequence[Optional[str]]) -> bytes:
    """One PDF page per entry; None or "" leaves the page without a text layer."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text, fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def make_png(width: int = 400, height: int = 300) -> bytes:
    img = Image.new("RGB", (width, height), color=(255, 255, 255))
    ImageDraw.Draw(img).rectangle([50, 100, 350, 120], fill=(0, 0, 0))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def pdf_source(pages: Sequence[Optional[str]], name: str = "doc.pdf") -> SourceFile:
    return SourceFile(data=make_pdf(pages), media_type="application/pdf", name=name)


def image_source(name: str = "scan.png", width: int = 400, height: int = 300) -> SourceFile:
    return SourceFile(data=make_png(width, height), media_type="image/png", name=name)


class FakeEngine(BaseOCREngine):
    """
    Scripted OCR backend. `texts` is either one string returned for every call,
    a list consumed call by call (the last entry repeats), or an exception.
    """

    def __init__(self, texts: Union[str, List, Exception] = "", ready: bool = True,
                 ticks: Sequence[float] = (0.0, 1.0), delay: float = 0.0):
        self.texts = texts
        self.ready = ready
        self.ticks = list(ticks)
        self.delay = delay
        self.calls = []

    def is_ready(self) -> bool:
        return self.ready

    def recognize(self, image, settings, language, on_progress=None) -> str:
        self.calls.append({"size": image.size, "settings": settings, "language": language})
        if self.delay:
            time.sleep(self.delay)
        for t in self.ticks:
            if on_progress:
                on_progress(t)
        if isinstance(self.texts, Exception):
            raise self.texts
        if isinstance(self.texts, list):
            index = min(len(self.calls) - 1, len(self.texts) - 1)
            value = self.texts[index]
            if isinstance(value, Exception):
                raise value
            return value
        return self.texts


class FakeServer(BaseServerProcessor):
    def __init__(self, text: Union[str, Exception] = "", method: Method = Method.OCR):
        self.text = text
        self.method = method
        self.calls: List[SourceFile] = []

    async def process(self, source: SourceFile) -> ServerResult:
        self.calls.append(source)
        if isinstance(self.text, Exception):
            raise self.text
        return ServerResult(text=self.text, method=self.method)


def build_orchestrator(engine: BaseOCREngine, server: Optional[BaseServerProcessor] = None,
                       config: Optional[TranscribeConfig] = None) -> TranscriptionOrchestrator:
    return TranscriptionOrchestrator(
        rasterizer=PageRasterizer(),
        text_extractor=TextLayerExtractor(),
        preprocessor=ImagePreprocessor(),
        recognizer=RecognitionAdapter(engine),
        server=server or FakeServer(),
        config=config or TranscribeConfig(),
    )


@pytest.fixture
def events():
    """Collects ProgressEvents; pass `events.append` as on_progress."""
    return []
