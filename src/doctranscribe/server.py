# src/doctranscribe/server.py
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from .models import Method, RecognitionOptions, ServerResult, SourceFile
from .rasterizer import decode_image
from .recognizer import RecognitionAdapter

logger = logging.getLogger("doctranscribe")

# the hosted action always recognizes images with the handwriting profile
SERVER_OPTIONS = RecognitionOptions(optimize_for_handwriting=True, quick_mode=False)


class BaseServerProcessor(ABC):
    """
    Remote processing collaborator. The orchestrator treats empty text the
    same as a raised error.
    """

    @abstractmethod
    async def process(self, source: SourceFile) -> ServerResult:
        raise NotImplementedError


class LocalServerProcessor(BaseServerProcessor):
    """
    In-process stand-in for the server action:
      - PDFs come back empty, the client side is expected to handle them
      - images are recognized with the handwriting profile
      - text uploads are returned as extracted text
    """

    def __init__(self, recognizer: RecognitionAdapter):
        self.recognizer = recognizer

    async def process(self, source: SourceFile) -> ServerResult:
        if source.is_pdf:
            return ServerResult(text="", method=Method.EXTRACTED)

        if source.media_type.lower().startswith("text/"):
            text = source.data.decode("utf-8", errors="replace")
            return ServerResult(text=text, method=Method.EXTRACTED)

        if not source.is_image:
            logger.info("Server processing has no handler for %s (%s)", source.name, source.media_type)
            return ServerResult(text="", method=Method.OCR)

        page = await asyncio.to_thread(decode_image, source)
        text = await self.recognizer.recognize(page, SERVER_OPTIONS)
        return ServerResult(text=text, method=Method.OCR)
