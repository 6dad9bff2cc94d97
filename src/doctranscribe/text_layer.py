# src/doctranscribe/text_layer.py
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Union

from .exceptions import TranscriptionError
from .models import PageTranscript, SourceFile
from .pdf_processor import BasePDFProcessor, get_pdf_processor

logger = logging.getLogger("doctranscribe")

PageRange = Union[int, range, None]


def _resolve_pages(page_range: PageRange, page_count: int) -> List[int]:
    if page_range is None:
        return list(range(1, page_count + 1))
    if isinstance(page_range, int):
        page_range = range(page_range, page_range + 1)
    return [p for p in page_range if 1 <= p <= page_count]


class TextLayerExtractor:
    """
    Reads the embedded (selectable) text of a paginated document.

    A page without text items is skipped and a page that fails is logged and
    skipped, so one broken page never fails the document. An empty result is
    returned as "", deciding what to do about it is the caller's business.
    """

    def __init__(self, pdf_processor: BasePDFProcessor | None = None):
        self.pdf_processor = pdf_processor or get_pdf_processor("pymupdf")

    async def extract_pages(self, source: SourceFile, page_range: PageRange = None) -> List[PageTranscript]:
        try:
            page_count = await asyncio.to_thread(self.pdf_processor.page_count, source.data)
        except Exception as e:
            raise TranscriptionError(f"Failed to open {source.name} for text extraction, {e}") from e

        pages: List[PageTranscript] = []
        for page_number in _resolve_pages(page_range, page_count):
            try:
                items = await asyncio.to_thread(
                    self.pdf_processor.page_text_items, source.data, page_number - 1
                )
            except Exception as e:
                logger.warning("Error extracting text from page %d of %s, %s", page_number, source.name, e)
                continue

            words = [item.strip() for item in items if item and item.strip()]
            if not words:
                logger.debug("No text content found on page %d of %s", page_number, source.name)
                continue
            pages.append(PageTranscript(page_number=page_number, text=" ".join(words)))

        logger.debug("Text layer of %s, %d/%d page(s) with text", source.name, len(pages), page_count)
        return pages

    async def extract_text(self, source: SourceFile, page_range: PageRange = None) -> str:
        pages = await self.extract_pages(source, page_range)
        return join_pages(pages)


def join_pages(pages: List[PageTranscript]) -> str:
    """Pages are separated by a blank line."""
    return "\n\n".join(p.text for p in pages if p.text).strip()
