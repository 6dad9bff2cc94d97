# src/doctranscribe/rasterizer.py
from __future__ import annotations

import asyncio
import io
import logging

from PIL import Image

from .exceptions import InvalidPageError, RenderError
from .models import PageImage, SourceFile
from .pdf_processor import BasePDFProcessor, get_pdf_processor

logger = logging.getLogger("doctranscribe")

DEFAULT_SCALE = 1.5


def clamp_page(page_number: int, page_count: int) -> int:
    """Viewer policy: an out of range page falls back to page 1."""
    if 1 <= page_number <= page_count:
        return page_number
    return 1


def decode_image(source: SourceFile) -> PageImage:
    """Decode a plain image upload into a single page raster."""
    try:
        with Image.open(io.BytesIO(source.data)) as im:
            im.load()
            return PageImage(image=im.convert("RGB"), page_index=0, scale=1.0)
    except Exception as e:
        raise RenderError(f"Could not decode image {source.name}, {e}") from e


class PageRasterizer:
    """
    Renders single pages of a paginated document. The blocking PDF work runs
    in a worker thread, every public method is awaitable.
    """

    def __init__(self, pdf_processor: BasePDFProcessor | None = None):
        self.pdf_processor = pdf_processor or get_pdf_processor("pymupdf")

    async def page_count(self, source: SourceFile) -> int:
        if not source.is_pdf:
            return 1
        try:
            return await asyncio.to_thread(self.pdf_processor.page_count, source.data)
        except Exception as e:
            raise RenderError(f"Could not open {source.name}, {e}") from e

    async def render(self, source: SourceFile, page_number: int = 1, scale: float = DEFAULT_SCALE) -> PageImage:
        """
        Render page `page_number` (1-based). Output size is the page size times `scale`.
        Plain images are returned as their only page at native size.
        """
        if scale <= 0:
            raise ValueError(f"scale must be positive, got {scale}")

        count = await self.page_count(source)
        if page_number < 1 or page_number > count:
            raise InvalidPageError(page_number, count)

        if not source.is_pdf:
            return await asyncio.to_thread(decode_image, source)

        try:
            image = await asyncio.to_thread(
                self.pdf_processor.render_page, source.data, page_number - 1, scale
            )
        except Exception as e:
            logger.warning("Rendering page %d of %s failed, %s", page_number, source.name, e)
            raise RenderError(f"Failed to render page {page_number}, {e}") from e

        logger.debug("Rendered page %d of %s at %.2fx, %dx%d", page_number, source.name, scale,
                     image.width, image.height)
        return PageImage(image=image, page_index=page_number - 1, scale=scale)
