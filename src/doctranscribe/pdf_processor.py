# src/doctranscribe/pdf_processor.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List

import fitz  # PyMuPDF
from PIL import Image

logger = logging.getLogger("doctranscribe")


# --- Step 1, interface ---
class BasePDFProcessor(ABC):
    """
    Interface for any PDF engine. All methods are blocking and take the raw document bytes.
    Page indexes are 0-based at this level.
    """

    @abstractmethod
    def page_count(self, data: bytes) -> int:
        raise NotImplementedError

    @abstractmethod
    def page_text_items(self, data: bytes, page_index: int) -> List[str]:
        """Returns the raw embedded text items of one page, in reading order."""
        raise NotImplementedError

    @abstractmethod
    def render_page(self, data: bytes, page_index: int, scale: float) -> Image.Image:
        """Renders one page to an RGB image, pixel size is page size times scale."""
        raise NotImplementedError


# --- Step 2, concrete implementation with PyMuPDF ---
class PyMuPDFProcessor(BasePDFProcessor):
    """PDF engine that uses PyMuPDF."""

    @staticmethod
    def _open(data: bytes) -> fitz.Document:
        return fitz.open(stream=data, filetype="pdf")

    def page_count(self, data: bytes) -> int:
        with self._open(data) as doc:
            return len(doc)

    def page_text_items(self, data: bytes, page_index: int) -> List[str]:
        """
        Collect text spans of a page. sort=True gives reading order,
        block type 0 means text block.
        """
        items: List[str] = []
        with self._open(data) as doc:
            page = doc.load_page(page_index)
            content = page.get_text("dict", sort=True)
            for block in content.get("blocks", []):
                if block.get("type") != 0:
                    continue
                for line in block.get("lines", []):
                    for span in line.get("spans", []):
                        items.append(span.get("text", ""))
        return items

    def render_page(self, data: bytes, page_index: int, scale: float) -> Image.Image:
        with self._open(data) as doc:
            page = doc.load_page(page_index)
            # matrix based scaling is consistent across PyMuPDF versions
            pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
            return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


# --- Step 3, factory ---
def get_pdf_processor(engine_name: str = "pymupdf") -> BasePDFProcessor:
    """
    Create a PDF processor by name.
    """
    name = (engine_name or "").lower()
    if name == "pymupdf":
        return PyMuPDFProcessor()
    raise ValueError(f"Unknown PDF engine, '{engine_name}'. Supported engines, ['pymupdf']")
