# src/doctranscribe/preprocess.py
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Tuple

import numpy as np
from PIL import Image

from .models import PageImage

logger = logging.getLogger("doctranscribe")

CONTRAST = 1.3
THRESHOLD = 128

# quality -> (width above which the larger reduction applies, reduced factor, default factor)
_SCALE_RULES: Dict[str, Tuple[int, float, float]] = {
    "low": (1000, 0.5, 0.75),
    "medium": (1500, 0.75, 1.0),
    "high": (0, 1.0, 1.0),
}

_COMPRESSION = {"low": 0.7, "medium": 0.85, "high": 0.95}


def scale_factor(width: int, quality: str) -> float:
    limit, reduced, default = _SCALE_RULES[quality]
    return reduced if width > limit else default


def contrast_factor(contrast: float = CONTRAST) -> float:
    return (259 * (contrast + 255)) / (255 * (259 - contrast))


def enhance_image(image: Image.Image, quality: str = "medium") -> Image.Image:
    """
    Single pass clean-up for recognition: downscale, grayscale, linear contrast
    stretch, and for medium/high a fixed threshold binarization.
    """
    if quality not in _SCALE_RULES:
        raise ValueError(f"Unknown quality {quality!r}, expected one of {sorted(_SCALE_RULES)}")

    factor = scale_factor(image.width, quality)
    if factor != 1.0:
        size = (max(1, int(image.width * factor)), max(1, int(image.height * factor)))
        image = image.resize(size, Image.BILINEAR)

    rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
    gray = rgb.mean(axis=2)
    # stored as 8-bit (round half to even) before the threshold sees it
    adjusted = np.rint(np.clip(contrast_factor() * (gray - 128.0) + 128.0, 0, 255))

    if quality != "low":
        adjusted = np.where(adjusted < THRESHOLD, 0, 255)

    return Image.fromarray(adjusted.astype(np.uint8))


class ImagePreprocessor:
    """Deterministic image clean-up, no state between calls."""

    async def enhance(self, page: PageImage, quality: str = "medium") -> PageImage:
        out = await asyncio.to_thread(enhance_image, page.image, quality)
        logger.debug("Preprocessed page %d (%s), %dx%d -> %dx%d", page.page_index + 1, quality,
                     page.width, page.height, out.width, out.height)
        return PageImage(
            image=out,
            page_index=page.page_index,
            scale=page.scale * scale_factor(page.width, quality),
            compression=_COMPRESSION[quality],
        )

    async def deskew(self, page: PageImage) -> PageImage:
        # Identity; pages are assumed upright.
        return page
