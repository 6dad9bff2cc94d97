# doctranscribe/ocr_backends/openai_backend.py
from __future__ import annotations

from typing import Dict, Any, List, Optional
import base64
import io
import logging
import os
import re

from PIL import Image

from openai import OpenAI

from .base import BaseOCREngine, EngineSettings, ProgressCallback

logger = logging.getLogger("doctranscribe")

DEFAULT_MODEL = "gpt-4o"

SYSTEM_PROMPT = (
    "You are a professional transcription assistant. Your task is to accurately transcribe "
    "any text visible in the image. Format the transcript clearly with proper paragraphs and "
    "spacing. Be precise and maintain the original structure of the text. "
    "Reply with the transcript only."
)

_LANGUAGE_NAMES = {
    "eng": "English",
    "vie": "Vietnamese",
    "fra": "French",
    "deu": "German",
    "spa": "Spanish",
}


def describe_languages(language: str) -> str:
    """'eng+vie' -> 'English, Vietnamese'; unknown codes are passed through."""
    codes = [c.strip().lower() for c in re.split(r"[+,]", language or "") if c.strip()]
    return ", ".join(_LANGUAGE_NAMES.get(c, c) for c in codes)


def build_prompt(settings: EngineSettings, language: str) -> str:
    """User instruction for one page, shaped by the selected engine settings."""
    parts = ["Please transcribe all text visible in this image."]
    names = describe_languages(language)
    if names:
        parts.append(f"The text is expected to be in {names}.")
    if not settings.use_dictionary:
        parts.append("The text may be handwritten. Transcribe it literally, do not correct spelling.")
    return " ".join(parts)


def image_data_url(image: Image.Image) -> str:
    buf = io.BytesIO()
    image.convert("RGB").save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class OpenAIVisionEngine(BaseOCREngine):
    """
    Generative vision model as a recognition engine, through the OpenAI SDK.

    The engine and segmentation modes have no meaning for a language model;
    only the dictionary switch changes the instruction (literal transcription).
    Not ready until an API key is configured.

    Supported kwargs (all optional):
      - model: str (default "gpt-4o")
      - api_key: str (default $OPENAI_API_KEY)
      - base_url: str
      - max_tokens: int (default 4000)
      - timeout: float seconds
      - languages: ignored, the language is passed per call
    """

    def __init__(self, **kwargs: Dict[str, Any]):
        k = dict(kwargs or {})
        k.pop("languages", None)
        k.pop("lang", None)
        self.model: str = k.pop("model", DEFAULT_MODEL)
        self.max_tokens = int(k.pop("max_tokens", 4000))
        api_key = k.pop("api_key", None) or os.environ.get("OPENAI_API_KEY")

        client_kwargs = {key: k.pop(key) for key in ("base_url", "timeout") if key in k}
        if k:
            logger.debug("Ignoring unsupported OpenAI kwargs, %s", sorted(k))

        self.client: Optional[OpenAI] = None
        if api_key:
            self.client = OpenAI(api_key=api_key, **client_kwargs)
        else:
            logger.warning("OpenAI API key not configured. Set OPENAI_API_KEY environment variable.")

    def is_ready(self) -> bool:
        return self.client is not None

    def _messages(self, image: Image.Image, settings: EngineSettings, language: str) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": build_prompt(settings, language)},
                    {"type": "image_url", "image_url": {"url": image_data_url(image)}},
                ],
            },
        ]

    def recognize(self, image: Image.Image, settings: EngineSettings, language: str,
                  on_progress: Optional[ProgressCallback] = None) -> str:
        if on_progress:
            on_progress(0.0)
        response = self.client.chat.completions.create(
            model=self.model,
            messages=self._messages(image, settings, language),
            max_tokens=self.max_tokens,
            temperature=0,
        )
        if on_progress:
            on_progress(1.0)

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()
