# doctranscribe/exceptions.py
from __future__ import annotations


class TranscriptionError(Exception):
    """Base exception for the docTranscribe library."""
    pass


class UnavailableEngineError(TranscriptionError):
    """Raised when a recognition or rendering capability is not ready."""
    pass


class InsufficientResultError(TranscriptionError):
    """A strategy ran but produced empty or too short output. Never leaves the orchestrator."""
    pass


class RecognitionError(TranscriptionError):
    """Raised when the OCR engine reports a hard failure."""
    pass


class RenderError(TranscriptionError):
    """Raised when a page cannot be rendered to an image."""
    pass


class InvalidPageError(RenderError):
    """Raised when a page number is outside the document."""

    def __init__(self, page_number: int, page_count: int):
        super().__init__(f"Page {page_number} is out of range, document has {page_count} page(s)")
        self.page_number = page_number
        self.page_count = page_count


NO_TEXT = "no-text"
EXHAUSTED = "exhausted"

_EXHAUSTED_MESSAGES = {
    NO_TEXT: "This document may not contain extractable text.",
    EXHAUSTED: "All transcription methods failed for this document.",
}


class ExhaustedError(TranscriptionError):
    """
    Raised when every strategy in the fallback chain failed.
    This is the only failure shown to end users, so it always carries a readable message.
    """

    def __init__(self, reason: str = EXHAUSTED, message: str | None = None):
        self.reason = reason if reason in _EXHAUSTED_MESSAGES else EXHAUSTED
        self.message = message or _EXHAUSTED_MESSAGES[self.reason]
        super().__init__(self.message)
