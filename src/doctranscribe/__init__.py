# src/doctranscribe/__init__.py
from . import logger as _logger  # registers the PROGRESS level on logging.Logger
from .config import TranscribeConfig
from .exceptions import (
    ExhaustedError,
    InvalidPageError,
    RecognitionError,
    RenderError,
    TranscriptionError,
    UnavailableEngineError,
)
from .formatter import format_transcript
from .models import (
    Method,
    PageImage,
    PageTranscript,
    ProgressEvent,
    RecognitionOptions,
    SourceFile,
    Stage,
    TranscriptResult,
)
from .orchestrator import DocumentSession, ProgressTracker, TranscriptionOrchestrator

__version__ = "0.1.0"

__all__ = [
    "TranscribeConfig",
    "TranscriptionOrchestrator",
    "DocumentSession",
    "ProgressTracker",
    "SourceFile",
    "PageImage",
    "PageTranscript",
    "ProgressEvent",
    "RecognitionOptions",
    "Stage",
    "Method",
    "TranscriptResult",
    "format_transcript",
    "TranscriptionError",
    "UnavailableEngineError",
    "RecognitionError",
    "RenderError",
    "InvalidPageError",
    "ExhaustedError",
]
