# src/doctranscribe/orchestrator.py
"""
Transcription orchestrator.

For one uploaded file it walks an ordered chain of strategies and stops at the
first one that yields text:

    PDF:    text layer -> OCR of page 1 -> server -> client OCR (last resort)
    image:  client OCR -> server -> client OCR (last resort)
    other:  server

Every strategy runs at most once. Anything a strategy raises is logged and
treated as "not enough text", except UnavailableEngineError which stops the
run immediately. Only exhaustion of the whole chain reaches the caller, as
ExhaustedError.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .config import TranscribeConfig
from .exceptions import (
    EXHAUSTED,
    NO_TEXT,
    ExhaustedError,
    InsufficientResultError,
    RenderError,
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
from .pdf_processor import get_pdf_processor
from .preprocess import ImagePreprocessor
from .rasterizer import PageRasterizer, clamp_page, decode_image
from .recognizer import RecognitionAdapter, load_recognizer
from .server import BaseServerProcessor, LocalServerProcessor
from .text_layer import TextLayerExtractor, join_pages

logger = logging.getLogger("doctranscribe")

# sync, or async (the returned awaitable is scheduled on the running loop)
ProgressCallback = Callable[[ProgressEvent], Any]
PageSink = Callable[[PageTranscript], None]

STAGE_ORDER = (Stage.PDF_CONVERSION, Stage.PREPROCESSING, Stage.OCR, Stage.COMPLETE)
STAGE_WEIGHTS = {
    Stage.PDF_CONVERSION: 0.2,
    Stage.PREPROCESSING: 0.1,
    Stage.OCR: 0.7,
    Stage.COMPLETE: 0.0,
}

SLOW_ADVISORY = "Processing is taking longer than expected. Enable quick mode for faster results."


# -----------------------------
# Progress
# -----------------------------

def overall_progress(stage: Stage, progress: float) -> float:
    """Weighted position of (stage, stage progress) on a single 0..1 scale."""
    if stage == Stage.COMPLETE:
        return 1.0
    done = sum(STAGE_WEIGHTS[s] for s in STAGE_ORDER[:STAGE_ORDER.index(stage)])
    return min(1.0, done + STAGE_WEIGHTS[stage] * progress)


class ProgressTracker:
    """
    Turns stage-local progress into events. Within one strategy attempt both
    the stage progress and the overall percentage never go down; reset() is
    called when the chain falls through, so the bar may visibly restart.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None, document: str = ""):
        self._callback = callback
        self._document = document
        self._stage_max: Dict[Stage, float] = {}
        self.overall = 0.0
        self.stage: Stage = Stage.PDF_CONVERSION
        self._pending: Set[asyncio.Future] = set()

    def reset(self):
        self._stage_max.clear()
        self.overall = 0.0

    def emit(self, stage: Stage, progress: float, message: str):
        progress = min(1.0, max(0.0, float(progress)))
        progress = max(progress, self._stage_max.get(stage, 0.0))
        self._stage_max[stage] = progress
        self.overall = max(self.overall, overall_progress(stage, progress))
        self.stage = stage
        self._send(ProgressEvent(stage=stage, progress=progress, message=message, overall=self.overall))

    def note(self, message: str):
        """Narration without moving the bar."""
        self._send(ProgressEvent(stage=self.stage, progress=self._stage_max.get(self.stage, 0.0),
                                 message=message, overall=self.overall))

    def advise(self, message: str = SLOW_ADVISORY):
        """Repeat the current position with an advisory message."""
        logger.warning("%s (%s)", message, self._document)
        self.note(message)

    def _send(self, event: ProgressEvent):
        logger.progress(event.message, extra={
            "phase": event.stage.value,
            "pct": round(event.overall * 100),
            "document": self._document,
        })
        if not self._callback:
            return
        try:
            outcome = self._callback(event)
        except Exception:
            logger.exception("Progress callback failed")
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._pending.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Future):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Progress callback failed", exc_info=task.exception())


# -----------------------------
# Per-call state
# -----------------------------

@dataclass
class _Run:
    source: SourceFile
    options: RecognitionOptions
    tracker: ProgressTracker
    total_pages: int = 1
    pages_to_process: int = 1
    truncated: bool = False
    errors: int = 0
    # the file could not be opened or decoded at all
    unreadable: bool = False
    pending_pages: List[PageTranscript] = field(default_factory=list)

    def result(self, text: str, method: Method) -> TranscriptResult:
        return TranscriptResult(text=text, method=method, total_pages=self.total_pages, truncated=self.truncated)


@dataclass(frozen=True)
class Strategy:
    name: str
    run: Callable[[_Run], Awaitable[TranscriptResult]]


# -----------------------------
# Orchestrator
# -----------------------------

class TranscriptionOrchestrator:
    def __init__(
        self,
        rasterizer: PageRasterizer,
        text_extractor: TextLayerExtractor,
        preprocessor: ImagePreprocessor,
        recognizer: RecognitionAdapter,
        server: BaseServerProcessor,
        config: Optional[TranscribeConfig] = None,
    ):
        self.rasterizer = rasterizer
        self.text_extractor = text_extractor
        self.preprocessor = preprocessor
        self.recognizer = recognizer
        self.server = server
        self.config = config or TranscribeConfig()

    @classmethod
    def from_config(cls, config: TranscribeConfig) -> "TranscriptionOrchestrator":
        """
        Builds the engines once, at startup, so the hot path never initializes anything.
        A backend that cannot be loaded leaves OCR unavailable; text PDFs still work.
        """
        pdf_processor = get_pdf_processor(config.pdf_engine)
        backend_kwargs = {"languages": config.languages, **config.ocr_backend_kwargs}
        recognizer = load_recognizer(config.ocr_backend, backend_kwargs)
        return cls(
            rasterizer=PageRasterizer(pdf_processor),
            text_extractor=TextLayerExtractor(pdf_processor),
            preprocessor=ImagePreprocessor(),
            recognizer=recognizer,
            server=LocalServerProcessor(recognizer),
            config=config,
        )

    # ---- public API ----

    async def transcribe(
        self,
        source: SourceFile,
        options: Optional[RecognitionOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        page_sink: Optional[PageSink] = None,
    ) -> TranscriptResult:
        """
        Run the fallback chain for one file. Pages produced by the winning
        strategy are handed to page_sink (used by DocumentSession).
        """
        options = options or RecognitionOptions()
        tracker = ProgressTracker(on_progress, source.name)
        run = _Run(source=source, options=options, tracker=tracker)

        # every image strategy needs OCR; PDFs only need it past the text layer
        if source.is_image:
            self.recognizer.ensure_ready()
        if source.is_pdf:
            await self._count_pages(run)

        chain = self._chain_for(source)
        logger.info("Transcribing %s (%s), strategies, %s", source.name, source.media_type,
                    ", ".join(s.name for s in chain))

        timer = asyncio.get_running_loop().call_later(self.config.soft_timeout_seconds, tracker.advise)
        try:
            for index, strategy in enumerate(chain):
                if index:
                    tracker.reset()
                    run.pending_pages.clear()
                    tracker.note("Trying fallback...")
                try:
                    result = await strategy.run(run)
                except UnavailableEngineError:
                    raise
                except InsufficientResultError as e:
                    logger.info("Strategy %s insufficient for %s, %s", strategy.name, source.name, e)
                    continue
                except Exception as e:
                    run.errors += 1
                    logger.warning("Strategy %s failed for %s, %s", strategy.name, source.name, e)
                    continue
                return self._finish(run, result, strategy, page_sink)
        finally:
            timer.cancel()

        reason = self._exhaustion_reason(source, run.errors, run.unreadable)
        logger.error("All strategies exhausted for %s (%s)", source.name, reason)
        raise ExhaustedError(reason)

    async def transcribe_page(
        self,
        source: SourceFile,
        page_number: int,
        options: Optional[RecognitionOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PageTranscript:
        """Text layer then OCR, scoped to one page. Used for viewer navigation."""
        options = options or RecognitionOptions()
        tracker = ProgressTracker(on_progress, f"{source.name}#{page_number}")
        if not source.is_pdf:
            self.recognizer.ensure_ready()
        errors = 0

        if source.is_pdf:
            try:
                tracker.emit(Stage.PDF_CONVERSION, 0.0, f"Extracting text from page {page_number}...")
                text = await self.text_extractor.extract_text(source, page_number)
                if self._sufficient(text):
                    tracker.emit(Stage.COMPLETE, 1.0, "Text extraction complete")
                    return self._page(page_number, text)
            except UnavailableEngineError:
                raise
            except Exception as e:
                errors += 1
                logger.warning("Text extraction failed for page %d of %s, %s", page_number, source.name, e)

        try:
            tracker.emit(Stage.PDF_CONVERSION, 0.0, "No embedded text found. Running recognition...")
            page = await self._load_page(source, page_number)
            tracker.emit(Stage.PDF_CONVERSION, 1.0, "Page ready for recognition")
            text = await self._recognize(page, options, tracker, 0, 1, f"page {page_number}")
            if text:
                tracker.emit(Stage.COMPLETE, 1.0, "OCR processing complete")
                return self._page(page_number, text)
        except UnavailableEngineError:
            raise
        except Exception as e:
            errors += 1
            logger.warning("Recognition failed for page %d of %s, %s", page_number, source.name, e)

        unreadable = bool(errors) and not await self._opens(source)
        raise ExhaustedError(self._exhaustion_reason(source, errors, unreadable))

    def session(self, source: SourceFile, options: Optional[RecognitionOptions] = None) -> "DocumentSession":
        return DocumentSession(self, source, options)

    # ---- chain ----

    def _chain_for(self, source: SourceFile) -> List[Strategy]:
        if source.is_pdf:
            return [
                Strategy("pdf-text", self._pdf_text),
                Strategy("pdf-page-ocr", self._pdf_page_ocr),
                Strategy("server", self._server),
                Strategy("client-ocr-last-resort", self._client_ocr),
            ]
        if source.is_image:
            return [
                Strategy("client-ocr", self._client_ocr),
                Strategy("server", self._server),
                Strategy("client-ocr-last-resort", self._client_ocr),
            ]
        return [Strategy("server", self._server)]

    async def _count_pages(self, run: _Run):
        cap = self.config.page_cap
        try:
            run.total_pages = await self.rasterizer.page_count(run.source)
        except RenderError as e:
            logger.warning("Could not count pages of %s, assuming 1, %s", run.source.name, e)
            run.total_pages = 1
            run.unreadable = True
        run.truncated = run.total_pages > cap
        run.pages_to_process = max(1, min(run.total_pages, cap))
        if run.truncated:
            logger.info("%s has %d pages, only the first %d will be processed",
                        run.source.name, run.total_pages, cap)

    async def _pdf_text(self, run: _Run) -> TranscriptResult:
        run.tracker.emit(Stage.PDF_CONVERSION, 0.0, "Extracting text...")
        pages = await self.text_extractor.extract_pages(run.source, range(1, run.pages_to_process + 1))
        text = join_pages(pages)
        run.tracker.emit(Stage.PDF_CONVERSION, 1.0, "Text extraction complete")
        if not self._sufficient(text):
            raise InsufficientResultError(f"text layer yielded {len(text.strip())} characters")
        # thin pages stay uncached so the viewer runs OCR on them
        run.pending_pages.extend(p for p in pages if self._sufficient(p.text))
        return run.result(text, Method.EXTRACTED)

    async def _pdf_page_ocr(self, run: _Run) -> TranscriptResult:
        run.tracker.emit(Stage.PDF_CONVERSION, 0.0, "No embedded text found. Running recognition...")
        page = await self.rasterizer.render(run.source, 1, self.config.render_scale)
        run.tracker.emit(Stage.PDF_CONVERSION, 1.0, "PDF conversion complete")
        text = await self._recognize(page, run.options, run.tracker, 0, 1, "page 1")
        if not text:
            raise InsufficientResultError("recognition of page 1 found no text")
        run.pending_pages.append(PageTranscript(page_number=1, text=text))
        return run.result(text, Method.OCR)

    async def _server(self, run: _Run) -> TranscriptResult:
        run.tracker.emit(Stage.OCR, 0.0, "Processing document on the server...")
        reply = await self.server.process(run.source)
        if not reply.text or not reply.text.strip():
            raise InsufficientResultError("server processing returned no text")
        run.tracker.emit(Stage.OCR, 1.0, "Server processing complete")
        if run.source.is_image:
            run.pending_pages.append(PageTranscript(page_number=1, text=reply.text.strip()))
        return run.result(reply.text, reply.method)

    async def _client_ocr(self, run: _Run) -> TranscriptResult:
        pages = await self._client_pages(run)
        total = len(pages)
        texts: List[str] = []
        for i, page in enumerate(pages):
            label = f"page {page.page_index + 1}/{total}" if run.source.is_pdf else "image"
            try:
                text = await self._recognize(page, run.options, run.tracker, i, total, label)
            except UnavailableEngineError:
                raise
            except Exception as e:
                run.errors += 1
                logger.warning("OCR failed for %s of %s, %s", label, run.source.name, e)
                continue
            if text:
                texts.append(text)
                run.pending_pages.append(PageTranscript(page_number=page.page_index + 1, text=text))

        full_text = "\n\n".join(texts).strip()
        if not full_text:
            raise InsufficientResultError("OCR could not extract any text from the document")
        return run.result(full_text, Method.OCR)

    async def _client_pages(self, run: _Run) -> List[PageImage]:
        if not run.source.is_pdf:
            try:
                return [await asyncio.to_thread(decode_image, run.source)]
            except RenderError:
                run.unreadable = True
                raise

        n = run.pages_to_process
        run.tracker.emit(Stage.PDF_CONVERSION, 0.0, "Converting PDF to images...")
        pages: List[PageImage] = []
        for i in range(n):
            try:
                pages.append(await self.rasterizer.render(run.source, i + 1, self.config.render_scale))
            except RenderError as e:
                logger.warning("Error converting page %d of %s to image, %s", i + 1, run.source.name, e)
            run.tracker.emit(Stage.PDF_CONVERSION, (i + 1) / n,
                             f"Converting PDF to images ({round((i + 1) / n * 100)}%)...")
        if not pages:
            raise RenderError("Failed to convert any PDF pages to images")
        run.tracker.emit(Stage.PDF_CONVERSION, 1.0, "PDF conversion complete")
        return pages

    # ---- shared steps ----

    async def _recognize(self, page: PageImage, options: RecognitionOptions, tracker: ProgressTracker,
                         index: int, total: int, label: str) -> str:
        """Preprocess if the options ask for it, then OCR; OCR progress is (index + p) / total."""
        self.recognizer.ensure_ready()
        tracker.emit(Stage.PREPROCESSING, index / total, f"Preparing {label} for OCR...")
        if (options.optimize_for_handwriting and not options.quick_mode) or options.enhance_contrast:
            quality = "low" if options.quick_mode else self.config.preprocess_quality
            page = await self.preprocessor.enhance(page, quality)
            page = await self.preprocessor.deskew(page)
        tracker.emit(Stage.PREPROCESSING, (index + 1) / total, f"Prepared {label}")

        tracker.emit(Stage.OCR, index / total, f"Running OCR on {label}...")

        def _on_tick(p: float):
            tracker.emit(Stage.OCR, (index + p) / total, f"Recognizing text on {label}: {round(p * 100)}%")

        text = await self.recognizer.recognize(page, options, _on_tick)
        return text.strip()

    async def _load_page(self, source: SourceFile, page_number: int) -> PageImage:
        if source.is_pdf:
            return await self.rasterizer.render(source, page_number, self.config.render_scale)
        return await asyncio.to_thread(decode_image, source)

    async def _opens(self, source: SourceFile) -> bool:
        try:
            if source.is_pdf:
                await self.rasterizer.page_count(source)
            elif source.is_image:
                await asyncio.to_thread(decode_image, source)
        except RenderError:
            return False
        return True

    @staticmethod
    def _exhaustion_reason(source: SourceFile, errors: int, unreadable: bool) -> str:
        """NO_TEXT unless something actually failed on a readable PDF or image."""
        if errors == 0 or unreadable or not (source.is_pdf or source.is_image):
            return NO_TEXT
        return EXHAUSTED

    def _sufficient(self, text: str) -> bool:
        return len((text or "").strip()) > self.config.min_extracted_chars

    def _page(self, page_number: int, text: str) -> PageTranscript:
        if self.config.format_output:
            text = format_transcript(text)
        return PageTranscript(page_number=page_number, text=text.strip())

    def _finish(self, run: _Run, result: TranscriptResult, strategy: Strategy,
                page_sink: Optional[PageSink]) -> TranscriptResult:
        text = result.text
        if self.config.format_output:
            text = format_transcript(text)
        text = text.strip()
        if run.truncated and self.config.append_truncation_note:
            text += (f"\n\n[Note: This document has {run.total_pages} pages. "
                     f"Only the first {self.config.page_cap} pages were processed.]")
        result.text = text

        if page_sink:
            for page in run.pending_pages:
                page_sink(self._page(page.page_number, page.text))

        run.tracker.emit(Stage.COMPLETE, 1.0, "Transcription complete")
        logger.info("Transcribed %s via %s, method=%s, pages=%d, truncated=%s, chars=%d",
                    run.source.name, strategy.name, result.method.value, result.total_pages,
                    result.truncated, len(result.text))
        return result


# -----------------------------
# Per-document page cache
# -----------------------------

class DocumentSession:
    """
    Viewing session for one document. Keeps a page -> PageTranscript mapping so
    revisiting a page is instant; a miss runs the single page pipeline once.
    Writes for the same page are serialized, the last write wins.
    """

    def __init__(self, orchestrator: TranscriptionOrchestrator, source: SourceFile,
                 options: Optional[RecognitionOptions] = None):
        self.orchestrator = orchestrator
        self.source = source
        self.options = options or RecognitionOptions()
        self.result: Optional[TranscriptResult] = None
        self._pages: Dict[int, PageTranscript] = {}
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._page_count: Optional[int] = None

    @property
    def cached_pages(self) -> Dict[int, PageTranscript]:
        return dict(self._pages)

    def _store(self, page: PageTranscript):
        self._pages[page.page_number] = page

    async def transcribe(self, on_progress: Optional[ProgressCallback] = None) -> TranscriptResult:
        self.result = await self.orchestrator.transcribe(self.source, self.options, on_progress, self._store)
        if self.result.total_pages:
            self._page_count = self.result.total_pages
        return self.result

    async def page_count(self) -> int:
        if self._page_count is None:
            try:
                self._page_count = await self.orchestrator.rasterizer.page_count(self.source)
            except RenderError as e:
                logger.warning("Could not count pages of %s, assuming 1, %s", self.source.name, e)
                self._page_count = 1
        return self._page_count

    async def get_page(self, page_number: int, on_progress: Optional[ProgressCallback] = None) -> PageTranscript:
        page_number = clamp_page(page_number, await self.page_count())
        hit = self._pages.get(page_number)
        if hit is not None:
            return hit

        async with self._locks[page_number]:
            hit = self._pages.get(page_number)
            if hit is not None:
                return hit
            page = await self.orchestrator.transcribe_page(self.source, page_number, self.options, on_progress)
            self._store(page)
            return page
