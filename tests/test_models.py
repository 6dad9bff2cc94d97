"""Tests for the value types and the progress tracker."""

import io
import logging

import pytest
from PIL import Image

from doctranscribe.logger import PROGRESS
from doctranscribe.models import PageImage, PageTranscript, SourceFile, Stage
from doctranscribe.orchestrator import SLOW_ADVISORY, ProgressTracker, overall_progress


class TestSourceFile:
    def test_from_path_guesses_media_type(self, tmp_path):
        pdf = tmp_path / "report.pdf"
        pdf.write_bytes(b"%PDF")
        png = tmp_path / "scan.png"
        png.write_bytes(b"\x89PNG")

        assert SourceFile.from_path(pdf).is_pdf
        assert SourceFile.from_path(png).is_image
        assert SourceFile.from_path(png).name == "scan.png"

    def test_unknown_extension(self, tmp_path):
        blob = tmp_path / "data.unknownext"
        blob.write_bytes(b"\x00")

        source = SourceFile.from_path(blob)

        assert source.media_type == "application/octet-stream"
        assert not source.is_pdf and not source.is_image


def test_page_numbers_are_one_based():
    with pytest.raises(ValueError):
        PageTranscript(page_number=0, text="x")


def test_lossy_encoding_uses_compression():
    img = Image.effect_noise((200, 200), 64).convert("RGB")
    small = PageImage(image=img, compression=0.3).to_bytes("JPEG")
    large = PageImage(image=img, compression=0.95).to_bytes("JPEG")

    assert len(small) < len(large)
    assert Image.open(io.BytesIO(small)).format == "JPEG"


class TestOverallProgress:
    @pytest.mark.parametrize(
        "stage, progress, expected",
        [
            (Stage.PDF_CONVERSION, 0.0, 0.0),
            (Stage.PDF_CONVERSION, 1.0, 0.2),
            (Stage.PREPROCESSING, 0.5, 0.25),
            (Stage.OCR, 0.0, 0.3),
            (Stage.OCR, 0.5, 0.65),
            (Stage.OCR, 1.0, 1.0),
            (Stage.COMPLETE, 0.0, 1.0),
        ],
    )
    def test_weights(self, stage, progress, expected):
        assert overall_progress(stage, progress) == pytest.approx(expected)


class TestProgressTracker:
    def test_stage_progress_never_decreases(self, events):
        tracker = ProgressTracker(events.append)

        tracker.emit(Stage.OCR, 0.6, "a")
        tracker.emit(Stage.OCR, 0.4, "b")

        assert [e.progress for e in events] == [0.6, 0.6]

    def test_overall_never_decreases_across_stages(self, events):
        tracker = ProgressTracker(events.append)

        tracker.emit(Stage.OCR, 0.5, "ocr")
        tracker.emit(Stage.PREPROCESSING, 0.0, "preprocessing again")

        assert events[1].overall == events[0].overall

    def test_reset_starts_over(self, events):
        tracker = ProgressTracker(events.append)
        tracker.emit(Stage.OCR, 1.0, "done")

        tracker.reset()
        tracker.emit(Stage.PDF_CONVERSION, 0.0, "again")

        assert events[-1].overall == 0.0

    def test_values_are_clamped(self, events):
        tracker = ProgressTracker(events.append)
        tracker.emit(Stage.OCR, 7.0, "too much")
        assert events[0].progress == 1.0

    def test_advise_keeps_position(self, events):
        tracker = ProgressTracker(events.append, "slow.pdf")
        tracker.emit(Stage.OCR, 0.5, "working")

        tracker.advise()

        assert events[-1].message == SLOW_ADVISORY
        assert events[-1].overall == events[-2].overall
        assert events[-1].stage == Stage.OCR

    def test_events_are_logged_at_progress_level(self, caplog):
        caplog.set_level(PROGRESS, logger="doctranscribe")
        tracker = ProgressTracker(None, "doc.pdf")

        tracker.emit(Stage.OCR, 0.5, "half way")

        record = [r for r in caplog.records if r.levelno == PROGRESS][-1]
        assert record.getMessage() == "half way"
        assert record.phase == "ocr"
        assert record.pct == 65
        assert record.document == "doc.pdf"
        assert logging.getLevelName(PROGRESS) == "PROGRESS"
