"""Tests for DocumentSession page caching and navigation."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import FakeEngine, build_orchestrator, image_source, pdf_source
from doctranscribe.exceptions import EXHAUSTED, NO_TEXT, ExhaustedError
from doctranscribe.models import PageTranscript, SourceFile

FIVE_PAGES = [f"Page {n} has plenty of embedded text." for n in range(1, 6)]


class TestGetPage:
    @pytest.mark.asyncio
    async def test_second_visit_is_a_cache_hit(self):
        engine = FakeEngine("Handwritten shopping list")
        session = build_orchestrator(engine).session(image_source())

        first = await session.get_page(1)
        second = await session.get_page(1)

        assert first == second == PageTranscript(page_number=1, text="Handwritten shopping list")
        assert len(engine.calls) == 1

    @pytest.mark.asyncio
    async def test_out_of_range_falls_back_to_first_page(self):
        session = build_orchestrator(FakeEngine()).session(pdf_source(FIVE_PAGES[:2]))

        for requested in (0, -1, 3, 99):
            page = await session.get_page(requested)
            assert page.page_number == 1
            assert page.text == "Page 1 has plenty of embedded text."

    @pytest.mark.asyncio
    async def test_pages_beyond_the_cap_can_be_viewed(self):
        session = build_orchestrator(FakeEngine()).session(pdf_source(FIVE_PAGES))

        page = await session.get_page(5)

        assert page.page_number == 5
        assert page.text == "Page 5 has plenty of embedded text."

    @pytest.mark.asyncio
    async def test_scanned_page_uses_recognition(self):
        engine = FakeEngine("Scanned second page")
        session = build_orchestrator(engine).session(pdf_source(["Page one has embedded text.", None]))

        page = await session.get_page(2)

        assert page == PageTranscript(page_number=2, text="Scanned second page")
        assert len(engine.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_run_the_pipeline_once(self):
        engine = FakeEngine("Handwritten shopping list", delay=0.1)
        session = build_orchestrator(engine).session(image_source())

        pages = await asyncio.gather(session.get_page(1), session.get_page(1), session.get_page(1))

        assert {p.text for p in pages} == {"Handwritten shopping list"}
        assert len(engine.calls) == 1

    @pytest.mark.asyncio
    async def test_blank_page_is_no_text(self):
        session = build_orchestrator(FakeEngine("")).session(pdf_source([None]))

        with pytest.raises(ExhaustedError) as exc_info:
            await session.get_page(1)

        assert exc_info.value.reason == NO_TEXT
        assert session.cached_pages == {}

    @pytest.mark.asyncio
    async def test_failing_page_is_exhausted(self):
        session = build_orchestrator(FakeEngine(RuntimeError("engine crashed"))).session(pdf_source([None]))

        with pytest.raises(ExhaustedError) as exc_info:
            await session.get_page(1)

        assert exc_info.value.reason == EXHAUSTED


class TestTranscribeThenNavigate:
    @pytest.mark.asyncio
    async def test_transcribe_fills_the_cache(self):
        orchestrator = build_orchestrator(FakeEngine())
        session = orchestrator.session(pdf_source(FIVE_PAGES))

        result = await session.transcribe()

        assert result.truncated is True
        assert sorted(session.cached_pages) == [1, 2, 3]
        assert await session.page_count() == 5

    @pytest.mark.asyncio
    async def test_cached_pages_skip_the_single_page_pipeline(self):
        orchestrator = build_orchestrator(FakeEngine())
        session = orchestrator.session(pdf_source(FIVE_PAGES))
        await session.transcribe()

        orchestrator.transcribe_page = AsyncMock(side_effect=orchestrator.transcribe_page)
        page = await session.get_page(2)

        assert page.text == "Page 2 has plenty of embedded text."
        orchestrator.transcribe_page.assert_not_called()

        await session.get_page(4)
        orchestrator.transcribe_page.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_thin_text_layer_pages_are_not_cached(self):
        engine = FakeEngine("Recognized from the page image")
        session = build_orchestrator(engine).session(pdf_source(["A first page with enough text.", "Fig. 2"]))

        await session.transcribe()

        assert sorted(session.cached_pages) == [1]
        page = await session.get_page(2)
        assert page.text == "Recognized from the page image"
        assert len(engine.calls) == 1


class TestWithoutEngine:
    @pytest.mark.asyncio
    async def test_text_page_is_served_without_ocr(self):
        engine = FakeEngine("never", ready=False)
        session = build_orchestrator(engine).session(pdf_source(FIVE_PAGES))

        page = await session.get_page(4)

        assert page.text == "Page 4 has plenty of embedded text."
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_corrupt_pdf_page_may_not_contain_text(self):
        broken = SourceFile(data=b"not a pdf at all", media_type="application/pdf", name="bad.pdf")
        session = build_orchestrator(FakeEngine("never")).session(broken)

        with pytest.raises(ExhaustedError) as exc_info:
            await session.get_page(1)

        assert exc_info.value.reason == NO_TEXT
