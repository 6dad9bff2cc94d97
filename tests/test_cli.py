"""Tests for the command line interface and the batch pipeline."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import FakeEngine, FakeServer, build_orchestrator, make_pdf, make_png
from doctranscribe.cli import (
    _config_from_args,
    _normalize_output_path,
    _options_from_args,
    _parse_args,
    _parse_backend_kwargs,
    collect_files,
    main,
    run_pipeline,
)
from doctranscribe.config import EASYOCR_BACKEND, TranscribeConfig
from doctranscribe.models import RecognitionOptions
from doctranscribe.store import JsonlTranscriptStore

FROM_CONFIG = "doctranscribe.cli.TranscriptionOrchestrator.from_config"


@pytest.fixture
def input_dir(tmp_path):
    d = tmp_path / "in"
    (d / "nested").mkdir(parents=True)
    (d / "report.pdf").write_bytes(make_pdf(["The report has plenty of embedded text."]))
    (d / "nested" / "blank.png").write_bytes(make_png())
    (d / "skip_me.pdf").write_bytes(make_pdf(["Ignored by keyword, never transcribed."]))
    (d / "notes.docx").write_bytes(b"unsupported")
    return d


class TestParseBackendKwargs:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ('{"timeout": 30}', {"timeout": 30}),
            ("'{\"timeout\": 30}'", {"timeout": 30}),
            ("{'gpu': False}", {"gpu": False}),
            ("timeout=30;preserve-interword-spaces=false", {"timeout": 30, "preserve_interword_spaces": False}),
            ("ratio=0.5, cmd=/usr/bin/tesseract", {"ratio": 0.5, "cmd": "/usr/bin/tesseract"}),
            ("", {}),
            ({"a": 1}, {"a": 1}),
        ],
    )
    def test_accepted_syntaxes(self, raw, expected):
        assert _parse_backend_kwargs(raw) == expected

    def test_garbage_exits(self):
        with pytest.raises(SystemExit):
            _parse_backend_kwargs("not kwargs at all")


class TestArgs:
    def test_run_args_to_config_and_options(self, tmp_path):
        args = _parse_args([
            "run", "-i", str(tmp_path), "-o", str(tmp_path / "out.jsonl"),
            "--handwriting", "--quick", "--page-cap", "5",
            "--ocr-backend", "easy", "--ocr-backend-kwargs", "gpu=false",
        ])

        config = _config_from_args(args)
        options = _options_from_args(args)

        assert config.page_cap == 5
        assert config.soft_timeout_seconds == 15.0
        assert config.ocr_backend == EASYOCR_BACKEND
        assert config.ocr_backend_kwargs == {"gpu": False}
        assert options == RecognitionOptions(optimize_for_handwriting=True, quick_mode=True, language="eng")

    def test_output_directory_gets_a_timestamped_file(self, tmp_path):
        out = _normalize_output_path(tmp_path)
        assert out.parent == tmp_path
        assert out.suffix == ".jsonl"
        assert out.exists()

    def test_output_without_suffix(self, tmp_path):
        assert _normalize_output_path(tmp_path / "results") == tmp_path / "results.jsonl"


class TestCollectFiles:
    def test_filters(self, input_dir):
        files = collect_files(input_dir, ignore_keywords=["SKIP"])
        assert sorted(p.name for p in files) == ["blank.png", "report.pdf"]

    def test_processed_are_skipped(self, input_dir):
        files = collect_files(input_dir, processed={str(input_dir / "report.pdf")})
        assert "report.pdf" not in [p.name for p in files]

    def test_missing_directory(self, tmp_path):
        assert collect_files(tmp_path / "nope") == []


class TestRunPipeline:
    def test_results_errors_and_exports(self, input_dir, tmp_path):
        out = tmp_path / "out" / "results.jsonl"
        errors = tmp_path / "out" / "errors.jsonl"
        config = TranscribeConfig(output_path=out, error_log_path=errors, export_txt=True)

        with patch(FROM_CONFIG, return_value=build_orchestrator(FakeEngine(""), FakeServer(""))):
            failures = run_pipeline(config, input_dir, RecognitionOptions(), ["skip"])

        assert failures == 1
        store = JsonlTranscriptStore(out)
        assert store.processed_ids() == {str(input_dir / "report.pdf")}
        assert store.load(str(input_dir / "report.pdf")) == "The report has plenty of embedded text."

        error_lines = [json.loads(line) for line in errors.read_text(encoding="utf-8").splitlines()]
        assert [Path(e["source_path"]).name for e in error_lines] == ["blank.png"]
        assert error_lines[0]["error_reason"] == "This document may not contain extractable text."

        assert (tmp_path / "out" / "txt" / "report.txt").read_text(encoding="utf-8").startswith("The report")

    def test_second_run_skips_finished_files(self, input_dir, tmp_path):
        config = TranscribeConfig(output_path=tmp_path / "results.jsonl")
        engine = FakeEngine("")

        with patch(FROM_CONFIG, return_value=build_orchestrator(engine, FakeServer(""))):
            run_pipeline(config, input_dir, RecognitionOptions(), ["skip"])
            calls_after_first = len(engine.calls)
            run_pipeline(config, input_dir, RecognitionOptions(), ["skip"])

        # only blank.png is retried, it failed the first time
        assert len(engine.calls) == 2 * calls_after_first
        assert len(JsonlTranscriptStore(config.output_path).processed_ids()) == 1

    def test_nothing_to_do(self, tmp_path):
        (tmp_path / "empty").mkdir()
        config = TranscribeConfig(output_path=tmp_path / "results.jsonl")

        with patch(FROM_CONFIG) as from_config:
            assert run_pipeline(config, tmp_path / "empty", RecognitionOptions()) == 0

        from_config.assert_not_called()


class TestMain:
    def test_page_command_prints_the_page(self, tmp_path, capsys):
        pdf = tmp_path / "two.pdf"
        pdf.write_bytes(make_pdf(["First page text here.", "Second page text here."]))

        with patch(FROM_CONFIG, return_value=build_orchestrator(FakeEngine(""))):
            with pytest.raises(SystemExit) as exc_info:
                main(["page", "-f", str(pdf), "-p", "2"])

        assert exc_info.value.code == 0
        assert "Second page text here." in capsys.readouterr().out

    def test_unavailable_engine_exit_code(self, input_dir, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["run", "-i", str(input_dir), "-o", str(tmp_path / "r.jsonl"),
                  "--ocr-backend", "no_such_module.Engine"])

        assert exc_info.value.code == 2

    def test_no_command_prints_usage(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 2
        assert "doctranscribe run" in capsys.readouterr().out
