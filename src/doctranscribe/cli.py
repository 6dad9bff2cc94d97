# src/doctranscribe/cli.py
from __future__ import annotations

import argparse
import ast
import asyncio
import json
import logging
import re
import sys
from datetime import datetime
from pathlib import Path
from queue import Queue
from typing import List, Optional

from tqdm import tqdm

from .config import TranscribeConfig
from .exceptions import ExhaustedError, UnavailableEngineError
from .logger import attach_queue_handler, setup_logging
from .models import RecognitionOptions, SourceFile
from .orchestrator import TranscriptionOrchestrator
from .recognizer import normalize_backend_alias
from .store import JsonlTranscriptStore
from .utils import SUPPORTED_SUFFIXES, append_error_log, write_txt_export

__all__ = ["collect_files", "run_pipeline", "main"]

logger = logging.getLogger("doctranscribe")

# Helper

def _parse_backend_kwargs(val) -> dict:
    """
    Accept several syntaxes for --ocr-backend-kwargs:
      1) JSON (double quotes)                      {"tessdata_prefix":"/opt/tessdata","timeout":30}
      2) JSON wrapped in single quotes             '{"timeout":30}'
      3) Python-literal dict with single quotes    {'timeout': 30}
      4) key=value pairs separated by , or ;       timeout=30;preserve_interword_spaces=false
    """
    if isinstance(val, dict):
        return dict(val)
    if not isinstance(val, str):
        return {}

    s = val.strip()
    if len(s) >= 2 and s[0] in ("'", '"') and s[-1] == s[0]:
        s = s[1:-1].strip()
    if not s:
        return {}

    try:
        parsed = json.loads(s)
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass

    try:
        lit = ast.literal_eval(s)
        if isinstance(lit, dict):
            return lit
    except (ValueError, SyntaxError):
        pass

    out: dict = {}
    for part in re.split(r"[;,]\s*", s):
        if "=" not in part:
            continue
        k, v = part.split("=", 1)
        k = k.strip().strip('"\'').strip().lower().replace("-", "_")
        v = v.strip().strip('"\'').strip()

        low = v.lower()
        if low in ("true", "false"):
            v = (low == "true")
        elif re.fullmatch(r"-?\d+", v):
            v = int(v)
        elif re.fullmatch(r"-?\d+\.\d*", v):
            v = float(v)
        out[k] = v

    if out:
        return out

    raise SystemExit(f"Invalid --ocr-backend-kwargs. Could not parse: {val!r}")


def _normalize_output_path(arg: Path) -> Path:
    """
    Accept both files and directories for --output-path.
    - If arg is an existing directory: create a timestamped JSONL inside it.
    - If arg has no suffix: add .jsonl
    Ensures parent dirs exist and the file is writable.
    """
    out = Path(arg)
    if out.exists() and out.is_dir():
        out = out / f"transcripts_{datetime.now():%Y%m%d_%H%M%S}.jsonl"
    elif out.suffix == "":
        out = out.with_suffix(".jsonl")

    out.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(out, "a", encoding="utf-8"):
            pass
    except OSError as e:
        raise SystemExit(f"--output-path is not writable: {out} ({e})")
    return out


def collect_files(input_dir: Path, processed: Optional[set] = None,
                  ignore_keywords: Optional[List[str]] = None) -> List[Path]:
    logger.info("Collecting and filtering files")
    processed = processed or set()
    ignore_keywords_lower = [k.lower() for k in (ignore_keywords or [])]

    if not input_dir.exists():
        logger.error("Input directory does not exist, %s", input_dir)
        return []

    files: List[Path] = []
    for file_path in sorted(input_dir.rglob("*")):
        if not file_path.is_file():
            continue
        if str(file_path) in processed:
            continue
        filename_lower = file_path.name.lower()
        if any(keyword in filename_lower for keyword in ignore_keywords_lower):
            continue
        if filename_lower.endswith(SUPPORTED_SUFFIXES):
            files.append(file_path)

    logger.info("Selected %d files for processing", len(files))
    return files


async def _transcribe_all(orchestrator: TranscriptionOrchestrator, files: List[Path],
                          options: RecognitionOptions, config: TranscribeConfig,
                          store: JsonlTranscriptStore) -> int:
    failures = 0
    for file_path in tqdm(files, desc="Transcribing"):
        try:
            source = SourceFile.from_path(file_path)
            result = await orchestrator.transcribe(source, options)
        except UnavailableEngineError:
            raise
        except ExhaustedError as e:
            failures += 1
            logger.error("No transcript for %s, %s", file_path, e.message)
            append_error_log(config.error_log_path, str(file_path), e.message)
            continue
        except OSError as e:
            failures += 1
            logger.error("Could not read %s, %s", file_path, e)
            append_error_log(config.error_log_path, str(file_path), f"Could not read file, {e}")
            continue

        store.save(str(file_path), result.text, result)
        if config.export_txt and config.output_path:
            write_txt_export(config.output_path.parent / "txt", file_path.name, result.text)
    return failures


def run_pipeline(config: TranscribeConfig, input_dir: Path, options: RecognitionOptions,
                 ignore_keywords: Optional[List[str]] = None) -> int:
    """
    Transcribe every supported file under input_dir into the JSONL store.
    Returns the number of files that could not be transcribed.
    """
    store = JsonlTranscriptStore(config.output_path)
    processed = set() if config.force_rerun else store.processed_ids()
    if processed:
        logger.info("Found %d previously processed files to skip", len(processed))

    files = collect_files(input_dir, processed, ignore_keywords)
    if not files:
        logger.info("No new files to process based on current settings, all files are complete")
        return 0

    logger.info("Starting docTranscribe on %d files, output %s", len(files), config.output_path)
    orchestrator = TranscriptionOrchestrator.from_config(config)
    failures = asyncio.run(_transcribe_all(orchestrator, files, options, config, store))
    logger.info("docTranscribe complete, %d ok, %d failed", len(files) - failures, failures)
    return failures


# -------------------------------
# CLI parsing
# -------------------------------

def _add_engine_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--handwriting", action="store_true", help="Optimize recognition for handwritten text")
    p.add_argument("--quick", action="store_true", help="Favor speed over accuracy")
    p.add_argument("--enhance-contrast", action="store_true", help="Preprocess images before recognition")
    p.add_argument("-l", "--language", default="eng", help="Recognition language, e.g. eng or eng+fra")
    p.add_argument("--page-cap", type=int, help="Maximum number of pages processed per document")
    p.add_argument("--soft-timeout", type=float, help="Seconds before the 'taking longer' advisory")
    p.add_argument("--no-format", action="store_true", help="Keep the raw transcript, skip formatting")
    p.add_argument(
        "--ocr-backend",
        type=str,
        default="tesseract",
        help="OCR backend alias (tesseract, easyocr, openai) or dotted path to a backend class",
    )
    p.add_argument(
        "--ocr-backend-kwargs",
        type=str,
        default="{}",
        help='Backend init kwargs as JSON or key=value pairs, e.g. \'{"timeout":30}\' or timeout=30',
    )
    p.add_argument("--log-file", type=Path, help="Write a rotating log file here")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def _build_run_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    p = subparsers.add_parser("run", help="Transcribe every document in a directory")
    p.add_argument("-i", "--input-dir", type=Path, required=True, help="Directory containing files to transcribe")
    p.add_argument(
        "-o", "--output-path", type=Path, required=True,
        help="Results path. Accepts a .jsonl file OR a directory (a timestamped .jsonl will be created inside).",
    )
    p.add_argument(
        "--ignore-keyword",
        action="append",
        dest="ignore_keywords",
        help="Keyword in filename to ignore; can be used multiple times",
    )
    p.add_argument("--force-rerun", action="store_true", help="Reprocess all files and ignore previous results")
    p.add_argument("--error-log-path", type=Path, help="Path to save the error log JSONL file")
    p.add_argument("--export-txt", action="store_true", help="Also write one .txt per document next to the results")
    _add_engine_args(p)
    return p


def _build_page_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    p = subparsers.add_parser("page", help="Print the transcript of one page of a document")
    p.add_argument("-f", "--file", type=Path, required=True, help="Document to read")
    p.add_argument("-p", "--page", type=int, default=1, help="1-based page number (out of range falls back to 1)")
    _add_engine_args(p)
    return p


def _build_webui_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    wp = subparsers.add_parser("webui", help="Launch the docTranscribe Web UI (Gradio)")
    wp.add_argument("--share", action="store_true", help="Create a public Gradio link")
    wp.add_argument("--server-name", default="127.0.0.1", help="Host to bind (use 0.0.0.0 to expose on LAN)")
    wp.add_argument("--server-port", type=int, default=7860, help="Port to bind")
    return wp


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="docTranscribe, document to text with fallbacks")
    subparsers = parser.add_subparsers(dest="command")
    _build_run_parser(subparsers)
    _build_page_parser(subparsers)
    _build_webui_parser(subparsers)
    return parser.parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> TranscribeConfig:
    cfg_dict = {
        "page_cap": args.page_cap,
        "soft_timeout_seconds": args.soft_timeout,
        "format_output": not args.no_format,
        "languages": [args.language],
        "ocr_backend": normalize_backend_alias(args.ocr_backend),
        "ocr_backend_kwargs": _parse_backend_kwargs(args.ocr_backend_kwargs),
        "log_file": args.log_file,
        "output_path": getattr(args, "output_path", None),
        "error_log_path": getattr(args, "error_log_path", None),
        "export_txt": getattr(args, "export_txt", False),
        "force_rerun": getattr(args, "force_rerun", False),
    }
    cfg_dict = {k: v for k, v in cfg_dict.items() if v is not None}
    return TranscribeConfig.from_dict(cfg_dict)


def _options_from_args(args: argparse.Namespace) -> RecognitionOptions:
    return RecognitionOptions(
        optimize_for_handwriting=args.handwriting,
        enhance_contrast=args.enhance_contrast,
        language=args.language,
        quick_mode=args.quick,
    )


# -------------------------------
# Entry points
# -------------------------------

def _with_logging(args: argparse.Namespace, log_file: Optional[Path], fn):
    log_queue: Queue = Queue(-1)
    attach_queue_handler(log_queue)
    listener = setup_logging(
        log_queue,
        console=True,
        level=logging.DEBUG if args.verbose else logging.INFO,
        file_path=log_file,
    )
    listener.start()
    try:
        return fn()
    finally:
        listener.stop()


def _run_from_cli(args: argparse.Namespace) -> int:
    args.output_path = _normalize_output_path(Path(args.output_path))
    config = _config_from_args(args)
    options = _options_from_args(args)
    log_file = config.log_file or Path(args.output_path).with_suffix(".log")

    def _go():
        try:
            failures = run_pipeline(config, args.input_dir, options, args.ignore_keywords)
        except UnavailableEngineError as e:
            logger.error("%s", e)
            return 2
        return 1 if failures else 0

    return _with_logging(args, log_file, _go)


def _page_from_cli(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    options = _options_from_args(args)

    async def _one_page() -> str:
        orchestrator = TranscriptionOrchestrator.from_config(config)
        session = orchestrator.session(SourceFile.from_path(args.file), options)
        page = await session.get_page(args.page)
        return page.text

    def _go():
        try:
            text = asyncio.run(_one_page())
        except (ExhaustedError, UnavailableEngineError) as e:
            logger.error("%s", e)
            return 1
        print(text)
        return 0

    return _with_logging(args, config.log_file, _go)


def _launch_webui_from_cli(args: argparse.Namespace) -> int:
    try:
        from .webui import launch_webui
    except ImportError as e:
        raise SystemExit(f"Web UI components not available, install doctranscribe[webui]: {e}")
    launch_webui(share=args.share, server_name=args.server_name, server_port=args.server_port)
    return 0


def main(argv: Optional[List[str]] = None):
    args = _parse_args(argv)

    if args.command == "run":
        sys.exit(_run_from_cli(args))
    if args.command == "page":
        sys.exit(_page_from_cli(args))
    if args.command == "webui":
        sys.exit(_launch_webui_from_cli(args))

    print("Usage:\n  doctranscribe run -i <input_dir> -o <results.jsonl> [options]\n"
          "  doctranscribe page -f <file> -p <n> [options]\n"
          "  doctranscribe webui [--share] [--server-name 0.0.0.0] [--server-port 7860]")
    sys.exit(2)


if __name__ == "__main__":
    main()
