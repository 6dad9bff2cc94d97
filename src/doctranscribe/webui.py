# src/doctranscribe/webui.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import gradio as gr

from .config import TranscribeConfig
from .exceptions import ExhaustedError, UnavailableEngineError
from .models import RecognitionOptions
from .ui_utils import (
    ViewerState,
    in_colab,
    read_page,
    render_progress_html,
    run_transcription,
)

LANGUAGES = {
    "English": "eng",
    "French": "fra",
    "German": "deu",
    "Spanish": "spa",
    "Vietnamese": "vie",
}

# ───────────────────────────────────────────────────────────────────────────────
# Callbacks
# ───────────────────────────────────────────────────────────────────────────────

def _uploaded_path(uploaded) -> Optional[Path]:
    if not uploaded:
        return None
    p = Path(getattr(uploaded, "name", uploaded))
    # Some Gradio backends keep a temp path under .name; fall back to .file if available
    if not p.exists() and hasattr(uploaded, "file"):
        p = Path(uploaded.file.name)
    return p


def handle_transcribe(uploaded, handwriting, quick, enhance, language, log_mode, viewer):
    """
    Gradio generator. Streams (log, progress, transcript, page number, page info, state).
    """
    if viewer is not None:
        viewer.close()

    options = RecognitionOptions(
        optimize_for_handwriting=bool(handwriting),
        enhance_contrast=bool(enhance),
        language=LANGUAGES.get(language, "eng"),
        quick_mode=bool(quick),
    )
    config = TranscribeConfig(languages=[options.language])

    for update in run_transcription(_uploaded_path(uploaded), options, log_mode=log_mode, config=config):
        new_viewer = update.get("viewer")
        page_count = update.get("page_count")
        yield (
            update.get("log", ""),
            update.get("progress_html") or render_progress_html(0, "Idle"),
            update["transcript"] if "transcript" in update else gr.update(),
            gr.update(value=1, maximum=page_count) if page_count else gr.update(),
            f"Page 1 of {page_count}" if page_count else gr.update(),
            new_viewer,
        )


def handle_page(viewer: Optional[ViewerState], page_number):
    """Returns (page text, page number shown, page info)."""
    try:
        page = read_page(viewer, page_number)
    except ValueError as e:
        return str(e), 1, ""
    except ExhaustedError as e:
        return e.message, page_number, ""
    except UnavailableEngineError as e:
        return f"OCR engine unavailable: {e}", page_number, ""
    return page.text, page.page_number, f"Page {page.page_number} of {viewer.page_count}"


def _step(delta: int):
    def _go(viewer, page_number):
        n = int(page_number or 1) + delta
        if viewer is not None:
            n = max(1, min(viewer.page_count, n))
        return handle_page(viewer, n)
    return _go

# ───────────────────────────────────────────────────────────────────────────────
# Gradio App
# ───────────────────────────────────────────────────────────────────────────────

def launch_webui(share: Optional[bool] = None, server_name: str = "127.0.0.1", server_port: int = 7860):
    with gr.Blocks(theme=gr.themes.Soft(), title="docTranscribe WebUI") as app:
        gr.Markdown("# docTranscribe")
        gr.Markdown("Upload a PDF or an image and get its text. Live log and progress below.")

        viewer_state = gr.State(None)

        with gr.Row():
            with gr.Column(scale=1):
                gr.Markdown("### 1) Input")
                input_file = gr.File(
                    label="Upload a PDF or an image",
                    file_count="single",
                    file_types=[".pdf", ".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp"],
                    interactive=True,
                )

                gr.Markdown("### 2) Options")
                handwriting = gr.Checkbox(label="Optimize for handwriting", value=False)
                quick = gr.Checkbox(label="Quick mode (faster, less accurate)", value=False)
                enhance = gr.Checkbox(label="Enhance contrast", value=False)
                language = gr.Dropdown(choices=list(LANGUAGES), value="English", label="Language")
                log_mode = gr.Radio(choices=["Basic", "Advanced"], value="Basic", label="Log display mode")

                start_button = gr.Button("Transcribe", variant="primary")

            with gr.Column(scale=2):
                gr.Markdown("### 3) Live Log & Progress")
                progress_html = gr.HTML(value=render_progress_html(0, "Idle"))
                log_output = gr.Textbox(label="Processing Log", lines=8, interactive=False)

                gr.Markdown("### 4) Transcript")
                transcript = gr.Textbox(label="Transcript", lines=16, interactive=False, show_copy_button=True)

                gr.Markdown("### 5) Pages")
                with gr.Row():
                    prev_button = gr.Button("◀ Previous")
                    page_number = gr.Number(value=1, precision=0, minimum=1, label="Page")
                    next_button = gr.Button("Next ▶")
                page_info = gr.Markdown("")
                page_text = gr.Textbox(label="Page text", lines=12, interactive=False)

        start_button.click(
            fn=handle_transcribe,
            inputs=[input_file, handwriting, quick, enhance, language, log_mode, viewer_state],
            outputs=[log_output, progress_html, transcript, page_number, page_info, viewer_state],
        )
        page_number.submit(fn=handle_page, inputs=[viewer_state, page_number],
                           outputs=[page_text, page_number, page_info])
        prev_button.click(fn=_step(-1), inputs=[viewer_state, page_number],
                          outputs=[page_text, page_number, page_info])
        next_button.click(fn=_step(1), inputs=[viewer_state, page_number],
                          outputs=[page_text, page_number, page_info])

    app.launch(
        share=in_colab() if share is None else share,
        server_name=server_name,
        server_port=server_port,
    )


if __name__ == "__main__":
    launch_webui()
