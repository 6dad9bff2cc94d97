"""Tests for the generative vision backend. The OpenAI client is mocked; skipped when openai is not installed."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

pytest.importorskip("openai")

from doctranscribe.ocr_backends.openai_backend import (  # noqa: E402
    OpenAIVisionEngine,
    build_prompt,
    describe_languages,
)
from doctranscribe.recognizer import select_engine_settings  # noqa: E402

CLIENT = "doctranscribe.ocr_backends.openai_backend.OpenAI"


def _reply(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_language_names():
    assert describe_languages("eng+vie") == "English, Vietnamese"
    assert describe_languages("jpn") == "jpn"
    assert describe_languages("") == ""


class TestBuildPrompt:
    def test_printed_text(self):
        prompt = build_prompt(select_engine_settings(False, False), "eng")
        assert "in English" in prompt
        assert "literally" not in prompt

    def test_careful_handwriting_asks_for_literal_text(self):
        prompt = build_prompt(select_engine_settings(True, False), "eng")
        assert "handwritten" in prompt
        assert "do not correct spelling" in prompt


class TestOpenAIVisionEngine:
    @patch(CLIENT)
    def test_not_ready_without_api_key(self, mock_client, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        engine = OpenAIVisionEngine(languages=["eng"])

        assert engine.is_ready() is False
        mock_client.assert_not_called()

    @patch(CLIENT)
    def test_key_from_environment(self, mock_client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        engine = OpenAIVisionEngine(base_url="http://localhost:8000/v1")

        assert engine.is_ready() is True
        mock_client.assert_called_once_with(api_key="sk-test", base_url="http://localhost:8000/v1")

    @patch(CLIENT)
    def test_image_is_sent_as_data_url(self, mock_client):
        client = MagicMock()
        client.chat.completions.create.return_value = _reply("  Dear diary,\nToday it rained.  ")
        mock_client.return_value = client
        ticks = []

        engine = OpenAIVisionEngine(api_key="sk-test", model="gpt-4o-mini")
        text = engine.recognize(Image.new("RGB", (40, 20), "white"),
                                select_engine_settings(True, True), "eng", ticks.append)

        assert text == "Dear diary,\nToday it rained."
        assert ticks == [0.0, 1.0]
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 4000
        content = kwargs["messages"][1]["content"]
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    @patch(CLIENT)
    def test_empty_reply_is_no_text(self, mock_client):
        client = MagicMock()
        client.chat.completions.create.return_value = _reply(None)
        mock_client.return_value = client

        engine = OpenAIVisionEngine(api_key="sk-test")

        assert engine.recognize(Image.new("RGB", (40, 20), "white"),
                                select_engine_settings(False, False), "eng") == ""

    @patch(CLIENT)
    def test_api_errors_propagate(self, mock_client):
        client = MagicMock()
        client.chat.completions.create.side_effect = RuntimeError("rate limited")
        mock_client.return_value = client

        engine = OpenAIVisionEngine(api_key="sk-test")

        with pytest.raises(RuntimeError):
            engine.recognize(Image.new("RGB", (40, 20), "white"), select_engine_settings(False, False), "eng")
