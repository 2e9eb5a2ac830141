"""Tests for the AI provider: response parsing, request building and failure fallbacks."""

from types import SimpleNamespace
import json

import litellm
import numpy as np
import pytest

from second_brain.ai_provider import (
    AIProvider,
    SYSTEM_INSTRUCTION,
    embedding_text,
    parse_analysis,
    split_data_uri,
)
from second_brain.models import AIMetadata, default_metadata


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeCompletion:
    """Records litellm.completion calls and replays queued replies."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return _response(reply)


class FakeEncoder:
    def __init__(self, error=None):
        self.error = error
        self.inputs = []

    def encode(self, text):
        self.inputs.append(text)
        if self.error:
            raise self.error
        return np.array([0.25, 0.5, 0.75])


@pytest.fixture
def ai():
    return AIProvider(
        model_config={"model_name": "fake", "dimensions": 3, "query_prefix": "query: "},
        fast_model="fast",
        search_model="search",
        vision_model="vision",
        document_model="document",
    )


GOOD_REPLY = json.dumps(
    {
        "summary": "Sunset over the bay.",
        "topics": ["Travel", "Orange"],
        "mood": ["Calm"],
        "colors": ["#FF8800"],
        "collection": "Travel Ideas",
        "importance": 0.7,
    }
)


# ------------------------------------------------------------------
# Pure helpers
# ------------------------------------------------------------------


def test_split_data_uri_with_prefix():
    assert split_data_uri("data:image/jpeg;base64,AAAA") == ("image/jpeg", "AAAA")


def test_split_data_uri_without_prefix():
    assert split_data_uri("AAAA") == (None, "AAAA")


def test_embedding_text_joins_content_and_metadata():
    meta = AIMetadata(summary="A trip", topics=["Travel", "Beach"], mood=["Happy"])
    assert embedding_text("Lisbon", meta) == "Lisbon A trip Travel Beach Happy"


def test_parse_analysis_strips_code_fences():
    meta = parse_analysis("```json\n" + GOOD_REPLY + "\n```")
    assert meta.summary == "Sunset over the bay."
    assert meta.importance == 0.7


@pytest.mark.parametrize("raw", [None, "", "   ", "[1, 2]", "not json"])
def test_parse_analysis_rejects_unusable_text(raw):
    with pytest.raises(ValueError):
        parse_analysis(raw)


# ------------------------------------------------------------------
# Analysis
# ------------------------------------------------------------------


def test_note_analysis_uses_fast_model(ai, monkeypatch):
    completion = FakeCompletion(GOOD_REPLY)
    monkeypatch.setattr(litellm, "completion", completion)

    meta = ai.analyze("Remember the sunset", memory_type="note")

    assert meta.collection == "Travel Ideas"
    assert meta.topics == ["Travel", "Orange"]
    call = completion.calls[0]
    assert call["model"] == "fast"
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][0] == {"role": "system", "content": SYSTEM_INSTRUCTION}
    assert call["messages"][1]["content"] == "Remember the sunset"


def test_link_analysis_looks_up_context_first(ai, monkeypatch):
    completion = FakeCompletion("A blog about typography.", GOOD_REPLY)
    monkeypatch.setattr(litellm, "completion", completion)

    ai.analyze("https://example.com", memory_type="link")

    lookup, analysis = completion.calls
    assert lookup["model"] == "search"
    assert "https://example.com" in lookup["messages"][0]["content"]
    prompt = analysis["messages"][1]["content"]
    assert prompt.startswith("URL: https://example.com")
    assert "Context from Web Search: A blog about typography." in prompt


def test_failed_link_lookup_still_analyzes(ai, monkeypatch):
    completion = FakeCompletion(ConnectionError("offline"), GOOD_REPLY)
    monkeypatch.setattr(litellm, "completion", completion)

    meta = ai.analyze("https://example.com", memory_type="link")

    assert meta.summary == "Sunset over the bay."
    assert len(completion.calls) == 2


def test_image_request_carries_inline_data(ai, monkeypatch):
    completion = FakeCompletion(GOOD_REPLY)
    monkeypatch.setattr(litellm, "completion", completion)

    ai.analyze("sunset.jpg", media="data:image/jpeg;base64,QUJD", memory_type="image")

    call = completion.calls[0]
    assert call["model"] == "vision"
    media_part, text_part = call["messages"][1]["content"]
    assert media_part == {
        "type": "image_url",
        "image_url": {"url": "data:image/jpeg;base64,QUJD"},
    }
    assert text_part["text"].endswith("sunset.jpg")


def test_pdf_request_uses_document_model(ai, monkeypatch):
    completion = FakeCompletion(GOOD_REPLY)
    monkeypatch.setattr(litellm, "completion", completion)

    ai.analyze("paper.pdf", media="QUJD", memory_type="pdf")

    call = completion.calls[0]
    assert call["model"] == "document"
    media_part = call["messages"][1]["content"][0]
    assert media_part["file"]["file_data"] == "data:application/pdf;base64,QUJD"


@pytest.mark.parametrize(
    "reply",
    [RuntimeError("quota exceeded"), "", "I cannot help with that", "[]"],
)
def test_analysis_failure_returns_default_metadata(ai, monkeypatch, reply):
    monkeypatch.setattr(litellm, "completion", FakeCompletion(reply))
    assert ai.analyze("anything") == default_metadata()


# ------------------------------------------------------------------
# Embeddings
# ------------------------------------------------------------------


def test_embed_returns_floats(ai):
    ai.embedding_model = FakeEncoder()
    assert ai.embed("hello") == [0.25, 0.5, 0.75]


def test_embed_query_applies_prefix(ai):
    encoder = FakeEncoder()
    ai.embedding_model = encoder
    ai.embed_query("beach")
    assert encoder.inputs == ["query: beach"]


def test_embed_failure_returns_empty(ai):
    ai.embedding_model = FakeEncoder(error=RuntimeError("CUDA out of memory"))
    assert ai.embed("hello") == []


def test_embed_empty_text_skips_model(ai):
    encoder = FakeEncoder()
    ai.embedding_model = encoder
    assert ai.embed("   ") == []
    assert encoder.inputs == []


def test_model_load_failure_returns_empty(ai, monkeypatch):
    def broken_load():
        raise OSError("model not found")

    monkeypatch.setattr(ai, "_load_embedding_model", broken_load)
    assert ai.embed("hello") == []
