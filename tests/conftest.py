"""Shared fixtures for the Second Brain test suite."""

import itertools

import pytest

from second_brain.config import ONE_DAY_MS
from second_brain.memory_system import SecondBrain
from second_brain.models import AIMetadata, MemoryRecord

NOW = 1_750_000_000_000

_ids = itertools.count(1)


class Clock:
    """Settable millisecond clock."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance_days(self, days: float):
        self.now += int(days * ONE_DAY_MS)


def days_ago(days: float, now: int = NOW) -> int:
    return now - int(days * ONE_DAY_MS)


def make_record(
    id=None,
    content="a note",
    topics=None,
    mood=None,
    summary="",
    embedding=None,
    created_at=None,
    importance=None,
    collection=None,
    last_resurfaced=None,
    resurface_count=0,
    type="note",
) -> MemoryRecord:
    return MemoryRecord(
        id=id or f"mem-{next(_ids)}",
        type=type,
        content=content,
        metadata=AIMetadata(
            summary=summary,
            topics=list(topics or []),
            mood=list(mood or []),
            collection=collection,
            importance=importance,
        ),
        embedding=list(embedding or []),
        created_at=NOW if created_at is None else created_at,
        last_resurfaced=last_resurfaced,
        resurface_count=resurface_count,
    )


_KEYWORDS = ("design", "travel", "cook")
_TOPICS = {"design": ["Design"], "travel": ["Travel"], "cook": ["Cooking"]}
_COLLECTIONS = {"design": "Design Inspiration", "travel": "Travel Ideas"}


class FakeProvider:
    """
    Deterministic stand-in for the AI provider.

    Embeddings count keyword occurrences plus a small constant component so
    every vector is non-zero; analysis tags the first keyword found.
    """

    def __init__(self, fail_embeddings=False):
        self.fail_embeddings = fail_embeddings
        self.embed_calls = []
        self.analyze_calls = []
        self.embedding_model = None

    def embed(self, text):
        self.embed_calls.append(text)
        if self.fail_embeddings:
            return []
        lower = text.lower()
        return [float(lower.count(k)) for k in _KEYWORDS] + [0.1]

    def embed_query(self, query):
        return self.embed(query)

    def analyze(self, content, media=None, memory_type="note", mime_type=None):
        self.analyze_calls.append((content, media, memory_type, mime_type))
        lower = content.lower()
        keyword = next((k for k in _KEYWORDS if k in lower), None)
        return AIMetadata(
            summary=f"About {content}",
            topics=list(_TOPICS.get(keyword, ["Misc"])),
            mood=["Calm"],
            colors=["#FFFFFF"],
            collection=_COLLECTIONS.get(keyword),
            importance=0.5,
        )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def brain(tmp_path, provider, clock):
    system = SecondBrain(
        data_folder=tmp_path / "data", provider=provider, clock=clock, setup_logging=False
    )
    yield system
    system.close()
