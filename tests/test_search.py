"""Tests for the hybrid search engine and the debounced search wrapper."""

import asyncio
import threading
import time

import pytest

from conftest import NOW, days_ago, make_record
from second_brain.search import DebouncedSearch, HybridSearchEngine


class RecordingEmbedder:
    def __init__(self, vector=None, error=None):
        self.vector = vector if vector is not None else []
        self.error = error
        self.calls = []

    def __call__(self, query):
        self.calls.append(query)
        if self.error:
            raise self.error
        return self.vector


def _engine(embedder=None):
    return HybridSearchEngine(embedder or RecordingEmbedder(), clock=lambda: NOW)


# ------------------------------------------------------------------
# Empty and short queries
# ------------------------------------------------------------------


@pytest.mark.parametrize("query", ["", "   ", "\t"])
def test_empty_query_returns_none(query):
    assert _engine().search(query, [make_record()]) is None


def test_short_query_never_embeds():
    embedder = RecordingEmbedder(vector=[1.0, 0.0])
    corpus = [make_record(content="Go to the museum")]
    _engine(embedder).search("go", corpus)
    assert embedder.calls == []


def test_short_query_matches_content_summary_or_topic():
    by_content = make_record(id="c", content="Jazz night")
    by_summary = make_record(id="s", content="x", summary="A jazz album")
    by_topic = make_record(id="t", content="x", topics=["JAzz"])
    miss = make_record(id="m", content="Rock", summary="loud")

    results = _engine().search("ja", [by_content, miss, by_summary, by_topic])

    assert [r.record.id for r in results] == ["c", "s", "t"]
    assert all(r.score is None and r.match_type == "keyword" for r in results)


def test_short_query_ignores_mood():
    record = make_record(content="x", mood=["Joyful"])
    assert _engine().search("jo", [record]) == []


# ------------------------------------------------------------------
# Hybrid scoring
# ------------------------------------------------------------------


def test_exact_tag_boost_applies_without_similarity():
    # 40 days old: recency contributes (1 - 40/60) * 0.15 = 0.05
    memory = make_record(id="m", content="poster", topics=["Red"], created_at=days_ago(40))
    results = _engine(RecordingEmbedder(vector=[])).search("red", [memory])

    assert [r.record.id for r in results] == ["m"]
    assert results[0].match_type == "hybrid"
    assert results[0].score == pytest.approx(0.05 + 0.25 + 0.35)


def test_query_is_case_insensitive():
    memory = make_record(content="poster", topics=["red"], created_at=days_ago(90))
    results = _engine().search("RED", [memory])
    assert results[0].score == pytest.approx(0.25 + 0.35)


def test_mood_counts_for_substring_and_exact_tag():
    memory = make_record(content="x", mood=["Calm"], created_at=days_ago(90))
    results = _engine().search("calm", [memory])
    assert results[0].score == pytest.approx(0.6)


def test_recency_boost_decays_linearly_and_floors_at_zero():
    engine = _engine()
    fresh = make_record(created_at=NOW)
    month = make_record(created_at=days_ago(30))
    old = make_record(created_at=days_ago(120))

    assert engine.score(fresh, "zzz", [], NOW) == pytest.approx(0.15)
    assert engine.score(month, "zzz", [], NOW) == pytest.approx(0.075)
    assert engine.score(old, "zzz", [], NOW) == 0.0


def test_semantic_similarity_contributes():
    memory = make_record(content="unrelated words", embedding=[1.0, 0.0], created_at=days_ago(90))
    results = _engine(RecordingEmbedder(vector=[1.0, 0.0])).search("holiday", [memory])
    assert results[0].score == pytest.approx(1.0)


def test_results_sorted_descending_and_thresholded():
    strong = make_record(id="strong", embedding=[1.0, 0.0], created_at=days_ago(90))
    medium = make_record(id="medium", embedding=[1.0, 1.0], created_at=days_ago(90))
    weak = make_record(id="weak", embedding=[0.0, 1.0], created_at=days_ago(90))

    results = _engine(RecordingEmbedder(vector=[1.0, 0.0])).search(
        "query", [weak, medium, strong]
    )

    assert [r.record.id for r in results] == ["strong", "medium"]
    assert results[0].score > results[1].score > 0.40


def test_ties_keep_corpus_order():
    a = make_record(id="a", topics=["Red"], created_at=days_ago(90))
    b = make_record(id="b", topics=["Red"], created_at=days_ago(90))
    results = _engine().search("red", [a, b])
    assert [r.record.id for r in results] == ["a", "b"]


# ------------------------------------------------------------------
# Fallback and failure handling
# ------------------------------------------------------------------


def test_fallback_assigns_flat_score():
    # matches by substring (0.25) but old, so it misses the 0.40 cut
    memory = make_record(id="m", content="notes on gardening", created_at=days_ago(90))
    results = _engine().search("garden", [memory])

    assert [r.record.id for r in results] == ["m"]
    assert results[0].score == 0.5
    assert results[0].match_type == "fallback"


def test_fallback_ignores_mood():
    memory = make_record(content="x", mood=["serene mood"], created_at=days_ago(90))
    # substring boost alone (0.25) stays under the cut, and fallback skips mood
    assert _engine().search("serene", [memory]) == []


def test_no_match_anywhere_is_empty_list_not_none():
    memory = make_record(content="apples", created_at=days_ago(90))
    results = _engine().search("zebra", [memory])
    assert results == []


def test_embedding_failure_falls_back_to_boosts():
    embedder = RecordingEmbedder(error=ConnectionError("offline"))
    memory = make_record(id="m", topics=["Travel"], created_at=days_ago(90))
    results = _engine(embedder).search("travel", [memory])

    assert embedder.calls == ["travel"]
    assert results[0].score == pytest.approx(0.6)


def test_internal_error_yields_empty_list():
    engine = _engine()
    broken = make_record()
    broken.metadata = None  # scoring will blow up
    assert engine.search("anything", [broken]) == []


# ------------------------------------------------------------------
# Debounce
# ------------------------------------------------------------------


class TestDebouncedSearch:
    def _make(self, corpus, delay=0.05, embedder=None):
        delivered = []
        searcher = DebouncedSearch(
            _engine(embedder),
            lambda: corpus,
            lambda query, results: delivered.append((query, results)),
            delay=delay,
        )
        return searcher, delivered

    def test_only_latest_query_is_delivered(self):
        corpus = [make_record(id="m", topics=["Red"], created_at=days_ago(90))]
        embedder = RecordingEmbedder()
        searcher, delivered = self._make(corpus, embedder=embedder)

        async def scenario():
            searcher.submit("re")
            searcher.submit("red")
            await searcher.flush()

        asyncio.run(scenario())

        assert [q for q, _ in delivered] == ["red"]
        assert [r.record.id for r in delivered[0][1]] == ["m"]
        assert embedder.calls == ["red"]

    def test_waits_for_quiet_period(self):
        searcher, delivered = self._make([], delay=0.2)

        async def scenario():
            searcher.submit("hello")
            await asyncio.sleep(0.05)
            early = list(delivered)
            await searcher.flush()
            return early

        early = asyncio.run(scenario())
        assert early == []
        assert delivered == [("hello", [])]

    def test_stale_result_is_discarded(self):
        corpus = [make_record()]
        searcher, delivered = self._make(corpus, delay=0.0)

        async def scenario():
            first = searcher.submit("first query")
            # let the first evaluation start, then supersede it
            await asyncio.sleep(0)
            searcher.submit("second query")
            try:
                await first
            except asyncio.CancelledError:
                pass
            await searcher.flush()

        asyncio.run(scenario())
        assert [q for q, _ in delivered] == ["second query"]

    def test_cancel_drops_pending(self):
        searcher, delivered = self._make([])

        async def scenario():
            searcher.submit("hello")
            searcher.cancel()
            await asyncio.sleep(0.1)

        asyncio.run(scenario())
        assert delivered == []

    def test_empty_query_delivers_none(self):
        searcher, delivered = self._make([make_record()])

        async def scenario():
            searcher.submit("  ")
            await searcher.flush()

        asyncio.run(scenario())
        assert delivered == [("  ", None)]

    def test_async_corpus_loader(self):
        corpus = [make_record(id="m", content="jazz")]

        async def load():
            return corpus

        delivered = []
        searcher = DebouncedSearch(
            _engine(), load, lambda q, r: delivered.append(r), delay=0.0
        )

        async def scenario():
            searcher.submit("ja")
            await searcher.flush()

        asyncio.run(scenario())
        assert [r.record.id for r in delivered[0]] == ["m"]

    def test_sync_corpus_loader_does_not_block_event_loop(self):
        def slow_load():
            time.sleep(0.3)
            return []

        searcher = DebouncedSearch(_engine(), slow_load, lambda q, r: None, delay=0.0)
        gaps = []

        async def ticker(stop):
            last = time.monotonic()
            while not stop.is_set():
                await asyncio.sleep(0.01)
                now = time.monotonic()
                gaps.append(now - last)
                last = now

        async def scenario():
            stop = asyncio.Event()
            ticking = asyncio.create_task(ticker(stop))
            searcher.submit("hello")
            await searcher.flush()
            stop.set()
            await ticking

        asyncio.run(scenario())
        assert gaps
        assert max(gaps) < 0.15

    def test_superseded_in_flight_embedding_is_discarded(self):
        entered = threading.Event()
        release = threading.Event()
        finished = threading.Event()
        calls = []

        def embed(query):
            calls.append(query)
            if query == "first query":
                entered.set()
                release.wait(5)
                finished.set()
                return [1.0, 0.0]
            return []

        corpus = [make_record(id="m", content="first query notes", embedding=[1.0, 0.0])]
        delivered = []
        searcher = DebouncedSearch(
            _engine(embed),
            lambda: corpus,
            lambda query, results: delivered.append((query, results)),
            delay=0.0,
        )

        async def scenario():
            first = searcher.submit("first query")
            assert await asyncio.to_thread(entered.wait, 5)
            searcher.submit("second query")
            release.set()
            try:
                await first
            except asyncio.CancelledError:
                pass
            await searcher.flush()
            assert await asyncio.to_thread(finished.wait, 5)
            # give a late delivery from the first query a chance to surface
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert calls == ["first query", "second query"]
        assert [q for q, _ in delivered] == ["second query"]
