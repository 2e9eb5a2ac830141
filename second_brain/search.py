"""
Hybrid semantic + lexical search over a memory corpus.

HybridSearchEngine scores a corpus snapshot for one query. DebouncedSearch
wraps it for interactive use: it waits for the query to settle and only
ever delivers the result of the most recently submitted query.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from .config import (
    EXACT_TAG_BOOST,
    FALLBACK_SCORE,
    ONE_DAY_MS,
    RECENCY_WEIGHT,
    RECENCY_WINDOW_DAYS,
    SEARCH_DEBOUNCE_SECONDS,
    SEARCH_MIN_SCORE,
    SHORT_QUERY_LENGTH,
    SUBSTRING_BOOST,
)
from .models import MemoryRecord, SearchResult, now_ms
from .vector import cosine_similarity

logger = logging.getLogger(__name__)


def _keyword_match(memory: MemoryRecord, lower_query: str) -> bool:
    meta = memory.metadata
    return (
        lower_query in memory.content.lower()
        or lower_query in meta.summary.lower()
        or any(lower_query in t.lower() for t in meta.topics)
    )


def _fallback_text(memory: MemoryRecord) -> str:
    meta = memory.metadata
    return " ".join([memory.content, meta.summary, *meta.topics]).lower()


def _metadata_text(memory: MemoryRecord) -> str:
    meta = memory.metadata
    return " ".join([memory.content, meta.summary, *meta.topics, *meta.mood]).lower()


class HybridSearchEngine:
    """
    Scores memories against a free-text query.

    Args:
        embed_query: Returns the embedding of a query, or an empty list when
            the provider fails.
        clock: Returns the current time in ms since epoch.
    """

    def __init__(
        self,
        embed_query: Callable[[str], List[float]],
        clock: Callable[[], int] = now_ms,
    ):
        self.embed_query = embed_query
        self.clock = clock

    def search(
        self, query: str, corpus: Sequence[MemoryRecord]
    ) -> Optional[List[SearchResult]]:
        """
        Search ``corpus`` for ``query``.

        Returns ``None`` for an empty query (no active filter). Queries
        shorter than three characters use a keyword filter only and never
        call the embedding provider. Longer queries are ranked by cosine
        similarity plus recency, substring and exact-tag boosts; if nothing
        clears the score threshold a keyword fallback with a flat score is
        returned instead. Never raises.
        """
        if not query or not query.strip():
            return None

        lower_query = query.lower()

        if len(query) < SHORT_QUERY_LENGTH:
            return [
                SearchResult(record=m, score=None, match_type="keyword")
                for m in corpus
                if _keyword_match(m, lower_query)
            ]

        try:
            return self._hybrid(query, lower_query, corpus)
        except Exception as e:
            logger.error("Search failed for %r: %s", query, e)
            return []

    def _query_embedding(self, query: str) -> List[float]:
        try:
            return list(self.embed_query(query) or [])
        except Exception as e:
            logger.warning("Query embedding failed, using lexical boosts only: %s", e)
            return []

    def score(
        self,
        memory: MemoryRecord,
        lower_query: str,
        query_embedding: Sequence[float],
        now: int,
    ) -> float:
        score = cosine_similarity(query_embedding, memory.embedding) if query_embedding else 0.0

        age = now - memory.created_at
        recency = max(0.0, 1 - age / (RECENCY_WINDOW_DAYS * ONE_DAY_MS))
        score += recency * RECENCY_WEIGHT

        if lower_query in _metadata_text(memory):
            score += SUBSTRING_BOOST

        tags = [t.lower() for t in memory.metadata.topics + memory.metadata.mood]
        if lower_query in tags:
            score += EXACT_TAG_BOOST

        return score

    def _hybrid(
        self, query: str, lower_query: str, corpus: Sequence[MemoryRecord]
    ) -> List[SearchResult]:
        query_embedding = self._query_embedding(query)
        now = self.clock()

        scored = [
            SearchResult(
                record=m,
                score=self.score(m, lower_query, query_embedding, now),
                match_type="hybrid",
            )
            for m in corpus
        ]
        scored.sort(key=lambda r: r.score, reverse=True)
        results = [r for r in scored if r.score > SEARCH_MIN_SCORE]

        if not results:
            results = [
                SearchResult(record=m, score=FALLBACK_SCORE, match_type="fallback")
                for m in corpus
                if lower_query in _fallback_text(m)
            ]
            logger.info("Hybrid search for %r fell back to keywords: %d hits", query, len(results))
        else:
            logger.info("Hybrid search for %r returned %d results", query, len(results))

        return results


CorpusLoader = Callable[[], Union[Sequence[MemoryRecord], Awaitable[Sequence[MemoryRecord]]]]
ResultCallback = Callable[[str, Optional[List[SearchResult]]], None]


class DebouncedSearch:
    """
    Runs a search only after the query has been stable for ``delay`` seconds.

    Each submit() supersedes the previous one: a pending evaluation is
    cancelled, and a result computed for an older query is discarded even
    if its embedding call completes later. ``on_result`` is only invoked
    with the result of the latest query.
    """

    def __init__(
        self,
        engine: HybridSearchEngine,
        corpus_loader: CorpusLoader,
        on_result: ResultCallback,
        delay: float = SEARCH_DEBOUNCE_SECONDS,
    ):
        self.engine = engine
        self.corpus_loader = corpus_loader
        self.on_result = on_result
        self.delay = delay
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    def submit(self, query: str) -> asyncio.Task:
        """Schedule a search for ``query``, superseding any pending one. Needs a running loop."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(
            self._run(query, self._generation)
        )
        return self._task

    def cancel(self):
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self):
        """Wait for the pending search, if any, to finish or be cancelled."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _load_corpus(self) -> Sequence[MemoryRecord]:
        if inspect.iscoroutinefunction(self.corpus_loader):
            return await self.corpus_loader()
        # synchronous loaders read storage; keep them off the event loop
        corpus = await asyncio.to_thread(self.corpus_loader)
        if inspect.isawaitable(corpus):
            corpus = await corpus
        return corpus

    async def _run(self, query: str, generation: int):
        await asyncio.sleep(self.delay)
        if generation != self._generation:
            return

        corpus = await self._load_corpus()
        results = await asyncio.to_thread(self.engine.search, query, corpus)

        if generation != self._generation:
            logger.debug("Discarding stale search result for %r", query)
            return
        self.on_result(query, results)
