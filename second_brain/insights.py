"""
Lightweight pattern mining over the memory corpus.
"""

from collections import Counter
from typing import List, Sequence

from .config import (
    INSIGHT_MAX_REMINDERS,
    INSIGHT_MIN_MEMORIES,
    INSIGHT_MIN_TOPIC_COUNT,
    INSIGHT_REMINDER_AGE_DAYS,
    INSIGHT_REMINDER_IMPORTANCE,
    INSIGHT_REMINDER_RELEVANCE,
    INSIGHT_TOP_TOPICS,
    ONE_DAY_MS,
)
from .models import Insight, MemoryRecord


def topic_frequency(corpus: Sequence[MemoryRecord]) -> Counter:
    """Occurrences of each topic string (case-sensitive), one per memory."""
    counts = Counter()
    for memory in corpus:
        counts.update(list(dict.fromkeys(memory.metadata.topics)))
    return counts


def _top_topics(counts: Counter) -> List[tuple]:
    # Counter.most_common keeps first-seen order among equal counts
    return [
        (topic, count)
        for topic, count in counts.most_common(INSIGHT_TOP_TOPICS)
        if count >= INSIGHT_MIN_TOPIC_COUNT
    ]


def pattern_insights(corpus: Sequence[MemoryRecord]) -> List[Insight]:
    insights = []
    total = len(corpus)
    for topic, count in _top_topics(topic_frequency(corpus)):
        memory_ids = [m.id for m in corpus if topic in m.metadata.topics]
        if len(memory_ids) < INSIGHT_MIN_TOPIC_COUNT:
            continue
        insights.append(
            Insight(
                type="pattern",
                title=f"Recurring Topic: {topic}",
                description=f"You've saved {count} memories related to {topic}",
                memory_ids=memory_ids,
                relevance=min(1.0, count / total),
            )
        )
    return insights


def overdue_memories(corpus: Sequence[MemoryRecord], now: int) -> List[str]:
    """Ids of important memories not seen for over a month, at most three."""
    overdue = []
    for memory in corpus:
        if memory.metadata.importance_score <= INSIGHT_REMINDER_IMPORTANCE:
            continue
        if now - memory.last_seen <= INSIGHT_REMINDER_AGE_DAYS * ONE_DAY_MS:
            continue
        overdue.append(memory.id)
        if len(overdue) >= INSIGHT_MAX_REMINDERS:
            break
    return overdue


def mine_insights(corpus: Sequence[MemoryRecord], now: int) -> List[Insight]:
    """
    Recurring-topic patterns followed by one reminder for overdue memories.

    Returns an empty list for corpora with fewer than three memories.
    Deterministic for a fixed corpus and ``now``.
    """
    corpus = list(corpus)
    if len(corpus) < INSIGHT_MIN_MEMORIES:
        return []

    insights = pattern_insights(corpus)

    overdue = overdue_memories(corpus, now)
    if overdue:
        insights.append(
            Insight(
                type="reminder",
                title="Important Memories to Revisit",
                description=(
                    f"You have {len(overdue)} important memories you haven't seen in a while"
                ),
                memory_ids=overdue,
                relevance=INSIGHT_REMINDER_RELEVANCE,
            )
        )
    return insights
