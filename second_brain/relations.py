"""
Related-memory discovery and bidirectional link maintenance.

find_related is pure; link_back performs the per-record writes on the store
and tolerates individual failures.
"""

import logging
from typing import Callable, Iterable, List, Optional, Tuple

from .config import MAX_RELATED, RELATED_THRESHOLD, RELATED_TOPIC_BOOST
from .models import MemoryRecord
from .vector import cosine_similarity

logger = logging.getLogger(__name__)


def topic_overlap(memory: MemoryRecord, other: MemoryRecord) -> int:
    """Number of topics in ``memory`` that also appear (case-insensitively) in ``other``."""
    other_topics = {t.lower() for t in other.metadata.topics}
    return sum(1 for t in memory.metadata.topics if t.lower() in other_topics)


def relation_score(memory: MemoryRecord, other: MemoryRecord) -> float:
    score = cosine_similarity(memory.embedding, other.embedding)
    if topic_overlap(memory, other) > 0:
        score += RELATED_TOPIC_BOOST
    return score


def find_related(
    memory: MemoryRecord,
    corpus: Iterable[MemoryRecord],
    threshold: float = RELATED_THRESHOLD,
) -> List[str]:
    """
    Ids of memories related to ``memory``.

    Keeps every other memory whose cosine similarity plus topic boost reaches
    ``threshold``, in corpus order, truncated to the first five matches.
    """
    related = []
    for other in corpus:
        if other.id == memory.id:
            continue
        if relation_score(memory, other) >= threshold:
            related.append(other.id)
            if len(related) >= MAX_RELATED:
                break
    return related


def add_related_id(record: MemoryRecord, memory_id: str) -> MemoryRecord:
    """Append ``memory_id`` to the record's related ids unless already present."""
    if memory_id != record.id and memory_id not in record.metadata.related_memory_ids:
        record.metadata.related_memory_ids.append(memory_id)
    return record


def link_back(
    memory_id: str,
    related_ids: Iterable[str],
    patch: Callable[[str, Callable[[MemoryRecord], MemoryRecord]], Optional[MemoryRecord]],
) -> Tuple[List[str], List[str]]:
    """
    Add ``memory_id`` to the related list of every memory in ``related_ids``.

    ``patch`` is the store's read-modify-write call. Each write is
    independent: a failure is logged and the remaining ids are still
    processed.

    Returns:
        (linked_ids, failed_ids)
    """
    linked, failed = [], []
    for related_id in related_ids:
        try:
            updated = patch(related_id, lambda rec: add_related_id(rec, memory_id))
        except Exception as e:
            logger.error("Failed to back-link %s -> %s: %s", related_id, memory_id, e)
            failed.append(related_id)
            continue
        if updated is None:
            logger.warning("Related memory %s vanished before back-linking", related_id)
            failed.append(related_id)
        else:
            linked.append(related_id)
    return linked, failed
