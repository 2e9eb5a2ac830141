"""
Resurfacing selection: pick the memories most worth showing again.

Importance is the base score; memories unseen for a week to a month get the
largest bonus, older ones a smaller one, and every previous resurfacing
costs a fixed fatigue penalty.
"""

import logging
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Tuple

from .config import (
    ONE_DAY_MS,
    RESURFACE_DEFAULT_K,
    RESURFACE_FATIGUE_PENALTY,
    RESURFACE_MIN_AGE_DAYS,
    RESURFACE_OLD_BONUS,
    RESURFACE_SWEET_SPOT_BONUS,
    RESURFACE_SWEET_SPOT_DAYS,
)
from .models import MemoryRecord

logger = logging.getLogger(__name__)


def resurface_score(memory: MemoryRecord, now: int) -> float:
    age = now - memory.last_seen
    score = memory.metadata.importance_score

    if RESURFACE_MIN_AGE_DAYS * ONE_DAY_MS <= age < RESURFACE_SWEET_SPOT_DAYS * ONE_DAY_MS:
        score += RESURFACE_SWEET_SPOT_BONUS
    elif age >= RESURFACE_SWEET_SPOT_DAYS * ONE_DAY_MS:
        score += RESURFACE_OLD_BONUS

    # no floor: heavily resurfaced memories can go negative
    score -= RESURFACE_FATIGUE_PENALTY * (memory.resurface_count or 0)
    return score


def select_for_resurfacing(
    corpus: Iterable[MemoryRecord], now: int, k: int = RESURFACE_DEFAULT_K
) -> List[Tuple[MemoryRecord, float]]:
    """Top ``k`` memories by resurface score, highest first (ties keep corpus order)."""
    scored = [(m, resurface_score(m, now)) for m in corpus]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[: max(0, k)]


def mark_resurfaced(memory: MemoryRecord, now: int) -> MemoryRecord:
    memory.last_resurfaced = now
    memory.resurface_count = (memory.resurface_count or 0) + 1
    return memory


def resurface(
    corpus: Iterable[MemoryRecord],
    now: int,
    k: int = RESURFACE_DEFAULT_K,
    patch: Optional[Callable[[str, Callable[[MemoryRecord], MemoryRecord]], Optional[MemoryRecord]]] = None,
) -> Tuple[List[MemoryRecord], List[str]]:
    """
    Select up to ``k`` memories and record that they were resurfaced.

    Each selected memory is persisted through ``patch`` independently; a
    failed write is logged and does not stop the others. The returned
    records always carry the new bookkeeping values, in score order.

    Returns:
        (updated_records, failed_ids)
    """
    selected = select_for_resurfacing(corpus, now, k)
    updated, failed = [], []

    for memory, score in selected:
        fresh = mark_resurfaced(replace(memory), now)
        updated.append(fresh)
        if patch is None:
            continue
        try:
            stored = patch(memory.id, lambda rec: mark_resurfaced(rec, now))
        except Exception as e:
            logger.error("Failed to record resurfacing of %s: %s", memory.id, e)
            failed.append(memory.id)
            continue
        if stored is None:
            logger.warning("Resurfaced memory %s no longer exists", memory.id)
            failed.append(memory.id)

    logger.info("Resurfaced %d memories (%d write failures)", len(updated), len(failed))
    return updated, failed
