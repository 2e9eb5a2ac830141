"""
Data models for the Second Brain memory engine.

Contains the dataclasses for memory records, collections, search results,
insights and operation results, plus the pydantic schema used to validate
raw AI analysis responses before they become metadata.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any
import math
import time

from pydantic import BaseModel, ConfigDict, field_validator

from .config import DEFAULT_COLLECTION, DEFAULT_IMPORTANCE

MEMORY_TYPES = ("link", "note", "image", "pdf")
INSIGHT_TYPES = ("pattern", "trend", "connection", "reminder")


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def clamp_importance(value: Any) -> float:
    """Clamp a raw importance to [0, 1]; anything non-numeric becomes the default."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_IMPORTANCE
    if math.isnan(value):
        return DEFAULT_IMPORTANCE
    return max(0.0, min(1.0, float(value)))


@dataclass
class AIMetadata:
    """
    AI-derived metadata attached to every memory.

    Attributes:
        summary (str): One or two sentence summary.
        topics (List[str]): Topic tags, compared case-insensitively.
        mood (List[str]): Mood tags.
        colors (List[str]): Hex color codes.
        collection (str, optional): Grouping name, "General" when absent.
        related_memory_ids (List[str]): Ids of linked memories.
        importance (float, optional): score in [0, 1], 0.5 when absent.
    """

    summary: str = ""
    topics: List[str] = field(default_factory=list)
    mood: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)
    collection: Optional[str] = None
    related_memory_ids: List[str] = field(default_factory=list)
    importance: Optional[float] = None

    @property
    def collection_name(self) -> str:
        return self.collection or DEFAULT_COLLECTION

    @property
    def importance_score(self) -> float:
        if self.importance is None:
            return DEFAULT_IMPORTANCE
        return clamp_importance(self.importance)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AIMetadata":
        data = data or {}
        return cls(
            summary=data.get("summary") or "",
            topics=list(data.get("topics") or []),
            mood=list(data.get("mood") or []),
            colors=list(data.get("colors") or []),
            collection=data.get("collection"),
            related_memory_ids=list(data.get("related_memory_ids") or []),
            importance=data.get("importance"),
        )


def default_metadata() -> AIMetadata:
    """Metadata substituted when analysis fails entirely."""
    return AIMetadata(
        summary="Could not analyze content.",
        topics=["Uncategorized"],
        mood=[],
        colors=["#CCCCCC"],
        collection=DEFAULT_COLLECTION,
        importance=DEFAULT_IMPORTANCE,
    )


@dataclass
class MemoryRecord:
    """
    A single captured memory.

    Attributes:
        id (str)
        type (str): link, note, image or pdf
        content (str): raw text, URL or filename
        metadata (AIMetadata)
        embedding (List[float]): empty when embedding failed
        created_at (int): ms since epoch
        media_payload (str, optional): base64 data for images / PDFs
        media_omitted (bool): loaded without its payload, which is still stored
        last_resurfaced (int, optional): ms since epoch
        resurface_count (int)
    """

    id: str
    type: str
    content: str
    metadata: AIMetadata
    embedding: List[float]
    created_at: int
    media_payload: Optional[str] = None
    last_resurfaced: Optional[int] = None
    resurface_count: int = 0
    media_omitted: bool = field(default=False, compare=False, repr=False)

    @property
    def has_media(self) -> bool:
        return bool(self.media_payload) or self.media_omitted

    @property
    def last_seen(self) -> int:
        """Most recent time the user saw this memory (resurfaced or created)."""
        if self.last_resurfaced:
            return self.last_resurfaced
        return self.created_at

    def to_dict(self, include_media: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("media_omitted", None)
        if not include_media:
            data.pop("media_payload", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryRecord":
        return cls(
            id=data["id"],
            type=data.get("type", "note"),
            content=data.get("content", ""),
            metadata=AIMetadata.from_dict(data.get("metadata")),
            embedding=[float(x) for x in (data.get("embedding") or [])],
            created_at=int(data["created_at"]),
            media_payload=data.get("media_payload"),
            last_resurfaced=data.get("last_resurfaced"),
            resurface_count=int(data.get("resurface_count") or 0),
        )


@dataclass
class Collection:
    """
    Automatically derived grouping of memories sharing a collection name.

    memory_ids only ever grows; deleting a memory does not compact it.
    """

    id: str
    name: str
    memory_ids: List[str]
    created_at: int
    description: Optional[str] = None
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResult:
    """
    Search result with relevance score.

    Attributes:
        record (MemoryRecord): The matched memory record.
        score (float, optional): Ranking score. Boosts are additive, so it
            may exceed 1. ``None`` on the short-query path.
        match_type (str): "keyword", "hybrid" or "fallback".
    """

    record: MemoryRecord
    score: Optional[float]
    match_type: str


@dataclass
class Insight:
    """A derived observation about the memory corpus."""

    type: str
    title: str
    description: str
    memory_ids: List[str]
    relevance: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Result:
    """
    Standard result container for memory operations.

    Attributes:
        success (bool): Whether the operation succeeded.
        reason (str, optional): Explanation when the operation fails.
        data (list of dict, optional): Operation-specific data, such as
            memory objects, statistics, or search results.
    """

    success: bool
    reason: Optional[str] = None
    data: Optional[List[Dict]] = None


class AnalysisResponse(BaseModel):
    """
    Schema for the JSON object returned by the analysis model.

    Every field is validated leniently and normalised: the model output is
    never trusted past this boundary.
    """

    model_config = ConfigDict(extra="ignore")

    summary: str = "No summary available."
    topics: List[str] = []
    mood: List[str] = []
    colors: List[str] = []
    collection: str = DEFAULT_COLLECTION
    importance: float = DEFAULT_IMPORTANCE

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, v):
        if isinstance(v, str) and v.strip():
            return v.strip()
        return "No summary available."

    @field_validator("topics", "mood", "colors", mode="before")
    @classmethod
    def _string_list(cls, v):
        if not isinstance(v, list):
            return []
        return [item.strip() for item in v if isinstance(item, str) and item.strip()]

    @field_validator("collection", mode="before")
    @classmethod
    def _collection(cls, v):
        if isinstance(v, str) and v.strip():
            return v.strip()
        return DEFAULT_COLLECTION

    @field_validator("importance", mode="before")
    @classmethod
    def _importance(cls, v):
        return clamp_importance(v)

    def to_metadata(self) -> AIMetadata:
        return AIMetadata(
            summary=self.summary,
            topics=list(self.topics),
            mood=list(self.mood),
            colors=list(self.colors),
            collection=self.collection,
            importance=self.importance,
        )
