"""
Second Brain memory engine.

Captures notes, links, images and PDFs, enriches them with AI metadata,
and retrieves them through hybrid search, related-memory links,
resurfacing and insights.
"""

from .config import (
    DATA_FOLDER,
    CHROMA_COLLECTION_NAME,
    EMBEDDING_MODEL,
    EMBEDDING_MODEL_CONFIG,
    EMBEDDING_MODEL_PRESETS,
)
from .models import (
    AIMetadata,
    Collection,
    Insight,
    MemoryRecord,
    Result,
    SearchResult,
)
from .vector import cosine_similarity
from .relations import find_related, link_back
from .search import DebouncedSearch, HybridSearchEngine
from .resurface import resurface
from .insights import mine_insights
from .store import MemoryStore
from .ai_provider import AIProvider
from .memory_system import SecondBrain
from .mcp_tools import register_tools, jsonify_result

__all__ = [
    "DATA_FOLDER",
    "CHROMA_COLLECTION_NAME",
    "EMBEDDING_MODEL",
    "EMBEDDING_MODEL_CONFIG",
    "EMBEDDING_MODEL_PRESETS",
    "AIMetadata",
    "Collection",
    "Insight",
    "MemoryRecord",
    "Result",
    "SearchResult",
    "cosine_similarity",
    "find_related",
    "link_back",
    "DebouncedSearch",
    "HybridSearchEngine",
    "resurface",
    "mine_insights",
    "MemoryStore",
    "AIProvider",
    "SecondBrain",
    "register_tools",
    "jsonify_result",
]
