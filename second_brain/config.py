"""
Configuration module for the Second Brain memory engine.

Contains all configuration constants for storage, AI models, and the
search / linking / resurfacing / insight scoring rules.
"""

from pathlib import Path
import os
import warnings


# Data Storage Configuration
# You can override the data folder by setting the SECOND_BRAIN_DATA_DIR environment variable.
# Example (bash): export SECOND_BRAIN_DATA_DIR="$HOME/notes/second_brain"

DATA_FOLDER = Path(
    os.environ.get(
        "SECOND_BRAIN_DATA_DIR", str(Path.home() / "Documents" / "second_brain")
    )
)

# ChromaDB collection holding one vector per memory id
CHROMA_COLLECTION_NAME = "second_brain_memories"


# ── Embedding Model Configuration ──────────────────────────────────────────
#
# Set SECOND_BRAIN_EMBEDDING_MODEL to switch models. Different models
# produce incompatible vector spaces, so after switching run the
# rebuild_vectors tool (SecondBrain.rebuild_vector_index()).

EMBEDDING_MODEL_PRESETS = {
    "bge-small-en-v1.5": {
        "model_name": "BAAI/bge-small-en-v1.5",
        "dimensions": 384,
        "max_tokens": 512,
        "query_prefix": "Represent this sentence for searching relevant passages: ",
        "description": "Best quality/size ratio for memories (recommended)",
    },
    "all-MiniLM-L6-v2": {
        "model_name": "sentence-transformers/all-MiniLM-L6-v2",
        "dimensions": 384,
        "max_tokens": 256,
        "query_prefix": "",
        "description": "Fastest inference, lowest quality",
    },
    "all-mpnet-base-v2": {
        "model_name": "sentence-transformers/all-mpnet-base-v2",
        "dimensions": 768,
        "max_tokens": 384,
        "query_prefix": "",
        "description": "Highest quality SBERT model, 768 dims",
    },
    "nomic-embed-text-v1.5": {
        "model_name": "nomic-ai/nomic-embed-text-v1.5",
        "dimensions": 768,
        "max_tokens": 8192,
        "query_prefix": "search_query: ",
        "description": "Long documents, 8192 token window",
    },
}

EMBEDDING_MODEL = os.environ.get("SECOND_BRAIN_EMBEDDING_MODEL", "bge-small-en-v1.5")

if EMBEDDING_MODEL not in EMBEDDING_MODEL_PRESETS:
    warnings.warn(
        f"Unknown SECOND_BRAIN_EMBEDDING_MODEL={EMBEDDING_MODEL!r}. "
        f"Valid options: {list(EMBEDDING_MODEL_PRESETS)}. "
        f"Falling back to 'bge-small-en-v1.5'.",
        stacklevel=2,
    )
    EMBEDDING_MODEL = "bge-small-en-v1.5"
EMBEDDING_MODEL_CONFIG = EMBEDDING_MODEL_PRESETS[EMBEDDING_MODEL]

_REQUIRED_CONFIG_KEYS = {"model_name", "dimensions", "max_tokens", "query_prefix"}
_missing = _REQUIRED_CONFIG_KEYS - set(EMBEDDING_MODEL_CONFIG)
if _missing:
    raise ValueError(
        f"EMBEDDING_MODEL_CONFIG for {EMBEDDING_MODEL!r} is missing keys: {_missing}. "
        f"Each preset must define: {_REQUIRED_CONFIG_KEYS}"
    )


# ── Analysis Model Configuration ───────────────────────────────────────────
#
# litellm model strings. Notes and the final JSON pass for links use the
# fast model; links get a context lookup first; images and PDFs go to the
# larger multimodal models.

FAST_MODEL = os.environ.get("SECOND_BRAIN_FAST_MODEL", "gemini/gemini-2.5-flash-lite")
SEARCH_MODEL = os.environ.get("SECOND_BRAIN_SEARCH_MODEL", "gemini/gemini-2.5-flash")
VISION_MODEL = os.environ.get("SECOND_BRAIN_VISION_MODEL", "gemini/gemini-2.5-pro")
DOCUMENT_MODEL = os.environ.get("SECOND_BRAIN_DOCUMENT_MODEL", "gemini/gemini-2.5-pro")


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        warnings.warn(
            f"Invalid {name}={raw!r}, expected a number. Using {default}.",
            stacklevel=2,
        )
        return default


ANALYSIS_TIMEOUT_SECONDS = _float_env("SECOND_BRAIN_ANALYSIS_TIMEOUT", 60.0)


# Metadata defaults
DEFAULT_COLLECTION = "General"
DEFAULT_IMPORTANCE = 0.5


# Time units (milliseconds, the unit of every stored timestamp)
ONE_DAY_MS = 24 * 60 * 60 * 1000


# Relation Linker
RELATED_THRESHOLD = 0.65
RELATED_TOPIC_BOOST = 0.1
MAX_RELATED = 5


# Hybrid Search
SHORT_QUERY_LENGTH = 3  # queries shorter than this skip the embedding call
RECENCY_WINDOW_DAYS = 60
RECENCY_WEIGHT = 0.15
SUBSTRING_BOOST = 0.25
EXACT_TAG_BOOST = 0.35
SEARCH_MIN_SCORE = 0.40
FALLBACK_SCORE = 0.5
SEARCH_DEBOUNCE_SECONDS = _float_env("SECOND_BRAIN_SEARCH_DEBOUNCE", 0.5)


# Resurfacing
RESURFACE_DEFAULT_K = 5
RESURFACE_MIN_AGE_DAYS = 7
RESURFACE_SWEET_SPOT_DAYS = 30
RESURFACE_SWEET_SPOT_BONUS = 0.3
RESURFACE_OLD_BONUS = 0.2
RESURFACE_FATIGUE_PENALTY = 0.1


# Insights
INSIGHT_MIN_MEMORIES = 3
INSIGHT_TOP_TOPICS = 3
INSIGHT_MIN_TOPIC_COUNT = 2
INSIGHT_REMINDER_IMPORTANCE = 0.6
INSIGHT_REMINDER_AGE_DAYS = 30
INSIGHT_MAX_REMINDERS = 3
INSIGHT_REMINDER_RELEVANCE = 0.8


# Backup policy
BACKUP_INTERVAL_HOURS = 24
BACKUP_EVERY_N_MEMORIES = 100
BACKUP_KEEP = 10
