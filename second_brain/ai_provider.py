"""
AI analysis and embedding provider.

Embeddings come from a local sentence-transformers model; content analysis
goes through litellm to whichever chat model is configured per memory type.
Neither operation raises: failures degrade to an empty embedding or to the
fixed default metadata.
"""

from typing import Any, Dict, List, Optional
import json
import logging
import re

import litellm
from pydantic import ValidationError
from sentence_transformers import SentenceTransformer

from .config import (
    ANALYSIS_TIMEOUT_SECONDS,
    DOCUMENT_MODEL,
    EMBEDDING_MODEL,
    EMBEDDING_MODEL_CONFIG,
    FAST_MODEL,
    SEARCH_MODEL,
    VISION_MODEL,
)
from .models import AIMetadata, AnalysisResponse, default_metadata

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """
You are the "brain" of a personal knowledge management system.
Analyze the user's input and return a structured JSON summary.

**Instructions per type:**
- **Images:** Identify prominent objects (e.g., "Laptop", "Mountain", "Coffee"). Extract 3-5 dominant hex colors.
- **PDFs:** Extract the main document title and summarize key arguments/concepts.
- **Links/Text:** Detect the underlying mood and topics.

**General Rules:**
1. Summarize the core meaning in 1-2 sentences.
2. Extract broad topic tags (e.g., "Productivity", "Design", "Code") AND specific object tags if visual.
3. Detect the emotional mood (e.g., "Inspirational", "Technical", "Calm").
4. Detect colors: Return exact Hex codes in 'colors'. Add English color names (e.g. "Red", "Dark Blue") to 'topics' so they are searchable.
5. Assign a collection name (1-3 words) that groups this memory with similar ones (e.g., "Work Projects", "Travel Ideas", "Design Inspiration", "Learning Notes").
6. Assess importance from 0.0 to 1.0 (1.0 = very important, 0.5 = moderate, 0.0 = casual/trivial).

Respond with a single JSON object with the keys:
summary (string), topics (array of strings), mood (array of strings),
colors (array of strings), collection (string), importance (number).
"""

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]*)(;[^,]*)?,")
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def split_data_uri(payload: str) -> tuple:
    """Return (mime_type or None, bare base64 data) for a payload with or without a data: prefix."""
    match = _DATA_URI_RE.match(payload)
    if not match:
        return None, payload
    return match.group("mime") or None, payload[match.end():]


def embedding_text(content: str, metadata: AIMetadata) -> str:
    """Text used for a memory's refined embedding: content plus its AI metadata."""
    return " ".join(
        [content, metadata.summary, " ".join(metadata.topics), " ".join(metadata.mood)]
    )


def parse_analysis(raw: Optional[str]) -> AIMetadata:
    """
    Validate a raw model response into metadata.

    Raises ValueError when the text is empty or not a JSON object.
    """
    if not raw or not raw.strip():
        raise ValueError("No response from AI")
    text = _FENCE_RE.sub("", raw.strip())
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return AnalysisResponse.model_validate(parsed).to_metadata()


class AIProvider:
    """
    Black-box AI collaborator: embeddings and structured content analysis.

    The embedding model is loaded on first use.
    """

    def __init__(
        self,
        model_config: Optional[Dict[str, Any]] = None,
        fast_model: str = FAST_MODEL,
        search_model: str = SEARCH_MODEL,
        vision_model: str = VISION_MODEL,
        document_model: str = DOCUMENT_MODEL,
        timeout: float = ANALYSIS_TIMEOUT_SECONDS,
    ):
        self.model_config = model_config or EMBEDDING_MODEL_CONFIG
        # strip so the separator between prefix and query is always a single space
        self._query_prefix = self.model_config.get("query_prefix", "").strip()
        self.fast_model = fast_model
        self.search_model = search_model
        self.vision_model = vision_model
        self.document_model = document_model
        self.timeout = timeout
        self.embedding_model = None

    def _load_embedding_model(self):
        model_name = self.model_config["model_name"]
        self.embedding_model = SentenceTransformer(model_name)
        logger.info(
            "Embedding model '%s' (preset: %s, dims: %d) loaded successfully",
            model_name,
            EMBEDDING_MODEL,
            self.model_config["dimensions"],
        )

    def embed(self, text: str) -> List[float]:
        """Embedding for ``text``; an empty list on empty input or any failure."""
        if not text or not text.strip():
            return []
        try:
            if self.embedding_model is None:
                self._load_embedding_model()
            return [float(x) for x in self.embedding_model.encode(text).tolist()]
        except Exception as e:
            logger.error("Embedding error: %s", e)
            return []

    def embed_query(self, query: str) -> List[float]:
        """Embedding for a search query, with the model's query prefix applied."""
        text = f"{self._query_prefix} {query}" if self._query_prefix else query
        return self.embed(text)

    def _link_context(self, url: str) -> str:
        try:
            response = litellm.completion(
                model=self.search_model,
                messages=[
                    {
                        "role": "user",
                        "content": f"What is the core content, topics, and mood of this website? {url}",
                    }
                ],
                timeout=self.timeout,
            )
            return response.choices[0].message.content or "No context found."
        except Exception as e:
            logger.warning("Link context lookup failed: %s", e)
            return ""

    def _build_request(
        self,
        content: str,
        media: Optional[str],
        mime_type: Optional[str],
        memory_type: str,
    ) -> tuple:
        """Return (model, user message content) for the analysis call."""
        prompt = content
        model = self.fast_model

        if memory_type == "link":
            context = self._link_context(content)
            prompt = f"URL: {content}\n\nContext from Web Search: {context}\n\nAnalyze this memory."
        elif memory_type == "image":
            model = self.vision_model
        elif memory_type == "pdf":
            model = self.document_model

        if not media:
            return model, prompt

        uri_mime, data = split_data_uri(media)
        mime = mime_type or uri_mime
        if memory_type == "pdf":
            media_part = {
                "type": "file",
                "file": {"file_data": f"data:{mime or 'application/pdf'};base64,{data}"},
            }
            lead = "Analyze this PDF document and the following context: "
        else:
            media_part = {
                "type": "image_url",
                "image_url": {"url": f"data:{mime or 'image/png'};base64,{data}"},
            }
            lead = "Analyze this image and the following context: "

        return model, [media_part, {"type": "text", "text": lead + prompt}]

    def analyze(
        self,
        content: str,
        media: Optional[str] = None,
        memory_type: str = "note",
        mime_type: Optional[str] = None,
    ) -> AIMetadata:
        """
        Structured metadata for a piece of content.

        Returns the fixed default metadata when the model call fails or its
        response does not validate.
        """
        try:
            model, user_content = self._build_request(content, media, mime_type, memory_type)
            response = litellm.completion(
                model=model,
                messages=[
                    {"role": "system", "content": SYSTEM_INSTRUCTION},
                    {"role": "user", "content": user_content},
                ],
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
            metadata = parse_analysis(response.choices[0].message.content)
            logger.info("Analyzed %s memory with %s", memory_type, model)
            return metadata

        except (ValueError, ValidationError) as e:
            logger.error("Analysis returned an unusable response: %s", e)
        except Exception as e:
            logger.error("Analysis error: %s", e)
        return default_metadata()
