"""
Core memory system module.

Contains the SecondBrain class that wires the content store, the AI
provider and the retrieval components (linking, search, resurfacing,
insights) into user-facing operations.
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Any
from collections import OrderedDict
import base64
import json
import logging
import mimetypes
import re
import shutil
import uuid
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler

import tiktoken

from .ai_provider import AIProvider, embedding_text
from .config import (
    BACKUP_EVERY_N_MEMORIES,
    BACKUP_INTERVAL_HOURS,
    BACKUP_KEEP,
    DATA_FOLDER,
    RESURFACE_DEFAULT_K,
    SEARCH_DEBOUNCE_SECONDS,
)
from .insights import mine_insights
from .models import (
    MEMORY_TYPES,
    Collection,
    MemoryRecord,
    Result,
    SearchResult,
    clamp_importance,
    now_ms,
)
from .relations import find_related, link_back
from .resurface import resurface
from .search import DebouncedSearch, HybridSearchEngine, ResultCallback
from .store import MemoryStore, content_hash

_URL_RE = re.compile(r"^https?://")


def infer_memory_type(
    content: str, media: Optional[str] = None, mime_type: Optional[str] = None
) -> str:
    """pdf / image when media is attached, link for http(s) URLs, otherwise note."""
    if media:
        is_pdf = (mime_type or "") == "application/pdf" or media.startswith(
            "data:application/pdf"
        )
        return "pdf" if is_pdf else "image"
    if _URL_RE.match(content or ""):
        return "link"
    return "note"


def public_dict(record: MemoryRecord) -> Dict[str, Any]:
    """Record as a JSON-friendly dict without the embedding and media payload."""
    data = record.to_dict(include_media=False)
    data.pop("embedding", None)
    data["has_media"] = record.has_media
    return data


def search_result_dict(result: SearchResult) -> Dict[str, Any]:
    data = public_dict(result.record)
    data["score"] = result.score
    data["match_type"] = result.match_type
    return data


class SecondBrain:
    """
    Personal memory engine:
    1. SQLite + ChromaDB content store
    2. AI analysis / embeddings for every captured memory
    3. Related-memory linking, hybrid search, resurfacing and insights
    """

    def __init__(
        self,
        data_folder: Path = DATA_FOLDER,
        provider: Optional[AIProvider] = None,
        clock: Callable[[], int] = now_ms,
        setup_logging: bool = True,
    ):
        self.data_folder = Path(data_folder)
        self.db_folder = self.data_folder / "memory_db"
        self.backup_folder = self.data_folder / "memory_backups"

        self.db_folder.mkdir(parents=True, exist_ok=True)
        self.backup_folder.mkdir(parents=True, exist_ok=True)

        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self.tokenizer: Optional[object] = None

        if setup_logging:
            self._setup_logging()

        self.store = MemoryStore(self.db_folder)
        self.provider = provider or AIProvider()
        self.search_engine = HybridSearchEngine(self.provider.embed_query, clock=self.clock)
        self._init_tokenizer()

        self.store.integrity_check()

    def _setup_logging(self):
        """Setup logging for debugging and monitoring"""
        log_file = self.data_folder / "second_brain.log"

        # Daily rotation, keep 30 days
        file_handler = TimedRotatingFileHandler(
            log_file, when="midnight", interval=1, backupCount=30, utc=False
        )
        file_handler.setLevel(logging.INFO)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)  # Only WARNING+ to stderr

        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
        file_handler.setFormatter(formatter)
        console_handler.setFormatter(formatter)

        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(levelname)s - %(message)s",
            handlers=[file_handler, console_handler],
        )

    def _init_tokenizer(self):
        """Initialize tiktoken tokenizer for token counting"""
        try:
            self.tokenizer = tiktoken.get_encoding("cl100k_base")
        except Exception as e:
            self.logger.error("Failed to load tiktoken tokenizer: %s", e)
            # _count_tokens falls back to an estimate
            self.tokenizer = None

    def _count_tokens(self, text: str) -> int:
        """Count tokens in text using tiktoken"""
        try:
            if self.tokenizer:
                return len(self.tokenizer.encode(text))
            return int(len(text.split()) * 1.3)
        except Exception as e:
            self.logger.warning("Token counting failed, using estimation: %s", e)
            return int(len(text.split()) * 1.3)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def remember(
        self,
        content: str,
        memory_type: Optional[str] = None,
        media: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Result:
        """
        Capture a new memory: analyze, embed, link to related memories, store.

        ``media`` is a base64 payload (optionally a data: URI) for images and
        PDFs. The memory type is inferred when not given.
        """
        content = content or ""
        if not content.strip() and not media:
            return Result(success=False, reason="Content or media is required")

        memory_type = memory_type or infer_memory_type(content, media, mime_type)
        if memory_type not in MEMORY_TYPES:
            return Result(
                success=False,
                reason=f"Unknown memory type {memory_type!r}; expected one of {MEMORY_TYPES}",
            )

        if memory_type == "pdf":
            analysis_text = content or "PDF Document"
        elif memory_type == "image":
            analysis_text = content or "Visual memory"
        else:
            analysis_text = content
        display = content or ("PDF" if memory_type == "pdf" else "Image" if memory_type == "image" else "")

        return self._capture(display, analysis_text, memory_type, media, mime_type)

    def remember_file(self, path: str, note: str = "") -> Result:
        """Capture an image or PDF from disk, with an optional note."""
        try:
            file_path = Path(path).expanduser()
            if not file_path.is_file():
                return Result(success=False, reason=f"File not found: {path}")

            mime_type, _ = mimetypes.guess_type(file_path.name)
            if mime_type == "application/pdf":
                memory_type = "pdf"
                analysis_text = note or f"PDF Document: {file_path.name}"
            elif mime_type and mime_type.startswith("image/"):
                memory_type = "image"
                analysis_text = note or "Visual memory"
            else:
                return Result(
                    success=False,
                    reason=f"Unsupported file type {mime_type or 'unknown'}; expected an image or PDF",
                )

            payload = base64.b64encode(file_path.read_bytes()).decode("ascii")
            media = f"data:{mime_type};base64,{payload}"
            display = note or (file_path.name if memory_type == "pdf" else "Image")

        except OSError as e:
            self.logger.error("Failed to read %s: %s", path, e)
            return Result(success=False, reason=f"Read error: {str(e)}")

        return self._capture(display, analysis_text, memory_type, media, mime_type)

    def _capture(
        self,
        content: str,
        analysis_text: str,
        memory_type: str,
        media: Optional[str],
        mime_type: Optional[str],
    ) -> Result:
        try:
            if memory_type in ("note", "link"):
                existing = self.store.find_by_content_hash(content_hash(content))
                if existing:
                    return Result(
                        success=False, reason=f"Duplicate content detected ({existing})"
                    )

            metadata = self.provider.analyze(analysis_text, media, memory_type, mime_type)
            embedding = self.provider.embed(analysis_text)
            refined = self.provider.embed(embedding_text(analysis_text, metadata))

            record = MemoryRecord(
                id=str(uuid.uuid4()),
                type=memory_type,
                content=content,
                metadata=metadata,
                embedding=refined or embedding,
                created_at=self.clock(),
                media_payload=media,
                resurface_count=0,
            )
            if not record.embedding:
                self.logger.warning(
                    "Memory %s stored without an embedding; it will only match lexically",
                    record.id,
                )

            corpus = self.store.get_all()
            related_ids = find_related(record, corpus)
            record.metadata.related_memory_ids = list(related_ids)

            # store the new memory before pointing others at it
            self.store.put(record, token_count=self._count_tokens(analysis_text))
            _, failed = link_back(record.id, related_ids, self.store.patch)

            self.update_collections([record] + corpus)
            self._maybe_backup()

            self.logger.info(
                "Memory stored: %s (%s, %d related)", record.id, memory_type, len(related_ids)
            )
            data = public_dict(record)
            data["link_failures"] = failed
            return Result(success=True, data=[data])

        except Exception as e:
            self.logger.error("Failed to store memory: %s", e)
            return Result(success=False, reason=f"Storage error: {str(e)}")

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def search(self, query: str) -> Result:
        """
        Hybrid search over the current corpus.

        ``data`` is ``None`` for an empty query (no filter active) and a
        possibly empty list of scored memories otherwise.
        """
        try:
            corpus = self.store.get_all()
        except Exception as e:
            self.logger.error("Search could not load memories: %s", e)
            return Result(success=False, reason=f"Search error: {str(e)}")

        results = self.search_engine.search(query, corpus)
        if results is None:
            return Result(success=True, data=None)
        return Result(success=True, data=[search_result_dict(r) for r in results])

    def debounced_search(
        self, on_result: ResultCallback, delay: float = SEARCH_DEBOUNCE_SECONDS
    ) -> DebouncedSearch:
        """Interactive search handle that re-reads the corpus for each settled query."""
        return DebouncedSearch(self.search_engine, self.store.get_all, on_result, delay)

    def resurface(self, k: int = RESURFACE_DEFAULT_K) -> Result:
        """Pick up to ``k`` memories worth seeing again and record that they were shown."""
        try:
            corpus = self.store.get_all()
            updated, failed = resurface(corpus, self.clock(), k, patch=self.store.patch)
            data = []
            for record in updated:
                item = public_dict(record)
                item["persisted"] = record.id not in failed
                data.append(item)
            return Result(success=True, data=data)

        except Exception as e:
            self.logger.error("Resurfacing failed: %s", e)
            return Result(success=False, reason=f"Resurface error: {str(e)}")

    def insights(self) -> Result:
        try:
            insights = mine_insights(self.store.get_all(), self.clock())
            return Result(success=True, data=[i.to_dict() for i in insights])
        except Exception as e:
            self.logger.error("Insight mining failed: %s", e)
            return Result(success=False, reason=f"Insight error: {str(e)}")

    def related(self, memory_id: str) -> Result:
        """Resolve a memory's related ids, skipping memories that no longer exist."""
        try:
            record = self.store.get(memory_id)
            if record is None:
                return Result(success=False, reason="Memory not found")
            data = []
            for related_id in record.metadata.related_memory_ids:
                other = self.store.get(related_id)
                if other is not None:
                    data.append(public_dict(other))
            return Result(success=True, data=data)

        except Exception as e:
            self.logger.error("Failed to load related memories: %s", e)
            return Result(success=False, reason=f"Related error: {str(e)}")

    def get_memory(self, memory_id: str) -> Result:
        try:
            record = self.store.get(memory_id)
            if record is None:
                return Result(success=False, reason="Memory not found")
            return Result(success=True, data=[public_dict(record)])
        except Exception as e:
            self.logger.error("Failed to load memory: %s", e)
            return Result(success=False, reason=f"Load error: {str(e)}")

    def get_recent(self, limit: int = 20) -> Result:
        try:
            return Result(
                success=True, data=[public_dict(r) for r in self.store.get_recent(limit)]
            )
        except Exception as e:
            self.logger.error("get_recent failed: %s", e)
            return Result(success=False, reason=f"get_recent error: {str(e)}")

    def get_collection_memories(self, name: str) -> Result:
        try:
            records = self.store.get_by_collection_name(name)
            return Result(success=True, data=[public_dict(r) for r in records])
        except Exception as e:
            self.logger.error("Failed to load collection %s: %s", name, e)
            return Result(success=False, reason=f"Collection error: {str(e)}")

    def list_collections(self) -> Result:
        try:
            return Result(
                success=True, data=[c.to_dict() for c in self.store.get_all_collections()]
            )
        except Exception as e:
            self.logger.error("Failed to list collections: %s", e)
            return Result(success=False, reason=f"Collection error: {str(e)}")

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def update_memory(
        self,
        memory_id: str,
        content: str = None,
        summary: str = None,
        topics: List[str] = None,
        mood: List[str] = None,
        collection: str = None,
        importance: float = None,
    ) -> Result:
        """
        Edit a memory's content or metadata.

        Changes to content, summary, topics or mood re-embed the memory.
        """
        try:
            with self.store.record_lock(memory_id):
                record = self.store.get(memory_id)
                if record is None:
                    return Result(success=False, reason="Memory not found")

                meta = record.metadata
                if content is not None:
                    record.content = content
                if summary is not None:
                    meta.summary = summary
                if topics is not None:
                    meta.topics = list(topics)
                if mood is not None:
                    meta.mood = list(mood)
                if collection is not None:
                    meta.collection = collection.strip() or None
                if importance is not None:
                    meta.importance = clamp_importance(importance)

                if any(v is not None for v in (content, summary, topics, mood)):
                    embedding = self.provider.embed(embedding_text(record.content, meta))
                    if embedding:
                        record.embedding = embedding

                self.store.put(record, token_count=self._count_tokens(record.content))

            if collection is not None:
                self.update_collections([record])

            self.logger.info("Memory updated successfully: %s", memory_id)
            return Result(success=True, data=[public_dict(record)])

        except Exception as e:
            self.logger.error("Failed to update memory: %s", e)
            return Result(success=False, reason=f"Update error: {str(e)}")

    def delete_memory(self, memory_id: str) -> Result:
        """
        Delete a memory and unlink it from every memory that references it.

        Collections keep the id; they are never compacted.
        """
        try:
            if not self.store.delete(memory_id):
                return Result(success=False, reason="Memory not found")

            def _unlink(rec: MemoryRecord) -> MemoryRecord:
                rec.metadata.related_memory_ids = [
                    rid for rid in rec.metadata.related_memory_ids if rid != memory_id
                ]
                return rec

            for other in self.store.get_all():
                if memory_id not in other.metadata.related_memory_ids:
                    continue
                try:
                    self.store.patch(other.id, _unlink)
                except Exception as e:
                    self.logger.error("Failed to unlink %s from %s: %s", memory_id, other.id, e)

            self.logger.info("Memory deleted successfully: %s", memory_id)
            return Result(success=True, data=[{"id": memory_id, "deleted": True}])

        except Exception as e:
            self.logger.error("Failed to delete memory: %s", e)
            return Result(success=False, reason=f"Delete error: {str(e)}")

    def update_collections(self, memories: Optional[List[MemoryRecord]] = None) -> Result:
        """
        Derive collections from memory metadata.

        Existing collections gain any new ids (union, never shrinking); new
        collection names get a fresh collection. Each save is independent.
        """
        try:
            if memories is None:
                memories = self.store.get_all()

            grouped: "OrderedDict[str, List[str]]" = OrderedDict()
            for memory in memories:
                grouped.setdefault(memory.metadata.collection_name, []).append(memory.id)

            saved, failed = [], []
            for name, memory_ids in grouped.items():
                try:
                    existing = self.store.get_collection_by_name(name)
                    if existing:
                        merged = list(dict.fromkeys(existing.memory_ids + memory_ids))
                        if merged == existing.memory_ids:
                            continue
                        existing.memory_ids = merged
                        self.store.save_collection(existing)
                    else:
                        self.store.save_collection(
                            Collection(
                                id=str(uuid.uuid4()),
                                name=name,
                                memory_ids=list(dict.fromkeys(memory_ids)),
                                created_at=self.clock(),
                            )
                        )
                    saved.append(name)
                except Exception as e:
                    self.logger.error("Failed to save collection %s: %s", name, e)
                    failed.append(name)

            return Result(success=True, data=[{"saved": saved, "failed": failed}])

        except Exception as e:
            self.logger.error("Collection update failed: %s", e)
            return Result(success=False, reason=f"Collection error: {str(e)}")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def rebuild_vector_index(self) -> Result:
        """
        Re-embed every memory with the current embedding model.

        Needed after switching SECOND_BRAIN_EMBEDDING_MODEL, since vectors
        from different models are not comparable.
        """
        try:
            records = self.store.get_all(include_media=True)
            self.store.reset_vectors()

            reindexed, missing = 0, []
            for record in records:
                record.embedding = self.provider.embed(
                    embedding_text(record.content, record.metadata)
                )
                if not record.embedding:
                    missing.append(record.id)
                self.store.put(record)
                reindexed += 1

            if missing:
                self.logger.warning("%d memories could not be re-embedded", len(missing))
            return Result(
                success=True,
                data=[
                    {
                        "reindexed": reindexed,
                        "vectors": self.store.vector_count(),
                        "without_embedding": missing,
                    }
                ],
            )
        except Exception as e:
            self.logger.error("Reindex failed: %s", e)
            return Result(success=False, reason=str(e))

    def get_statistics(self) -> Result:
        """Get memory system statistics"""
        try:
            stats = self.store.summary_stats()
            memories = self.store.get_all()
            importances = [m.metadata.importance_score for m in memories]

            sqlite_size = (
                self.store.sqlite_path.stat().st_size
                if self.store.sqlite_path.exists()
                else 0
            )
            chroma_size = sum(
                f.stat().st_size for f in self.store.chroma_path.rglob("*") if f.is_file()
            ) if self.store.chroma_path.exists() else 0

            stats.update(
                {
                    "avg_importance": round(sum(importances) / len(importances), 2)
                    if importances
                    else 0,
                    "vectors": self.store.vector_count(),
                    "storage_size_mb": round((sqlite_size + chroma_size) / 1024 / 1024, 2),
                    "sqlite_size_mb": round(sqlite_size / 1024 / 1024, 2),
                    "chroma_size_mb": round(chroma_size / 1024 / 1024, 2),
                }
            )
            return Result(success=True, data=[stats])

        except Exception as e:
            self.logger.error("Failed to get statistics: %s", e)
            return Result(success=False, reason=f"Statistics error: {str(e)}")

    def _maybe_backup(self):
        """Trigger backup if conditions are met"""
        try:
            last_backup = None
            raw = self.store.get_stat("last_backup")
            if raw:
                try:
                    last_backup = datetime.fromisoformat(raw.replace("Z", "+00:00"))
                except ValueError:
                    last_backup = None
                if last_backup is not None and last_backup.tzinfo is None:
                    last_backup = last_backup.replace(tzinfo=timezone.utc)

            if last_backup is None:
                # first run: start the interval now rather than backing up an empty store
                self.store.set_stat("last_backup", datetime.now(timezone.utc).isoformat())
                return

            hours_since_backup = (
                datetime.now(timezone.utc) - last_backup
            ).total_seconds() / 3600.0
            total_memories = self.store.count()

            if hours_since_backup > BACKUP_INTERVAL_HOURS or (
                total_memories > 0 and total_memories % BACKUP_EVERY_N_MEMORIES == 0
            ):
                self.create_backup()

        except Exception as e:
            self.logger.error("Backup check failed: %s", e)

    def create_backup(self) -> Result:
        """Create a complete backup of the memory system"""
        try:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            backup_name = f"memory_backup_{timestamp}"
            backup_path = self.backup_folder / backup_name
            backup_path.mkdir(exist_ok=True)

            try:
                self.store.checkpoint()
            except Exception as e:
                self.logger.error("Checkpoint failed: %s", e)
                # continue; the WAL files are copied below

            shutil.copy2(self.store.sqlite_path, backup_path / "memories.db")
            for suffix in ("-wal", "-shm"):
                extra = Path(str(self.store.sqlite_path) + suffix)
                if extra.exists():
                    shutil.copy2(extra, backup_path / f"memories.db{suffix}")

            if self.store.chroma_path.exists():
                shutil.copytree(self.store.chroma_path, backup_path / "chroma_db")

            memories = self.store.export_rows()
            collections = [c.to_dict() for c in self.store.get_all_collections()]
            with open(backup_path / "memories_export.json", "w", encoding="utf-8") as f:
                json.dump(
                    {
                        "export_timestamp": datetime.now(timezone.utc).isoformat(),
                        "total_memories": len(memories),
                        "memories": memories,
                        "collections": collections,
                    },
                    f,
                    indent=2,
                    ensure_ascii=False,
                )

            self.store.set_stat("last_backup", datetime.now(timezone.utc).isoformat())

            backups = sorted(
                [d for d in self.backup_folder.iterdir() if d.is_dir()],
                key=lambda x: x.stat().st_mtime,
                reverse=True,
            )
            for old_backup in backups[BACKUP_KEEP:]:
                shutil.rmtree(old_backup)

            self.logger.warning(
                "Backup created successfully: %s (memories: %d)", backup_name, len(memories)
            )
            return Result(
                success=True,
                data=[
                    {
                        "backup_name": backup_name,
                        "backup_path": str(backup_path),
                        "memories_backed_up": len(memories),
                    }
                ],
            )

        except Exception as e:
            self.logger.error("Backup failed: %s", e)
            return Result(success=False, reason=f"Backup error: {str(e)}")

    def close(self):
        """Clean shutdown of the memory system"""
        try:
            self.store.close()
        except Exception as e:
            self.logger.warning("Store close failed: %s", e)
        self.provider.embedding_model = None
        self.logger.info("Memory system closed successfully")
