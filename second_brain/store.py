"""
Content store for memories and collections.

Hybrid storage: SQLite holds the records, collections and bookkeeping;
ChromaDB holds the embedding vectors keyed by memory id.
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional
import hashlib
import json
import logging
import sqlite3
import threading

import chromadb
from chromadb.config import Settings

from .config import CHROMA_COLLECTION_NAME, DEFAULT_COLLECTION
from .models import AIMetadata, Collection, MemoryRecord, now_ms

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

# list reads skip the base64 payload; get() loads it
LIST_COLUMNS = (
    "id, type, content, metadata, created_at, last_resurfaced, resurface_count, "
    "media_payload IS NOT NULL AS has_media"
)


def content_hash(content: str) -> str:
    """Content hash for duplicate detection"""
    return hashlib.sha256(content.encode()).hexdigest()


class MemoryStore:
    """
    Durable store of memory records and collections.

    All SQL access goes through one connection guarded by a lock; patch()
    additionally serialises read-modify-write cycles per memory id so that
    concurrent link / resurfacing updates never lose each other's writes.
    """

    def __init__(self, db_folder: Path, chroma_client=None):
        self.db_folder = Path(db_folder)
        self.db_folder.mkdir(parents=True, exist_ok=True)
        self.sqlite_path = self.db_folder / "memories.db"
        self.chroma_path = self.db_folder / "chroma_db"

        self._conn_lock = threading.RLock()
        self._record_locks: Dict[str, threading.Lock] = {}
        self._record_locks_guard = threading.Lock()

        self.sqlite_conn = None
        self.chroma_client = chroma_client
        self.chroma_collection = None

        self._init_sqlite()
        self._init_chromadb()

    def _init_sqlite(self):
        """Initialize SQLite database for structured data"""
        try:
            self.sqlite_conn = sqlite3.connect(
                str(self.sqlite_path), check_same_thread=False, timeout=30.0
            )
            self.sqlite_conn.row_factory = sqlite3.Row

            self.sqlite_conn.execute("PRAGMA journal_mode=WAL;")
            self.sqlite_conn.execute("PRAGMA wal_autocheckpoint=500;")
            # synchronous=FULL: WAL data reaches disk before a write returns
            self.sqlite_conn.execute("PRAGMA synchronous=FULL;")
            self.sqlite_conn.commit()

            self.sqlite_conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL DEFAULT 'note',
                    content TEXT NOT NULL,
                    media_payload TEXT,
                    metadata TEXT,  -- JSON object
                    collection TEXT NOT NULL DEFAULT 'General',
                    created_at INTEGER NOT NULL,  -- ms since epoch
                    last_resurfaced INTEGER,
                    resurface_count INTEGER DEFAULT 0,
                    content_hash TEXT,
                    token_count INTEGER DEFAULT 0,
                    updated_at INTEGER
                );

                CREATE INDEX IF NOT EXISTS idx_created_at ON memories(created_at);
                CREATE INDEX IF NOT EXISTS idx_collection ON memories(collection);
                CREATE INDEX IF NOT EXISTS idx_content_hash ON memories(content_hash);

                CREATE TABLE IF NOT EXISTS collections (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    description TEXT,
                    memory_ids TEXT,  -- JSON array
                    color TEXT,
                    created_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_collections_created_at ON collections(created_at);

                CREATE TABLE IF NOT EXISTS memory_stats (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                );
            """
            )

            self.sqlite_conn.execute(
                "INSERT OR REPLACE INTO memory_stats (key, value, updated_at)"
                "VALUES ('schema_version', ?, CURRENT_TIMESTAMP)",
                (SCHEMA_VERSION,),
            )
            self.sqlite_conn.commit()
            logger.info("SQLite database initialized at %s", self.sqlite_path)

        except Exception as e:
            logger.error("Failed to initialize SQLite: %s", e)
            raise

    def _init_chromadb(self):
        """Initialize ChromaDB for vector storage"""
        try:
            if self.chroma_client is None:
                self.chroma_client = chromadb.PersistentClient(
                    path=str(self.chroma_path),
                    settings=Settings(anonymized_telemetry=False, allow_reset=True),
                )
            self.chroma_collection = self._get_or_create_collection()
            logger.info("ChromaDB initialized successfully")

        except Exception as e:
            logger.error("Failed to initialize ChromaDB: %s", e)
            raise

    def _get_or_create_collection(self):
        return self.chroma_client.get_or_create_collection(
            name=CHROMA_COLLECTION_NAME,
            metadata={
                "description": "Second Brain memory embeddings",
                "hnsw:space": "cosine",
            },
            embedding_function=None,  # embeddings are always passed in
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _row_to_record(self, row, embedding: Optional[List[float]] = None) -> MemoryRecord:
        if "media_payload" in row.keys():
            payload, omitted = row["media_payload"], False
        else:
            payload, omitted = None, bool(row["has_media"])
        return MemoryRecord(
            id=row["id"],
            type=row["type"],
            content=row["content"],
            metadata=AIMetadata.from_dict(json.loads(row["metadata"] or "{}")),
            embedding=embedding or [],
            created_at=row["created_at"],
            media_payload=payload,
            last_resurfaced=row["last_resurfaced"],
            resurface_count=row["resurface_count"] or 0,
            media_omitted=omitted,
        )

    def _vectors_for(self, ids: List[str]) -> Dict[str, List[float]]:
        if not ids:
            return {}
        result = self.chroma_collection.get(ids=ids, include=["embeddings"])
        embeddings = result.get("embeddings")
        if embeddings is None:
            return {}
        return {
            mid: [float(x) for x in emb]
            for mid, emb in zip(result["ids"], embeddings)
            if emb is not None
        }

    def put(
        self,
        record: MemoryRecord,
        token_count: Optional[int] = None,
        update_vector: bool = True,
    ):
        """
        Insert or update a record.

        SQLite is written first and only committed once the vector write
        succeeds; a ChromaDB failure rolls the SQLite write back and
        re-raises, so the two stores stay in sync.
        """
        if record.media_omitted:
            raise ValueError(
                f"Memory {record.id} was loaded without its media payload; "
                "load it with get() before writing it back"
            )
        now = now_ms()
        with self._conn_lock:
            try:
                self.sqlite_conn.execute(
                    """
                    INSERT INTO memories
                    (id, type, content, media_payload, metadata, collection, created_at,
                     last_resurfaced, resurface_count, content_hash, token_count, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        type = excluded.type,
                        content = excluded.content,
                        media_payload = excluded.media_payload,
                        metadata = excluded.metadata,
                        collection = excluded.collection,
                        created_at = excluded.created_at,
                        last_resurfaced = excluded.last_resurfaced,
                        resurface_count = excluded.resurface_count,
                        content_hash = excluded.content_hash,
                        token_count = COALESCE(excluded.token_count, memories.token_count),
                        updated_at = excluded.updated_at
                """,
                    (
                        record.id,
                        record.type,
                        record.content,
                        record.media_payload,
                        json.dumps(record.metadata.to_dict()),
                        record.metadata.collection_name,
                        record.created_at,
                        record.last_resurfaced,
                        record.resurface_count,
                        content_hash(record.content),
                        token_count,
                        now,
                    ),
                )

                if update_vector:
                    if record.embedding:
                        self.chroma_collection.upsert(
                            ids=[record.id],
                            embeddings=[list(record.embedding)],
                            metadatas=[
                                {
                                    "type": record.type,
                                    "collection": record.metadata.collection_name,
                                    "created_at": record.created_at,
                                }
                            ],
                        )
                    else:
                        self.chroma_collection.delete(ids=[record.id])

                self.sqlite_conn.commit()
            except Exception:
                self.sqlite_conn.rollback()
                raise

    def get(self, memory_id: str) -> Optional[MemoryRecord]:
        with self._conn_lock:
            row = self.sqlite_conn.execute(
                "SELECT * FROM memories WHERE id = ?", (memory_id,)
            ).fetchone()
            if not row:
                return None
            vectors = self._vectors_for([memory_id])
        return self._row_to_record(row, vectors.get(memory_id))

    def _query_records(self, sql: str, params=()) -> List[MemoryRecord]:
        with self._conn_lock:
            rows = self.sqlite_conn.execute(sql, params).fetchall()
            vectors = self._vectors_for([row["id"] for row in rows])
        return [self._row_to_record(row, vectors.get(row["id"])) for row in rows]

    def get_all(self, include_media: bool = False) -> List[MemoryRecord]:
        """
        Every memory, newest first.

        Media payloads are left out unless ``include_media`` is set; such
        records report has_media but cannot be written back with put().
        """
        columns = "*" if include_media else LIST_COLUMNS
        return self._query_records(f"SELECT {columns} FROM memories ORDER BY created_at DESC")

    def get_recent(self, limit: int = 20) -> List[MemoryRecord]:
        return self._query_records(
            f"SELECT {LIST_COLUMNS} FROM memories ORDER BY created_at DESC LIMIT ?", (limit,)
        )

    def get_by_collection_name(self, name: str) -> List[MemoryRecord]:
        """Memories whose collection (default "General") equals ``name``, newest first."""
        return self._query_records(
            f"SELECT {LIST_COLUMNS} FROM memories WHERE collection = ? ORDER BY created_at DESC",
            (name or DEFAULT_COLLECTION,),
        )

    def find_by_content_hash(self, digest: str) -> Optional[str]:
        with self._conn_lock:
            row = self.sqlite_conn.execute(
                "SELECT id FROM memories WHERE content_hash = ?", (digest,)
            ).fetchone()
        return row["id"] if row else None

    def delete(self, memory_id: str) -> bool:
        with self._conn_lock:
            try:
                cursor = self.sqlite_conn.execute(
                    "DELETE FROM memories WHERE id = ?", (memory_id,)
                )
                if cursor.rowcount == 0:
                    self.sqlite_conn.rollback()
                    return False
                self.chroma_collection.delete(ids=[memory_id])
                self.sqlite_conn.commit()
            except Exception:
                self.sqlite_conn.rollback()
                raise
        with self._record_locks_guard:
            self._record_locks.pop(memory_id, None)
        return True

    def record_lock(self, memory_id: str) -> threading.Lock:
        """Lock serialising read-modify-write cycles on one record."""
        with self._record_locks_guard:
            lock = self._record_locks.get(memory_id)
            if lock is None:
                lock = self._record_locks[memory_id] = threading.Lock()
            return lock

    def patch(
        self, memory_id: str, fn: Callable[[MemoryRecord], MemoryRecord]
    ) -> Optional[MemoryRecord]:
        """
        Read a record, apply ``fn`` and write the result back.

        Runs under the record's own lock. The vector is left untouched.
        Returns the updated record, or ``None`` if the id does not exist.
        """
        with self.record_lock(memory_id):
            record = self.get(memory_id)
            if record is None:
                return None
            record = fn(record)
            self.put(record, update_vector=False)
            return record

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _row_to_collection(self, row) -> Collection:
        return Collection(
            id=row["id"],
            name=row["name"],
            memory_ids=json.loads(row["memory_ids"] or "[]"),
            created_at=row["created_at"],
            description=row["description"],
            color=row["color"],
        )

    def save_collection(self, collection: Collection):
        with self._conn_lock:
            try:
                self.sqlite_conn.execute(
                    """
                    INSERT OR REPLACE INTO collections
                    (id, name, description, memory_ids, color, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """,
                    (
                        collection.id,
                        collection.name,
                        collection.description,
                        json.dumps(collection.memory_ids),
                        collection.color,
                        collection.created_at,
                    ),
                )
                self.sqlite_conn.commit()
            except Exception:
                self.sqlite_conn.rollback()
                raise

    def get_all_collections(self) -> List[Collection]:
        with self._conn_lock:
            rows = self.sqlite_conn.execute(
                "SELECT * FROM collections ORDER BY created_at DESC"
            ).fetchall()
        return [self._row_to_collection(row) for row in rows]

    def get_collection_by_name(self, name: str) -> Optional[Collection]:
        with self._conn_lock:
            row = self.sqlite_conn.execute(
                "SELECT * FROM collections WHERE name = ?", (name,)
            ).fetchone()
        return self._row_to_collection(row) if row else None

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def count(self) -> int:
        with self._conn_lock:
            return self.sqlite_conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]

    def vector_count(self) -> int:
        return self.chroma_collection.count()

    def summary_stats(self) -> Dict:
        with self._conn_lock:
            stats = self.sqlite_conn.execute(
                """
                SELECT
                    COUNT(*) as total_memories,
                    MIN(created_at) as oldest_memory,
                    MAX(created_at) as newest_memory,
                    SUM(token_count) as total_tokens
                FROM memories
            """
            ).fetchone()
            type_breakdown = {
                row["type"]: row["count"]
                for row in self.sqlite_conn.execute(
                    "SELECT type, COUNT(*) as count FROM memories "
                    "GROUP BY type ORDER BY count DESC"
                ).fetchall()
            }
            collection_count = self.sqlite_conn.execute(
                "SELECT COUNT(*) FROM collections"
            ).fetchone()[0]
        return {
            "total_memories": stats["total_memories"],
            "oldest_memory": stats["oldest_memory"],
            "newest_memory": stats["newest_memory"],
            "total_tokens": stats["total_tokens"] or 0,
            "type_breakdown": type_breakdown,
            "collections": collection_count,
        }

    def get_stat(self, key: str) -> Optional[str]:
        with self._conn_lock:
            row = self.sqlite_conn.execute(
                "SELECT value FROM memory_stats WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_stat(self, key: str, value: str):
        with self._conn_lock:
            self.sqlite_conn.execute(
                "INSERT OR REPLACE INTO memory_stats (key, value, updated_at) "
                "VALUES (?, ?, CURRENT_TIMESTAMP)",
                (key, value),
            )
            self.sqlite_conn.commit()

    def export_rows(self) -> List[Dict]:
        """Plain dict rows (without vectors) for JSON export, oldest first."""
        with self._conn_lock:
            rows = self.sqlite_conn.execute(
                "SELECT * FROM memories ORDER BY created_at"
            ).fetchall()
        exported = []
        for row in rows:
            item = dict(row)
            item["metadata"] = json.loads(item["metadata"] or "{}")
            exported.append(item)
        return exported

    def reset_vectors(self):
        """Drop and recreate the vector collection."""
        try:
            self.chroma_client.delete_collection(CHROMA_COLLECTION_NAME)
        except Exception as e:
            logger.warning("Chroma drop collection warning: %s", e)
        self.chroma_collection = None
        self.chroma_collection = self._get_or_create_collection()

    def integrity_check(self) -> bool:
        """SQLite integrity check plus a record-count cross-check with ChromaDB."""
        try:
            with self._conn_lock:
                ic_result = self.sqlite_conn.execute("PRAGMA integrity_check;").fetchone()
            if ic_result and ic_result[0] != "ok":
                logger.error("SQLite integrity_check FAILED: %s", ic_result[0])
                return False

            # records without an embedding have no vector, so only more
            # vectors than rows indicates orphans
            sqlite_count = self.count()
            chroma_count = self.vector_count()
            logger.info("Integrity check: SQLite=%s, ChromaDB=%s", sqlite_count, chroma_count)
            if chroma_count > sqlite_count:
                logger.warning(
                    "ChromaDB holds more vectors (%d) than SQLite records (%d). "
                    "Run rebuild_vectors to resync.",
                    chroma_count,
                    sqlite_count,
                )
                return False
            return True

        except Exception as e:
            logger.error("Integrity check failed: %s", e)
            return False

    def checkpoint(self):
        """Merge the WAL into the main database file."""
        with self._conn_lock:
            self.sqlite_conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
            self.sqlite_conn.commit()

    def close(self):
        """Commit, checkpoint and close the SQLite connection"""
        if self.sqlite_conn is None:
            return
        with self._conn_lock:
            try:
                self.sqlite_conn.commit()
                self.sqlite_conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
            except sqlite3.Error as e:
                logger.warning("WAL checkpoint on close failed: %s", e)
            finally:
                self.sqlite_conn.close()
                self.sqlite_conn = None
        self.chroma_collection = None
        self.chroma_client = None
