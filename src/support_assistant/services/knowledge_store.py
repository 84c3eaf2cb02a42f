"""Knowledge-base storage and vector search with SQLite and sqlite-vec."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path

import sqlite_vec
from loguru import logger
from openai import AzureOpenAI
from sqlite_vec import serialize_float32

from support_assistant.application.exceptions import KnowledgeBaseError
from support_assistant.config import Settings, get_settings
from support_assistant.domain.models import (
    KnowledgeBaseEntry,
    KnowledgeBaseEntryCreate,
    KnowledgeBaseEntryUpdate,
    RawKnowledgeHit,
    SearchFilters,
)

# Mirrored into vec_entries as vec0 metadata columns
_FILTER_COLUMNS = ("category", "priority", "product_type")

# vec0 metadata columns cannot hold NULL
_NO_PRODUCT = ""


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


class SqliteKnowledgeStore:
    """Stores support articles and answers filtered nearest-neighbour queries.

    Articles live in ``kb_entries``.  Their embeddings live in the
    ``vec_entries`` vec0 virtual table together with copies of the filterable
    fields, so category/priority/product filters are evaluated inside the KNN
    scan rather than on a truncated candidate list.  Relevance is derived
    from the L2 distance as ``1 / (1 + distance)``.
    """

    def __init__(
        self,
        db_path: Path,
        embedding_client: AzureOpenAI,
        embedding_deployment: str,
        embedding_dimensions: int = 1536,
    ) -> None:
        self.db_path = db_path
        self.embedding_client = embedding_client
        self.embedding_deployment = embedding_deployment
        self.embedding_dimensions = embedding_dimensions
        self.conn: sqlite3.Connection | None = None
        self._db_lock = threading.Lock()

    def connect(self) -> None:
        """Open the database, load the vector extension and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.enable_load_extension(True)
        sqlite_vec.load(self.conn)
        self.conn.enable_load_extension(False)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("Knowledge base DB ready at {}", self.db_path)

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def _create_tables(self) -> None:
        assert self.conn
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS kb_entries (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                category TEXT NOT NULL,
                priority TEXT NOT NULL,
                product_type TEXT,
                tags TEXT DEFAULT '[]',
                last_updated TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_kb_entries_category ON kb_entries(category);
            """
        )
        self.conn.execute(
            f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS vec_entries USING vec0(
                entry_id TEXT PRIMARY KEY,
                embedding FLOAT[{self.embedding_dimensions}],
                category TEXT,
                priority TEXT,
                product_type TEXT
            )
            """
        )
        self.conn.commit()

    async def _run(self, fn, *args):
        def _locked():
            with self._db_lock:
                return fn(*args)

        return await asyncio.to_thread(_locked)

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def embed_text(self, text: str) -> list[float]:
        """Generate an embedding vector for a piece of text."""
        response = self.embedding_client.embeddings.create(
            input=text,
            model=self.embedding_deployment,
            dimensions=self.embedding_dimensions,
        )
        return [float(x) for x in response.data[0].embedding]

    async def _embed_entry(self, title: str, content: str) -> list[float]:
        return await asyncio.to_thread(self.embed_text, f"{title}\n{content}")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: str, filters: SearchFilters) -> list[RawKnowledgeHit]:
        """Return hits at or above the relevance threshold matching all filters."""
        embedding = await asyncio.to_thread(self.embed_text, query)
        return await self._run(self._search_sync, embedding, filters)

    def _search_sync(self, embedding: list[float], filters: SearchFilters) -> list[RawKnowledgeHit]:
        if not self.conn:
            raise RuntimeError("Not connected")

        # constraints on v.* columns are applied by vec0 while it ranks
        clauses = ["v.embedding MATCH ?", "v.k = ?"]
        params: list = [serialize_float32(embedding), filters.limit]
        for column in _FILTER_COLUMNS:
            value = getattr(filters, column)
            if value:
                clauses.append(f"v.{column} = ?")
                params.append(value)

        rows = self.conn.execute(
            f"""
            SELECT e.*, v.distance
            FROM vec_entries v
            JOIN kb_entries e ON v.entry_id = e.id
            WHERE {" AND ".join(clauses)}
            ORDER BY v.distance
            """,
            params,
        ).fetchall()

        hits: list[RawKnowledgeHit] = []
        for row in rows:
            relevance = 1 / (1 + row["distance"])
            if relevance < filters.relevance_threshold:
                # rows are ordered by distance, nothing further can qualify
                break
            hits.append(
                RawKnowledgeHit(
                    id=row["id"],
                    chunk_id=row["id"],
                    chunk_content=row["content"],
                    metadata=self._row_metadata(row),
                    relevance=relevance,
                    distance=row["distance"],
                )
            )
        return hits

    @staticmethod
    def _row_metadata(row: sqlite3.Row) -> str:
        return json.dumps(
            {
                "title": row["title"],
                "content": row["content"],
                "category": row["category"],
                "priority": row["priority"],
                "product_type": row["product_type"],
                "tags": json.loads(row["tags"] or "[]"),
                "last_updated": row["last_updated"],
            }
        )

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def add_entry(self, entry: KnowledgeBaseEntryCreate) -> KnowledgeBaseEntry:
        """Insert a new article and index its embedding.

        Raises:
            KnowledgeBaseError: If embedding or storage fails.
        """
        entry_id = f"kb_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        now = _utcnow()
        try:
            embedding = await self._embed_entry(entry.title, entry.content)
            await self._run(self._insert_entry, entry_id, entry, embedding, now)
        except Exception as exc:
            logger.error("Adding KB entry failed: {}", exc)
            raise KnowledgeBaseError(f"Failed to add knowledge base entry: {exc}") from exc

        logger.info("Added KB entry {} ({})", entry_id, entry.category)
        return KnowledgeBaseEntry(
            id=entry_id,
            title=entry.title,
            content=entry.content,
            category=entry.category,
            priority=entry.priority,
            product_type=entry.product_type,
            tags=entry.tags,
            last_updated=datetime.fromisoformat(now),
        )

    async def update_entry(self, entry_id: str, updates: KnowledgeBaseEntryUpdate) -> bool:
        """Apply a partial update. Returns False if the entry does not exist."""
        fields = {
            column: value
            for column, value in updates.model_dump(exclude_unset=True).items()
            if value is not None or column == "product_type"
        }
        try:
            current = await self._run(self._select_entry, entry_id)
            if current is None:
                return False

            embedding = None
            if "title" in fields or "content" in fields:
                embedding = await self._embed_entry(
                    fields.get("title") or current["title"],
                    fields.get("content") or current["content"],
                )

            await self._run(self._update_entry, entry_id, fields, embedding)
        except Exception as exc:
            logger.error("Updating KB entry {} failed: {}", entry_id, exc)
            raise KnowledgeBaseError(f"Failed to update knowledge base entry: {exc}") from exc

        logger.info("Updated KB entry {} fields={}", entry_id, sorted(fields))
        return True

    async def delete_entry(self, entry_id: str) -> bool:
        try:
            deleted = await self._run(self._delete_entry, entry_id)
        except (sqlite3.Error, RuntimeError) as exc:
            raise KnowledgeBaseError(f"Failed to delete knowledge base entry: {exc}") from exc
        if deleted:
            logger.info("Deleted KB entry {}", entry_id)
        return deleted

    async def get_entry(self, entry_id: str) -> KnowledgeBaseEntry | None:
        try:
            row = await self._run(self._select_entry, entry_id)
        except (sqlite3.Error, RuntimeError) as exc:
            raise KnowledgeBaseError(f"Failed to read knowledge base entry: {exc}") from exc
        if row is None:
            return None
        return KnowledgeBaseEntry(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            category=row["category"],
            priority=row["priority"],
            product_type=row["product_type"],
            tags=json.loads(row["tags"] or "[]"),
            last_updated=datetime.fromisoformat(row["last_updated"]),
        )

    async def get_categories(self) -> list[str]:
        try:
            rows = await self._run(
                self._fetchall, "SELECT DISTINCT category FROM kb_entries ORDER BY category"
            )
        except (sqlite3.Error, RuntimeError) as exc:
            raise KnowledgeBaseError(f"Failed to list categories: {exc}") from exc
        return [row["category"] for row in rows]

    async def get_stats(self) -> dict:
        """Return entry totals broken down by category and priority."""
        try:
            total = await self._run(self._fetchall, "SELECT COUNT(*) AS total FROM kb_entries")
            by_category = await self._run(
                self._fetchall,
                "SELECT category, COUNT(*) AS count FROM kb_entries GROUP BY category",
            )
            by_priority = await self._run(
                self._fetchall,
                "SELECT priority, COUNT(*) AS count FROM kb_entries GROUP BY priority",
            )
        except (sqlite3.Error, RuntimeError) as exc:
            raise KnowledgeBaseError(f"Failed to compute knowledge base stats: {exc}") from exc
        return {
            "total_entries": total[0]["total"],
            "by_category": {row["category"]: row["count"] for row in by_category},
            "by_priority": {row["priority"]: row["count"] for row in by_priority},
        }

    # ------------------------------------------------------------------
    # Blocking helpers
    # ------------------------------------------------------------------

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        if not self.conn:
            raise RuntimeError("Not connected")
        return self.conn.execute(sql, params).fetchall()

    def _select_entry(self, entry_id: str) -> sqlite3.Row | None:
        if not self.conn:
            raise RuntimeError("Not connected")
        return self.conn.execute("SELECT * FROM kb_entries WHERE id = ?", (entry_id,)).fetchone()

    def _insert_vector(self, entry_id: str, embedding: bytes, row: dict) -> None:
        assert self.conn
        self.conn.execute(
            "INSERT INTO vec_entries (entry_id, embedding, category, priority, product_type) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                entry_id,
                embedding,
                row["category"],
                row["priority"],
                row["product_type"] or _NO_PRODUCT,
            ),
        )

    def _insert_entry(
        self,
        entry_id: str,
        entry: KnowledgeBaseEntryCreate,
        embedding: list[float],
        now: str,
    ) -> None:
        if not self.conn:
            raise RuntimeError("Not connected")
        with self.conn:
            self.conn.execute(
                "INSERT INTO kb_entries "
                "(id, title, content, category, priority, product_type, tags, last_updated) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry_id,
                    entry.title,
                    entry.content,
                    entry.category,
                    entry.priority,
                    entry.product_type,
                    json.dumps(entry.tags),
                    now,
                ),
            )
            self._insert_vector(entry_id, serialize_float32(embedding), entry.model_dump())

    def _update_entry(self, entry_id: str, fields: dict, embedding: list[float] | None) -> None:
        if not self.conn:
            raise RuntimeError("Not connected")
        if "tags" in fields:
            fields["tags"] = json.dumps(fields["tags"] or [])
        fields["last_updated"] = _utcnow()

        assignments = ", ".join(f"{column} = ?" for column in fields)
        with self.conn:
            self.conn.execute(
                f"UPDATE kb_entries SET {assignments} WHERE id = ?",
                (*fields.values(), entry_id),
            )
            if embedding is None and not any(column in fields for column in _FILTER_COLUMNS):
                return

            # re-index the vector row so its metadata columns follow the entry
            if embedding is None:
                (vector,) = self.conn.execute(
                    "SELECT embedding FROM vec_entries WHERE entry_id = ?", (entry_id,)
                ).fetchone()
            else:
                vector = serialize_float32(embedding)
            row = self.conn.execute(
                "SELECT category, priority, product_type FROM kb_entries WHERE id = ?",
                (entry_id,),
            ).fetchone()
            self.conn.execute("DELETE FROM vec_entries WHERE entry_id = ?", (entry_id,))
            self._insert_vector(entry_id, vector, dict(row))

    def _delete_entry(self, entry_id: str) -> bool:
        if not self.conn:
            raise RuntimeError("Not connected")
        with self.conn:
            self.conn.execute("DELETE FROM vec_entries WHERE entry_id = ?", (entry_id,))
            cursor = self.conn.execute("DELETE FROM kb_entries WHERE id = ?", (entry_id,))
        return cursor.rowcount > 0


def create_knowledge_store(settings: Settings | None = None) -> SqliteKnowledgeStore:
    """Build an unconnected knowledge store with an Azure OpenAI embedding client."""
    s = settings or get_settings()
    embedding_client = AzureOpenAI(
        api_key=s.azure_openai_embedding_api_key,
        azure_endpoint=s.azure_openai_embedding_endpoint,
        api_version=s.azure_openai_embedding_api_version,
    )
    return SqliteKnowledgeStore(
        db_path=s.kb_db_path,
        embedding_client=embedding_client,
        embedding_deployment=s.azure_openai_embedding_deployment,
        embedding_dimensions=s.embedding_dimensions,
    )
