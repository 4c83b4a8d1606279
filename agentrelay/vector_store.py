import json
import logging
from typing import List, Sequence

import aiosqlite
import numpy as np

from .llm import CompletionClient
from .schemas import Message, VectorDocument, VectorMetadata, generate_id


logger = logging.getLogger("uvicorn.error")

# Only a preview of each message is kept next to its vector.
STORED_CONTENT_CHARS = 500


def similarity_scores(query: Sequence[float], vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Cosine score of every stored vector against the query in one matrix pass.

    Vectors whose dimension differs from the query, and zero vectors, score 0.
    """
    query_vec = np.asarray(query, dtype=float)
    scores = np.zeros(len(vectors))
    same_dim = [idx for idx, vec in enumerate(vectors) if len(vec) == query_vec.size]
    if not same_dim or query_vec.size == 0:
        return scores
    matrix = np.asarray([vectors[idx] for idx in same_dim], dtype=float)
    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vec)
    dots = matrix @ query_vec
    with np.errstate(divide="ignore", invalid="ignore"):
        scores[same_dim] = np.where(denom > 0, dots / denom, 0.0)
    return scores


class VectorStore:
    """Message embeddings stored in SQLite with brute-force cosine search."""

    def __init__(self, path: str, llm: CompletionClient):
        self.path = path
        self.llm = llm

    async def init(self) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(
                """
                CREATE TABLE IF NOT EXISTS message_vectors(
                    id TEXT PRIMARY KEY,
                    conversation_id TEXT,
                    message_id TEXT,
                    role TEXT,
                    timestamp INTEGER,
                    content TEXT,
                    embedding_json TEXT
                );
                """
            )
            await db.commit()

    async def embed_message(self, conversation_id: str, message: Message) -> None:
        try:
            embedding = await self.llm.embed(message.content)
            async with aiosqlite.connect(self.path) as db:
                await db.execute(
                    "INSERT INTO message_vectors(id, conversation_id, message_id, role, timestamp, content, embedding_json) "
                    "VALUES (?,?,?,?,?,?,?)",
                    (
                        generate_id("vec"),
                        conversation_id,
                        message.id,
                        message.role,
                        message.timestamp,
                        message.content[:STORED_CONTENT_CHARS],
                        json.dumps(embedding),
                    ),
                )
                await db.commit()
        except Exception as exc:
            logger.warning("Embedding message %s failed: %s", message.id, exc)

    async def _rows(self, query: str, params: tuple = ()) -> List[aiosqlite.Row]:
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            await cursor.close()
            return rows

    def _to_document(self, row: aiosqlite.Row, score: float = 0.0) -> VectorDocument:
        return VectorDocument(
            id=row["id"],
            text=row["content"] or "",
            score=score,
            metadata=VectorMetadata(
                conversation_id=row["conversation_id"] or "",
                message_id=row["message_id"] or "",
                role=row["role"] or "user",
                timestamp=row["timestamp"] or 0,
            ),
        )

    async def search_similar(self, query: str, limit: int = 5) -> List[VectorDocument]:
        try:
            query_vec = await self.llm.embed(query)
            rows = await self._rows(
                "SELECT id, conversation_id, message_id, role, timestamp, content, embedding_json FROM message_vectors"
            )
        except Exception as exc:
            logger.warning("Vector search failed: %s", exc)
            return []
        vectors = [json.loads(row["embedding_json"] or "[]") for row in rows]
        scores = similarity_scores(query_vec, vectors)
        order = np.argsort(-scores, kind="stable")[:limit]
        return [self._to_document(rows[idx], float(scores[idx])) for idx in order]

    async def get_conversation_context(self, conversation_id: str, limit: int = 10) -> List[VectorDocument]:
        rows = await self._rows(
            "SELECT id, conversation_id, message_id, role, timestamp, content FROM message_vectors "
            "WHERE conversation_id=? ORDER BY timestamp ASC LIMIT ?",
            (conversation_id, limit),
        )
        return [self._to_document(row) for row in rows]
