import json
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from .errors import PersistenceError
from .schemas import ConversationContext, Message, generate_id, now_ms


class Database:
    """Relational store for conversations, messages and agent executions."""

    def __init__(self, path: str):
        self.path = path

    async def init(self) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(
                """
                PRAGMA journal_mode=WAL;
                CREATE TABLE IF NOT EXISTS conversations(
                    id TEXT PRIMARY KEY,
                    user_id TEXT,
                    created_at INTEGER,
                    updated_at INTEGER,
                    metadata TEXT
                );
                CREATE TABLE IF NOT EXISTS messages(
                    id TEXT PRIMARY KEY,
                    conversation_id TEXT,
                    role TEXT,
                    content TEXT,
                    created_at INTEGER,
                    metadata TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_messages_conversation
                    ON messages(conversation_id, created_at);
                CREATE TABLE IF NOT EXISTS agent_executions(
                    id TEXT PRIMARY KEY,
                    conversation_id TEXT,
                    agent_type TEXT,
                    input TEXT,
                    output TEXT,
                    duration_ms INTEGER,
                    tokens_used INTEGER,
                    created_at INTEGER,
                    status TEXT,
                    error TEXT
                );
                """
            )
            await db.commit()

    async def execute(self, query: str, params: Tuple[Any, ...] = ()) -> None:
        try:
            async with aiosqlite.connect(self.path) as db:
                await db.execute(query, params)
                await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(str(exc)) from exc

    async def fetchall(self, query: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            await cursor.close()
            return rows

    async def fetchone(self, query: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        rows = await self.fetchall(query, params)
        return rows[0] if rows else None

    async def create_conversation(self, user_id: str) -> str:
        conversation_id = generate_id("conv")
        now = now_ms()
        await self.execute(
            "INSERT INTO conversations(id, user_id, created_at, updated_at, metadata) VALUES (?,?,?,?,?)",
            (conversation_id, user_id, now, now, "{}"),
        )
        return conversation_id

    async def get_conversation(self, conversation_id: str) -> Optional[dict]:
        row = await self.fetchone(
            "SELECT id, user_id, created_at, updated_at, metadata FROM conversations WHERE id=?",
            (conversation_id,),
        )
        if not row:
            return None
        return {
            "id": row["id"],
            "user_id": row["user_id"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "metadata": json.loads(row["metadata"] or "{}"),
        }

    async def touch_conversation(self, conversation_id: str) -> None:
        await self.execute("UPDATE conversations SET updated_at=? WHERE id=?", (now_ms(), conversation_id))

    async def save_message(self, conversation_id: str, message: Message) -> None:
        await self.execute(
            "INSERT INTO messages(id, conversation_id, role, content, created_at, metadata) VALUES (?,?,?,?,?,?)",
            (
                message.id,
                conversation_id,
                message.role,
                message.content,
                message.timestamp,
                json.dumps(message.metadata or {}),
            ),
        )
        await self.touch_conversation(conversation_id)

    async def get_messages(self, conversation_id: str, limit: int = 50) -> List[Message]:
        # Newest `limit` messages, returned oldest first.
        rows = await self.fetchall(
            "SELECT id, role, content, created_at, metadata FROM messages "
            "WHERE conversation_id=? ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (conversation_id, limit),
        )
        messages = [
            Message(
                id=row["id"],
                role=row["role"],
                content=row["content"],
                timestamp=row["created_at"],
                metadata=json.loads(row["metadata"] or "{}") or None,
            )
            for row in rows
        ]
        messages.reverse()
        return messages

    async def save_agent_execution(
        self,
        conversation_id: str,
        agent_type: str,
        input_text: str,
        output: Optional[str],
        duration_ms: int,
        tokens_used: int,
        status: str,
        error: Optional[str],
    ) -> str:
        execution_id = generate_id("exec")
        await self.execute(
            "INSERT INTO agent_executions(id, conversation_id, agent_type, input, output, duration_ms, "
            "tokens_used, created_at, status, error) VALUES (?,?,?,?,?,?,?,?,?,?)",
            (
                execution_id,
                conversation_id,
                agent_type,
                input_text,
                output,
                duration_ms,
                tokens_used,
                now_ms(),
                status,
                error,
            ),
        )
        return execution_id

    async def list_agent_executions(self, conversation_id: str, limit: int = 200) -> List[Dict[str, Any]]:
        rows = await self.fetchall(
            "SELECT id, agent_type, input, output, duration_ms, tokens_used, created_at, status, error "
            "FROM agent_executions WHERE conversation_id=? ORDER BY created_at ASC, rowid ASC LIMIT ?",
            (conversation_id, limit),
        )
        return [dict(r) for r in rows]

    async def get_conversation_context(self, conversation_id: str) -> Optional[ConversationContext]:
        convo = await self.get_conversation(conversation_id)
        if not convo:
            return None
        messages = await self.get_messages(conversation_id)
        return ConversationContext(
            conversation_id=conversation_id,
            user_id=convo["user_id"],
            messages=messages,
            tasks=[],
            metadata=convo["metadata"],
        )
