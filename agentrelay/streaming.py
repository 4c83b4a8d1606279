import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from .schemas import AgentTask, StreamChunk, generate_id


logger = logging.getLogger("uvicorn.error")


class Connection(Protocol):
    async def send_text(self, data: str) -> None:
        ...


class SessionRegistry:
    """Open client connections for one conversation, keyed by connection."""

    def __init__(self) -> None:
        self._sessions: Dict[Any, str] = {}

    def open(self, connection: Connection) -> str:
        session_id = generate_id("session")
        self._sessions[connection] = session_id
        return session_id

    def close(self, connection: Connection) -> Optional[str]:
        return self._sessions.pop(connection, None)

    def session_id(self, connection: Connection) -> Optional[str]:
        return self._sessions.get(connection)

    def __contains__(self, connection: object) -> bool:
        return connection in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


def split_tokens(text: str) -> List[str]:
    """Split on single spaces, keeping the separator on every piece but the last.

    ``"".join(split_tokens(text)) == text`` holds for any input.
    """
    words = text.split(" ")
    last = len(words) - 1
    return [word + (" " if idx < last else "") for idx, word in enumerate(words)]


class StreamingResponder:
    """Writes lifecycle and token chunks to a client connection.

    Delivery failures are logged and swallowed; a closed socket never breaks a turn.
    """

    def __init__(self, token_delay_ms: int = 50):
        self.token_delay_ms = token_delay_ms

    async def send(self, connection: Connection, chunk: StreamChunk) -> bool:
        try:
            await connection.send_text(chunk.to_wire())
            return True
        except Exception as exc:
            logger.warning("Failed to send %s chunk: %s", chunk.type, exc)
            return False

    async def agent_start(self, connection: Connection, task: AgentTask) -> bool:
        return await self.send(
            connection,
            StreamChunk(type="agent_start", data={"taskId": task.id, "agentType": task.type}),
        )

    async def agent_complete(self, connection: Connection, task_id: str, result: Any, status: str) -> bool:
        return await self.send(
            connection,
            StreamChunk(type="agent_complete", data={"taskId": task_id, "result": result, "status": status}),
        )

    async def error(self, connection: Connection, message: str) -> bool:
        return await self.send(connection, StreamChunk(type="error", data={"error": message}))

    async def done(self, connection: Connection, execution_time_ms: int) -> bool:
        return await self.send(connection, StreamChunk(type="done", data={"executionTimeMs": execution_time_ms}))

    async def stream_text(self, connection: Connection, text: str) -> int:
        sent = 0
        for token in split_tokens(text):
            await self.send(connection, StreamChunk(type="token", data=token))
            sent += 1
            if self.token_delay_ms > 0:
                await asyncio.sleep(self.token_delay_ms / 1000)
        return sent
