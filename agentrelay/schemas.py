import random
import string
import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


MessageRole = Literal["user", "assistant", "system"]
AgentType = Literal["research", "analysis", "code", "synthesis"]
TaskStatus = Literal["pending", "running", "completed", "failed"]
ChunkType = Literal["agent_start", "agent_complete", "token", "done", "error"]

TERMINAL_STATUSES = {"completed", "failed"}

_ID_ALPHABET = string.digits + string.ascii_lowercase


def now_ms() -> int:
    return int(time.time() * 1000)


def _base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ID_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_id(prefix: str = "") -> str:
    stamp = _base36(now_ms())
    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"{prefix}_{stamp}_{suffix}" if prefix else f"{stamp}_{suffix}"


class Message(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("msg"))
    role: MessageRole
    content: str
    timestamp: int = Field(default_factory=now_ms)
    metadata: Optional[Dict[str, Any]] = None

    model_config = {"frozen": True}


class AgentTask(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("task"))
    type: AgentType
    input: str
    priority: int
    status: TaskStatus = "pending"
    result: Optional[str] = None
    error: Optional[str] = None
    start_time: Optional[int] = Field(default=None, alias="startTime")
    end_time: Optional[int] = Field(default=None, alias="endTime")

    model_config = {"populate_by_name": True}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ConversationContext(BaseModel):
    conversation_id: str = Field(alias="conversationId")
    user_id: str = Field(alias="userId")
    messages: List[Message] = Field(default_factory=list)
    tasks: List[AgentTask] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class AgentResponse(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None
    tokens_used: Optional[int] = Field(default=None, alias="tokensUsed")
    duration_ms: Optional[int] = Field(default=None, alias="durationMs")

    model_config = {"populate_by_name": True}


class StreamChunk(BaseModel):
    type: ChunkType
    data: Any = None
    timestamp: int = Field(default_factory=now_ms)

    def to_wire(self) -> str:
        return self.model_dump_json()


class ClientMessage(BaseModel):
    type: str
    content: str = ""

    model_config = {"extra": "allow"}


class SearchResult(BaseModel):
    title: str
    url: str
    snippet: str
    published_date: Optional[str] = Field(default=None, alias="publishedDate")

    model_config = {"populate_by_name": True}


class VectorMetadata(BaseModel):
    conversation_id: str = Field(alias="conversationId")
    message_id: str = Field(alias="messageId")
    role: str = "user"
    timestamp: int = 0

    model_config = {"populate_by_name": True}


class VectorDocument(BaseModel):
    id: str
    text: str
    score: float = 0.0
    metadata: VectorMetadata
