import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from .db import Database
from .decomposer import decompose
from .errors import ProtocolError, WorkerError
from .schemas import AgentResponse, AgentTask, ClientMessage, ConversationContext, Message, now_ms
from .streaming import Connection, SessionRegistry, StreamingResponder
from .vector_store import VectorStore
from .workers import SpecialistWorker


logger = logging.getLogger("uvicorn.error")

# Lifecycle signal sent for the synthesis task whatever the worker returned.
SYNTHESIS_COMPLETE_STATUS = "completed"


class ConversationActor:
    """Owns one conversation and runs its turns one at a time.

    A turn is: record the user message, decompose it, run the specialist
    tasks concurrently, wait for all of them, synthesize, stream the answer.
    ``context.tasks`` is rewritten by every turn, so turns never overlap.
    """

    def __init__(
        self,
        db: Database,
        vector_store: VectorStore,
        workers: Dict[str, SpecialistWorker],
        responder: StreamingResponder,
        task_timeout_s: float = 120.0,
        max_pending_turns: int = 8,
    ):
        self.db = db
        self.vector_store = vector_store
        self.workers = workers
        self.responder = responder
        self.task_timeout_s = task_timeout_s
        self.max_pending_turns = max_pending_turns
        self.sessions = SessionRegistry()
        self.context: Optional[ConversationContext] = None
        self._turn_lock = asyncio.Lock()
        self._pending_turns = 0

    @property
    def conversation_id(self) -> Optional[str]:
        return self.context.conversation_id if self.context else None

    async def initialize(self, user_id: str) -> str:
        conversation_id = await self.db.create_conversation(user_id)
        self.context = ConversationContext(conversation_id=conversation_id, user_id=user_id)
        return conversation_id

    async def restore(self, conversation_id: str) -> bool:
        context = await self.db.get_conversation_context(conversation_id)
        if context is None:
            return False
        self.context = context
        return True

    def on_connection_open(self, connection: Connection) -> str:
        return self.sessions.open(connection)

    def on_connection_close(self, connection: Connection) -> None:
        # In-flight turns keep running; their sends to this connection just fail.
        self.sessions.close(connection)

    def parse_payload(self, payload: Union[str, bytes]) -> ClientMessage:
        if self.context is None:
            raise ProtocolError("No conversation context initialized")
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise ProtocolError(f"Invalid JSON payload: {exc}") from exc
        if not isinstance(data, dict):
            raise ProtocolError("Payload must be a JSON object")
        try:
            message = ClientMessage.model_validate(data)
        except ValidationError as exc:
            raise ProtocolError(f"Invalid client message: {exc.errors()[0].get('msg', 'invalid')}") from exc
        if message.type == "user_message" and not message.content.strip():
            raise ProtocolError("user_message requires non-empty content")
        return message

    async def on_client_message(self, connection: Connection, payload: Union[str, bytes]) -> None:
        try:
            message = self.parse_payload(payload)
        except ProtocolError as exc:
            await self.responder.error(connection, str(exc))
            return
        if message.type != "user_message":
            logger.info("Ignoring client message of type %r", message.type)
            return
        if 0 < self.max_pending_turns <= self._pending_turns:
            logger.warning(
                "Conversation %s: rejecting message, %d turn(s) already pending",
                self.conversation_id,
                self._pending_turns,
            )
            await self.responder.error(connection, "Too many pending messages")
            return
        self._pending_turns += 1
        try:
            async with self._turn_lock:
                await self.process_user_message(connection, message.content)
        finally:
            self._pending_turns -= 1

    async def process_user_message(self, connection: Connection, content: str) -> None:
        context = self.context
        if context is None:
            raise ProtocolError("No conversation context initialized")
        user_message = Message(role="user", content=content)
        context.messages.append(user_message)
        await self._record_message(user_message)

        tasks = decompose(content)
        context.tasks = tasks
        parallel_tasks = [task for task in tasks if task.type != "synthesis"]
        synthesis_task = tasks[-1]

        parallel_ms = await self.dispatch(connection, parallel_tasks)
        logger.info(
            "Conversation %s: %d parallel task(s) finished in %dms",
            context.conversation_id,
            len(parallel_tasks),
            parallel_ms,
        )

        synthesis = await self.synthesize(connection, content, synthesis_task, parallel_tasks)
        if synthesis.success:
            data = synthesis.data or {}
            answer = Message(
                role="assistant",
                content=data.get("synthesized", ""),
                metadata={
                    "sourcesUsed": data.get("sourcesUsed", []),
                    "completeness": data.get("completeness", 0.0),
                    "parallelExecutionMs": parallel_ms,
                },
            )
            context.messages.append(answer)
            await self._record_message(answer)
            await self.responder.stream_text(connection, answer.content)
        else:
            logger.warning("Conversation %s: synthesis failed: %s", context.conversation_id, synthesis.error)

        await self.responder.done(connection, parallel_ms)

    async def dispatch(self, connection: Connection, tasks: List[AgentTask]) -> int:
        """Run every task concurrently and return the elapsed milliseconds.

        All ``agent_start`` events go out before any task starts, and each
        ``agent_complete`` goes out as soon as its own task settles.
        """
        for task in tasks:
            await self.responder.agent_start(connection, task)

        async def run(task: AgentTask) -> None:
            await self.execute_task(task)
            await self.responder.agent_complete(connection, task.id, task.result, task.status)

        start = time.monotonic()
        await asyncio.gather(*(run(task) for task in tasks))
        return int((time.monotonic() - start) * 1000)

    async def execute_task(self, task: AgentTask) -> None:
        task.status = "running"
        task.start_time = now_ms()
        try:
            response = await self._run_worker(task)
        except WorkerError as exc:
            logger.warning("Task %s (%s) failed: %s", task.id, task.type, exc)
            response = AgentResponse(success=False, error=str(exc))
        if response.success:
            task.result = json.dumps(response.data)
            task.status = "completed"
        else:
            task.error = response.error or "Unknown error"
            task.status = "failed"
        task.end_time = now_ms()
        await self._record_execution(task, response)

    async def _run_worker(self, task: AgentTask) -> AgentResponse:
        worker = self.workers.get(task.type)
        if worker is None or task.type == "synthesis":
            raise WorkerError(f"Unknown agent type: {task.type}")
        return await self._with_deadline(worker.execute(task.input))

    async def _with_deadline(self, call: Awaitable[AgentResponse]) -> AgentResponse:
        if not self.task_timeout_s or self.task_timeout_s <= 0:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.task_timeout_s)
        except asyncio.TimeoutError as exc:
            raise WorkerError(f"Task timed out after {self.task_timeout_s:g}s") from exc

    async def synthesize(
        self,
        connection: Connection,
        content: str,
        synthesis_task: AgentTask,
        parallel_tasks: List[AgentTask],
    ) -> AgentResponse:
        await self.responder.agent_start(connection, synthesis_task)
        synthesis_task.status = "running"
        synthesis_task.start_time = now_ms()
        try:
            response = await self._with_deadline(self.workers["synthesis"].execute(content, parallel_tasks))
        except WorkerError as exc:
            response = AgentResponse(success=False, error=str(exc))
        if response.success:
            synthesis_task.status = "completed"
            synthesis_task.result = json.dumps(response.data)
        else:
            synthesis_task.status = "failed"
            synthesis_task.error = response.error or "Unknown error"
        synthesis_task.end_time = now_ms()
        await self._record_execution(synthesis_task, response)
        await self.responder.agent_complete(
            connection, synthesis_task.id, SYNTHESIS_COMPLETE_STATUS, SYNTHESIS_COMPLETE_STATUS
        )
        return response

    async def _record_message(self, message: Message) -> None:
        conversation_id = self.conversation_id or ""
        await self._best_effort("message", self.db.save_message(conversation_id, message))
        await self._best_effort("embedding", self.vector_store.embed_message(conversation_id, message))

    async def _record_execution(self, task: AgentTask, response: AgentResponse) -> None:
        await self._best_effort(
            "agent execution",
            self.db.save_agent_execution(
                self.conversation_id or "",
                task.type,
                task.input,
                task.result,
                response.duration_ms or 0,
                response.tokens_used or 0,
                task.status,
                task.error,
            ),
        )

    async def _best_effort(self, label: str, write: Awaitable[Any]) -> None:
        try:
            await write
        except Exception as exc:
            logger.warning("Persisting %s for conversation %s failed: %s", label, self.conversation_id, exc)


class ActorRegistry:
    """One live actor per conversation id."""

    def __init__(self, factory: Callable[[], ConversationActor]):
        self.factory = factory
        self._actors: Dict[str, ConversationActor] = {}
        self._lock = asyncio.Lock()

    async def create(self, user_id: str) -> ConversationActor:
        actor = self.factory()
        conversation_id = await actor.initialize(user_id)
        self._actors[conversation_id] = actor
        return actor

    def get(self, conversation_id: str) -> Optional[ConversationActor]:
        return self._actors.get(conversation_id)

    async def get_or_restore(self, conversation_id: str) -> Optional[ConversationActor]:
        async with self._lock:
            actor = self._actors.get(conversation_id)
            if actor is not None:
                return actor
            actor = self.factory()
            if not await actor.restore(conversation_id):
                return None
            self._actors[conversation_id] = actor
            return actor

    def __len__(self) -> int:
        return len(self._actors)
