import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional, Set

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .cache import KVCache
from .config import AppSettings, load_settings
from .coordinator import ActorRegistry, ConversationActor
from .db import Database
from .errors import TransportError
from .llm import CompletionClient
from .schemas import StreamChunk
from .streaming import StreamingResponder
from .vector_store import VectorStore
from .web_search import WebSearchTool
from .workers import build_workers


logger = logging.getLogger("uvicorn.error")

BANNER = "Multi-Agent Chat Coordinator"
# Policy violation close code for sockets bound to unknown conversations.
WS_UNKNOWN_CONVERSATION = 1008


class WebSocketConnection:
    """Adapts a Starlette socket to the ``send_text`` connection surface."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.closed = False

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise TransportError("Connection closed")
        try:
            await self.websocket.send_text(data)
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            self.closed = True
            raise TransportError(str(exc) or "Connection closed") from exc


router = APIRouter()


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_vector_store(request: Request) -> VectorStore:
    return request.app.state.vector_store


def get_actors(request: Request) -> ActorRegistry:
    return request.app.state.actors


async def _require_conversation(db: Database, conversation_id: str) -> dict:
    convo = await db.get_conversation(conversation_id)
    if not convo:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return convo


@router.get("/", response_class=PlainTextResponse)
async def index():
    return BANNER


@router.get("/settings")
async def get_settings_route(settings: AppSettings = Depends(get_settings)):
    return {"settings": settings.to_safe_dict()}


@router.post("/api/conversation/new")
async def new_conversation(userId: str = "anonymous", actors: ActorRegistry = Depends(get_actors)):
    actor = await actors.create(userId)
    logger.info("Created conversation %s for user %s", actor.conversation_id, userId)
    return {"conversationId": actor.conversation_id}


@router.get("/api/conversations/{conversation_id}/messages")
async def get_conversation_messages(conversation_id: str, limit: int = 50, db: Database = Depends(get_db)):
    await _require_conversation(db, conversation_id)
    messages = await db.get_messages(conversation_id, limit=limit)
    return {"messages": [m.model_dump() for m in messages]}


@router.get("/api/conversations/{conversation_id}/executions")
async def get_conversation_executions(conversation_id: str, db: Database = Depends(get_db)):
    await _require_conversation(db, conversation_id)
    executions = await db.list_agent_executions(conversation_id)
    return {"executions": executions}


@router.get("/api/conversations/{conversation_id}/vectors")
async def get_conversation_vectors(
    conversation_id: str,
    limit: int = 10,
    db: Database = Depends(get_db),
    vector_store: VectorStore = Depends(get_vector_store),
):
    await _require_conversation(db, conversation_id)
    documents = await vector_store.get_conversation_context(conversation_id, limit=limit)
    return {"documents": [d.model_dump(by_alias=True) for d in documents]}


@router.get("/api/search")
async def search_messages(q: str, limit: int = 5, vector_store: VectorStore = Depends(get_vector_store)):
    if not q.strip():
        raise HTTPException(status_code=400, detail="Query is required.")
    documents = await vector_store.search_similar(q, limit=limit)
    return {"results": [d.model_dump(by_alias=True) for d in documents]}


@router.websocket("/api/ws")
async def conversation_socket(websocket: WebSocket, conversationId: str = ""):
    await websocket.accept()
    actors: ActorRegistry = websocket.app.state.actors
    actor = await actors.get_or_restore(conversationId) if conversationId else None
    if actor is None:
        chunk = StreamChunk(type="error", data={"error": f"Conversation not found: {conversationId}"})
        await websocket.send_text(chunk.to_wire())
        await websocket.close(code=WS_UNKNOWN_CONVERSATION)
        return

    connection = WebSocketConnection(websocket)
    session_id = actor.on_connection_open(connection)
    logger.info("Session %s opened for conversation %s", session_id, conversationId)
    turns: Set[asyncio.Task] = websocket.app.state.turn_tasks
    try:
        while True:
            frame = await websocket.receive()
            if frame.get("type") == "websocket.disconnect":
                break
            payload = frame.get("text")
            if payload is None:
                payload = frame.get("bytes")
            if payload is None:
                continue
            # Turns queue on the actor's lock; the socket keeps reading meanwhile.
            task = asyncio.create_task(actor.on_client_message(connection, payload))
            turns.add(task)
            task.add_done_callback(turns.discard)
    except WebSocketDisconnect:
        pass
    finally:
        connection.closed = True
        actor.on_connection_close(connection)
        logger.info("Session %s closed for conversation %s", session_id, conversationId)


def create_app(
    settings: AppSettings,
    *,
    db: Optional[Database] = None,
    llm_client: Optional[CompletionClient] = None,
    search_tool: Optional[WebSearchTool] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.db.init()
        await app.state.cache.init()
        await app.state.vector_store.init()
        try:
            yield
        finally:
            pending = list(app.state.turn_tasks)
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            await app.state.llm_client.close()
            await app.state.search_tool.close()

    app = FastAPI(title="AgentRelay Chat Coordinator", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db or Database(settings.database_path)
    app.state.cache = KVCache(settings.database_path, default_ttl_s=settings.search_cache_ttl_s)
    app.state.llm_client = llm_client or CompletionClient(
        settings.llm_base_url,
        settings.llm_model,
        api_key=settings.llm_api_key,
        max_output_tokens=settings.llm_max_output_tokens,
        embedding_model=settings.embedding_model,
    )
    app.state.search_tool = search_tool or WebSearchTool(
        settings.tavily_api_key,
        cache=app.state.cache,
        cache_ttl_s=settings.search_cache_ttl_s,
    )
    app.state.vector_store = VectorStore(settings.database_path, app.state.llm_client)
    app.state.responder = StreamingResponder(token_delay_ms=settings.token_delay_ms)
    app.state.workers = build_workers(app.state.llm_client, app.state.search_tool)
    app.state.turn_tasks = set()

    def new_actor() -> ConversationActor:
        return ConversationActor(
            app.state.db,
            app.state.vector_store,
            app.state.workers,
            app.state.responder,
            task_timeout_s=settings.task_timeout_s,
            max_pending_turns=settings.max_pending_turns,
        )

    app.state.actors = ActorRegistry(new_actor)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app(load_settings())


if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    try:
        uvicorn.run(
            "agentrelay.main:app",
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level,
        )
    except KeyboardInterrupt:
        pass
