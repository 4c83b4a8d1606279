from pathlib import Path

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from agentrelay.config import AppSettings
from agentrelay.coordinator import ConversationActor
from agentrelay.db import Database
from agentrelay.main import create_app
from agentrelay.streaming import StreamingResponder
from agentrelay.vector_store import VectorStore
from agentrelay.workers import build_workers
from tests.fakes import FakeCompletionClient, FakeSearchTool


def make_settings(tmp_path: Path, **overrides) -> AppSettings:
    settings = AppSettings(
        llm_base_url="http://llm.test/v1",
        llm_model="test-model",
        embedding_model="test-embedding",
        tavily_api_key=None,
        database_path=str(tmp_path / "test.db"),
        host="127.0.0.1",
        port=8000,
        token_delay_ms=0,
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def app_factory(tmp_path: Path):
    def _factory(
        *,
        fake_llm: FakeCompletionClient | None = None,
        fake_search: FakeSearchTool | None = None,
        **settings_overrides,
    ):
        settings = make_settings(tmp_path, **settings_overrides)
        llm_client = fake_llm or FakeCompletionClient()
        search_tool = fake_search or FakeSearchTool()
        app = create_app(settings, llm_client=llm_client, search_tool=search_tool)
        return app, llm_client, search_tool

    return _factory


@pytest.fixture
async def client(app_factory):
    app, llm_client, search_tool = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.fake_llm = llm_client  # type: ignore[attr-defined]
            http_client.fake_search = search_tool  # type: ignore[attr-defined]
            yield http_client


@pytest.fixture
def actor_factory(tmp_path: Path):
    async def _factory(
        *,
        fake_llm: FakeCompletionClient | None = None,
        fake_search: FakeSearchTool | None = None,
        db: Database | None = None,
        task_timeout_s: float = 120.0,
        max_pending_turns: int = 8,
        user_id: str | None = "user-1",
    ) -> ConversationActor:
        path = str(tmp_path / "actor.db")
        db = db or Database(path)
        await db.init()
        llm = fake_llm or FakeCompletionClient()
        vector_store = VectorStore(path, llm)
        await vector_store.init()
        actor = ConversationActor(
            db,
            vector_store,
            build_workers(llm, fake_search or FakeSearchTool()),
            StreamingResponder(token_delay_ms=0),
            task_timeout_s=task_timeout_s,
            max_pending_turns=max_pending_turns,
        )
        if user_id is not None:
            await actor.initialize(user_id)
        return actor

    return _factory
