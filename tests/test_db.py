from pathlib import Path

import pytest

from agentrelay.db import Database
from agentrelay.errors import PersistenceError
from agentrelay.schemas import Message


@pytest.mark.asyncio
async def test_db_init_creates_tables(tmp_path: Path):
    db = Database(str(tmp_path / "schema.db"))
    await db.init()
    rows = await db.fetchall("SELECT name FROM sqlite_master WHERE type='table'")
    tables = {row["name"] for row in rows}
    assert {"conversations", "messages", "agent_executions"}.issubset(tables)


@pytest.mark.asyncio
async def test_conversation_and_messages_roundtrip(tmp_path: Path):
    db = Database(str(tmp_path / "chat.db"))
    await db.init()
    cid = await db.create_conversation("bob")
    assert cid.startswith("conv_")

    convo = await db.get_conversation(cid)
    assert convo["user_id"] == "bob"
    assert convo["metadata"] == {}

    await db.save_message(cid, Message(role="user", content="hi", timestamp=1000))
    await db.save_message(
        cid, Message(role="assistant", content="hello", timestamp=2000, metadata={"completeness": 1.0})
    )
    messages = await db.get_messages(cid)
    assert [(m.role, m.content) for m in messages] == [("user", "hi"), ("assistant", "hello")]
    assert messages[0].metadata is None
    assert messages[1].metadata == {"completeness": 1.0}

    updated = await db.get_conversation(cid)
    assert updated["updated_at"] >= convo["updated_at"]


@pytest.mark.asyncio
async def test_get_messages_returns_newest_window_oldest_first(tmp_path: Path):
    db = Database(str(tmp_path / "window.db"))
    await db.init()
    cid = await db.create_conversation("bob")
    for idx in range(5):
        await db.save_message(cid, Message(role="user", content=f"m{idx}", timestamp=1000 + idx))

    window = await db.get_messages(cid, limit=2)
    assert [m.content for m in window] == ["m3", "m4"]


@pytest.mark.asyncio
async def test_agent_executions_are_listed_in_order(tmp_path: Path):
    db = Database(str(tmp_path / "exec.db"))
    await db.init()
    cid = await db.create_conversation("bob")
    first = await db.save_agent_execution(cid, "research", "q", None, 12, 0, "failed", "boom")
    second = await db.save_agent_execution(cid, "synthesis", "q", '{"ok": true}', 30, 55, "completed", None)

    executions = await db.list_agent_executions(cid)
    assert [e["id"] for e in executions] == [first, second]
    assert executions[0]["error"] == "boom"
    assert executions[1]["tokens_used"] == 55
    assert await db.list_agent_executions("conv_other") == []


@pytest.mark.asyncio
async def test_conversation_context_restores_history(tmp_path: Path):
    db = Database(str(tmp_path / "ctx.db"))
    await db.init()
    cid = await db.create_conversation("carol")
    await db.save_message(cid, Message(role="user", content="hi"))

    context = await db.get_conversation_context(cid)
    assert context.conversation_id == cid
    assert context.user_id == "carol"
    assert [m.content for m in context.messages] == ["hi"]
    assert context.tasks == []
    assert await db.get_conversation_context("conv_missing") is None


@pytest.mark.asyncio
async def test_write_errors_raise_persistence_error(tmp_path: Path):
    db = Database(str(tmp_path / "broken.db"))
    # Tables were never created.
    with pytest.raises(PersistenceError):
        await db.save_message("conv_x", Message(role="user", content="hi"))
