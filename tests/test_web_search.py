import json
from pathlib import Path

import pytest
import respx
from httpx import Response

from agentrelay.cache import KVCache
from agentrelay.web_search import DUCKDUCKGO_URL, TAVILY_SEARCH_URL, WebSearchTool


@pytest.mark.asyncio
async def test_tavily_search_payload_and_mapping():
    tool = WebSearchTool("test-key")
    captured = {}
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            def handler(request):
                captured["json"] = json.loads(request.content.decode("utf-8"))
                captured["headers"] = request.headers
                return Response(
                    200,
                    json={
                        "results": [
                            {"title": "One", "url": "https://one.test", "content": "first", "published_date": "2024-05-01"},
                            {"title": "No url", "content": "skipped"},
                        ]
                    },
                )

            respx_mock.post(TAVILY_SEARCH_URL).mock(side_effect=handler)
            results = await tool.search("hello", max_results=3)
    finally:
        await tool.close()

    assert tool.provider == "tavily"
    assert captured["json"]["api_key"] == "test-key"
    assert captured["json"]["max_results"] == 3
    assert captured["headers"]["X-API-Key"] == "test-key"
    assert len(results) == 1
    assert results[0].snippet == "first"
    assert results[0].published_date == "2024-05-01"


@pytest.mark.asyncio
async def test_duckduckgo_fallback_without_key():
    tool = WebSearchTool()
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.get(DUCKDUCKGO_URL).mock(
                return_value=Response(
                    200,
                    json={
                        "RelatedTopics": [
                            {"Text": "Python is a language", "FirstURL": "https://ddg.test/python"},
                            {"Name": "Category without text"},
                        ]
                    },
                )
            )
            results = await tool.search("python")
    finally:
        await tool.close()

    assert tool.provider == "duckduckgo"
    assert [(r.title, r.url) for r in results] == [("Python is a language", "https://ddg.test/python")]


@pytest.mark.asyncio
async def test_duckduckgo_uses_abstract_when_no_topics():
    tool = WebSearchTool()
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.get(DUCKDUCKGO_URL).mock(
                return_value=Response(
                    200, json={"RelatedTopics": [], "Abstract": "Summary text", "AbstractURL": "https://a.test"}
                )
            )
            results = await tool.search("topic")
    finally:
        await tool.close()

    assert len(results) == 1
    assert results[0].title == "topic"
    assert results[0].snippet == "Summary text"


@pytest.mark.asyncio
async def test_search_failure_returns_empty_list():
    tool = WebSearchTool("test-key")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(TAVILY_SEARCH_URL).mock(return_value=Response(500, json={"error": "boom"}))
            results = await tool.search("hello")
    finally:
        await tool.close()

    assert results == []


@pytest.mark.asyncio
async def test_results_are_served_from_cache(tmp_path: Path):
    cache = KVCache(str(tmp_path / "cache.db"))
    await cache.init()
    tool = WebSearchTool("test-key", cache=cache, cache_ttl_s=60)
    try:
        with respx.mock() as respx_mock:
            route = respx_mock.post(TAVILY_SEARCH_URL).mock(
                return_value=Response(200, json={"results": [{"title": "T", "url": "https://t.test", "content": "c"}]})
            )
            first = await tool.search("cached query", max_results=2)
            second = await tool.search("cached query", max_results=2)
    finally:
        await tool.close()

    assert route.call_count == 1
    assert first == second
    assert len(await cache.list("search:")) == 1


@pytest.mark.asyncio
async def test_non_object_responses_return_empty_list():
    ddg = WebSearchTool()
    tavily = WebSearchTool("test-key")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.get(DUCKDUCKGO_URL).mock(return_value=Response(200, json=[1, 2]))
            respx_mock.post(TAVILY_SEARCH_URL).mock(return_value=Response(200, json=["not", "an", "object"]))
            assert await ddg.search("python") == []
            assert await tavily.search("python") == []
    finally:
        await ddg.close()
        await tavily.close()


@pytest.mark.asyncio
async def test_tavily_skips_non_object_items():
    tool = WebSearchTool("test-key")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(TAVILY_SEARCH_URL).mock(
                return_value=Response(200, json={"results": ["junk", {"title": "Ok", "url": "https://ok.test"}]})
            )
            results = await tool.search("hello")
    finally:
        await tool.close()

    assert [r.url for r in results] == ["https://ok.test"]


@pytest.mark.asyncio
async def test_malformed_cache_entry_falls_through_to_live_search(tmp_path: Path):
    cache = KVCache(str(tmp_path / "cache.db"))
    await cache.init()
    tool = WebSearchTool("test-key", cache=cache, cache_ttl_s=60)
    await cache.set(tool._cache_key("q", 3), [{"bogus": 1}])
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(TAVILY_SEARCH_URL).mock(
                return_value=Response(200, json={"results": [{"title": "Live", "url": "https://live.test", "content": "c"}]})
            )
            results = await tool.search("q", max_results=3)
    finally:
        await tool.close()

    assert [r.title for r in results] == ["Live"]
    cached = await cache.get(tool._cache_key("q", 3))
    assert cached[0]["url"] == "https://live.test"
