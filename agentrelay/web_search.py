import hashlib
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .cache import KVCache
from .schemas import SearchResult


logger = logging.getLogger("uvicorn.error")

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
DUCKDUCKGO_URL = "https://api.duckduckgo.com/"


class WebSearchTool:
    """Web lookup for the research worker.

    Uses Tavily when an API key is configured and the DuckDuckGo instant-answer
    API otherwise. ``search`` never raises: any failure yields an empty list.
    Results are cached per (query, max_results) when a cache is attached.
    """

    def __init__(
        self,
        tavily_api_key: Optional[str] = None,
        cache: Optional[KVCache] = None,
        cache_ttl_s: int = 3600,
    ):
        self.tavily_api_key = tavily_api_key
        self.cache = cache
        self.cache_ttl_s = cache_ttl_s
        self.client = httpx.AsyncClient(
            timeout=30,
            limits=httpx.Limits(max_connections=16, max_keepalive_connections=8),
        )

    @property
    def provider(self) -> str:
        return "tavily" if self.tavily_api_key else "duckduckgo"

    def _cache_key(self, query: str, max_results: int) -> str:
        digest = hashlib.sha1(f"{self.provider}:{max_results}:{query}".encode("utf-8")).hexdigest()
        return f"search:{digest}"

    async def search(self, query: str, max_results: int = 5) -> List[SearchResult]:
        key = self._cache_key(query, max_results)
        if self.cache is not None:
            try:
                cached = await self.cache.get(key)
            except Exception as exc:
                logger.warning("Search cache read failed: %s", exc)
                cached = None
            if isinstance(cached, list):
                try:
                    return [SearchResult.model_validate(item) for item in cached]
                except ValidationError as exc:
                    logger.warning("Dropping malformed search cache entry %s: %s", key, exc)
        try:
            if self.tavily_api_key:
                results = await self._search_tavily(query, max_results)
            else:
                results = await self._search_duckduckgo(query, max_results)
        except Exception as exc:
            logger.warning("Web search (%s) failed for %r: %s", self.provider, query, exc)
            return []
        if results and self.cache is not None:
            try:
                await self.cache.set(
                    key, [r.model_dump(by_alias=True) for r in results], ttl_s=self.cache_ttl_s
                )
            except Exception as exc:
                logger.warning("Search cache write failed: %s", exc)
        return results

    async def _search_tavily(self, query: str, max_results: int) -> List[SearchResult]:
        # Tavily's dev keys expect the key in the JSON payload; keep the header too.
        payload: Dict[str, Any] = {
            "query": query,
            "search_depth": "basic",
            "max_results": max_results,
            "api_key": self.tavily_api_key,
        }
        headers = {"Content-Type": "application/json", "X-API-Key": self.tavily_api_key or ""}
        resp = await self.client.post(TAVILY_SEARCH_URL, json=payload, headers=headers)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Tavily response: {type(data).__name__}")
        results: List[SearchResult] = []
        for item in (data.get("results") or [])[:max_results]:
            if not isinstance(item, dict):
                continue
            url = item.get("url")
            if not url:
                continue
            results.append(
                SearchResult(
                    title=item.get("title") or url,
                    url=url,
                    snippet=item.get("content") or "",
                    published_date=item.get("published_date"),
                )
            )
        return results

    async def _search_duckduckgo(self, query: str, max_results: int) -> List[SearchResult]:
        params = {"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"}
        resp = await self.client.get(DUCKDUCKGO_URL, params=params)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected DuckDuckGo response: {type(data).__name__}")
        results: List[SearchResult] = []
        for topic in (data.get("RelatedTopics") or [])[:max_results]:
            text = topic.get("Text") if isinstance(topic, dict) else None
            url = topic.get("FirstURL") if isinstance(topic, dict) else None
            if text and url:
                results.append(SearchResult(title=text[:100], url=url, snippet=text))
        if not results and data.get("Abstract"):
            results.append(
                SearchResult(title=query, url=data.get("AbstractURL") or "", snippet=data["Abstract"])
            )
        return results

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
