import json
import math
import time
from typing import Any, Dict, List, Optional

import httpx

from .schemas import AgentResponse


ALLOWED_ROLES = {"system", "user", "assistant"}


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / 4)


class CompletionClient:
    """Thin client for an OpenAI-compatible chat/embeddings server."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        embedding_model: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.max_output_tokens = max_output_tokens
        self.embedding_model = embedding_model
        # Shared pool so concurrent worker calls reuse connections.
        self.client = httpx.AsyncClient(
            timeout=60,
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _sanitize_messages(self, messages: Any) -> List[Dict[str, str]]:
        if not isinstance(messages, list):
            return []
        sanitized: List[Dict[str, str]] = []
        for msg in messages:
            if not isinstance(msg, dict):
                continue
            role = msg.get("role")
            if role not in ALLOWED_ROLES:
                continue
            content = msg.get("content")
            if not isinstance(content, str) or not content.strip():
                continue
            sanitized.append({"role": role, "content": content})
        return sanitized

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict):
                error = data.get("error")
                if isinstance(error, dict) and error.get("message"):
                    return str(error["message"])
                if isinstance(error, str) and error:
                    return error
                return json.dumps(data, ensure_ascii=True)
        except Exception:
            pass
        try:
            return response.text
        except Exception:
            return ""

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 2048,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        final_max_tokens = max_tokens
        if self.max_output_tokens:
            final_max_tokens = min(max_tokens, self.max_output_tokens)
        cleaned = self._sanitize_messages(messages)
        if not cleaned:
            raise ValueError("messages must include at least one non-empty entry")
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": cleaned,
            "temperature": temperature,
            "max_tokens": final_max_tokens,
            "stream": False,
        }
        resp = await self.client.post(
            f"{self.base_url}/chat/completions", json=payload, headers=self._headers()
        )
        resp.raise_for_status()
        data = resp.json()
        choices = (data.get("choices") or []) if isinstance(data, dict) else []
        if choices:
            message = choices[0].get("message") or {}
            if not message.get("content"):
                # Reasoning models sometimes leave content empty.
                fallback = message.get("reasoning") or message.get("reasoning_content")
                if fallback:
                    message["content"] = fallback
                    choices[0]["message"] = message
        return data

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AgentResponse:
        start = time.monotonic()
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        try:
            data = await self.chat_completion(
                messages,
                temperature=temperature if temperature is not None else 0.7,
                max_tokens=max_tokens or 2048,
            )
        except httpx.HTTPStatusError as exc:
            detail = self._extract_error_detail(exc.response)
            return AgentResponse(
                success=False,
                error=f"Completion failed ({exc.response.status_code}): {detail}",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except (httpx.RequestError, ValueError) as exc:
            return AgentResponse(
                success=False,
                error=str(exc) or "Unknown LLM error",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        duration_ms = int((time.monotonic() - start) * 1000)
        choices = data.get("choices") or []
        text = ""
        if choices:
            text = (choices[0].get("message") or {}).get("content") or ""
        if not text:
            return AgentResponse(success=False, error="Completion returned no content", duration_ms=duration_ms)
        usage = data.get("usage") or {}
        tokens = usage.get("total_tokens") or estimate_tokens(prompt + text)
        return AgentResponse(success=True, data=text, tokens_used=tokens, duration_ms=duration_ms)

    async def embed(self, text: str) -> List[float]:
        payload = {"model": self.embedding_model or self.model, "input": text}
        resp = await self.client.post(f"{self.base_url}/embeddings", json=payload, headers=self._headers())
        resp.raise_for_status()
        data = resp.json()
        items = data.get("data") or []
        if not items or not items[0].get("embedding"):
            raise ValueError("embedding response missing data")
        return [float(v) for v in items[0]["embedding"]]

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
