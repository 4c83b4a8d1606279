import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "AGENTRELAY_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}
SECRET_FIELDS = ("llm_api_key", "tavily_api_key")


class AppSettings(BaseModel):
    # OpenAI-compatible completion server (LM Studio, vLLM, OpenAI...)
    llm_base_url: str = "http://127.0.0.1:1234/v1"
    llm_model: str = "llama-3.3-70b-instruct"
    llm_api_key: Optional[str] = None
    llm_max_output_tokens: Optional[int] = None
    embedding_model: str = "text-embedding-bge-base-en-v1.5"

    tavily_api_key: Optional[str] = None
    search_cache_ttl_s: int = 3600

    database_path: str = "agentrelay.db"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    # Simulated typing between streamed tokens.
    token_delay_ms: int = 50
    # Per-task deadline for worker calls; 0 disables it.
    task_timeout_s: float = 120.0
    # Turns queued per conversation before new messages are refused; 0 disables it.
    max_pending_turns: int = 8
    cors_allow_origins: List[str] = ["*"]

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        for key in SECRET_FIELDS:
            if data.get(key):
                data[key] = "********"
        return data

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "llm_base_url": os.getenv("LLM_BASE_URL"),
        "llm_model": os.getenv("LLM_MODEL"),
        "llm_api_key": os.getenv("LLM_API_KEY"),
        "llm_max_output_tokens": os.getenv("LLM_MAX_OUTPUT_TOKENS"),
        "embedding_model": os.getenv("EMBEDDING_MODEL"),
        "tavily_api_key": os.getenv("TAVILY_API_KEY"),
        "search_cache_ttl_s": os.getenv("SEARCH_CACHE_TTL_S"),
        "database_path": os.getenv("DATABASE_PATH"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
        "log_level": os.getenv("LOG_LEVEL"),
        "token_delay_ms": os.getenv("TOKEN_DELAY_MS"),
        "task_timeout_s": os.getenv("TASK_TIMEOUT_S"),
        "max_pending_turns": os.getenv("MAX_PENDING_TURNS"),
        "cors_allow_origins": os.getenv("CORS_ALLOW_ORIGINS"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    for key in ("llm_max_output_tokens", "search_cache_ttl_s", "port", "token_delay_ms", "max_pending_turns"):
        if key in cleaned:
            cleaned[key] = int(cleaned[key])
    if "task_timeout_s" in cleaned:
        cleaned["task_timeout_s"] = float(cleaned["task_timeout_s"])
    if "cors_allow_origins" in cleaned:
        cleaned["cors_allow_origins"] = [o.strip() for o in cleaned["cors_allow_origins"].split(",") if o.strip()]
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except Exception:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = {**file_data, **env_data}
    else:
        merged = {**env_data, **file_data}
    for key in SECRET_FIELDS:
        if not merged.get(key) and env_data.get(key):
            merged[key] = env_data[key]
    return AppSettings(**merged)
