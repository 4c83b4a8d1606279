import json
import time
from typing import Any, List, Optional

import aiosqlite


DEFAULT_TTL_S = 3600


class KVCache:
    """Key-value cache with per-key expiry, kept in the app's SQLite file."""

    def __init__(self, path: str, default_ttl_s: int = DEFAULT_TTL_S):
        self.path = path
        self.default_ttl_s = default_ttl_s

    async def init(self) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv_cache(
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    expires_at REAL
                );
                """
            )
            await db.commit()

    async def get(self, key: str) -> Optional[Any]:
        async with aiosqlite.connect(self.path) as db:
            cursor = await db.execute("SELECT value, expires_at FROM kv_cache WHERE key=?", (key,))
            row = await cursor.fetchone()
            await cursor.close()
        if not row:
            return None
        value, expires_at = row
        if expires_at is not None and expires_at <= time.time():
            await self.delete(key)
            return None
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return value

    async def set(self, key: str, value: Any, ttl_s: Optional[int] = None) -> None:
        serialized = value if isinstance(value, str) else json.dumps(value)
        expires_at = time.time() + (ttl_s if ttl_s is not None else self.default_ttl_s)
        async with aiosqlite.connect(self.path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO kv_cache(key, value, expires_at) VALUES (?,?,?)",
                (key, serialized, expires_at),
            )
            await db.commit()

    async def delete(self, key: str) -> None:
        async with aiosqlite.connect(self.path) as db:
            await db.execute("DELETE FROM kv_cache WHERE key=?", (key,))
            await db.commit()

    async def list(self, prefix: str = "") -> List[str]:
        async with aiosqlite.connect(self.path) as db:
            cursor = await db.execute(
                "SELECT key FROM kv_cache WHERE substr(key, 1, ?)=? AND (expires_at IS NULL OR expires_at > ?) ORDER BY key",
                (len(prefix), prefix, time.time()),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [row[0] for row in rows]
