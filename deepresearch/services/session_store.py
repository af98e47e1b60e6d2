"""Durable session state, saved at every suspend/resume boundary."""
from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import asyncpg

from deepresearch.config import Settings
from deepresearch.services import logger as log_service


class SessionStore(Protocol):
    async def save_session_state(self, session_id: str, state: dict[str, Any]) -> None: ...
    async def load_session_state(self, session_id: str) -> dict[str, Any] | None: ...
    async def delete_session_state(self, session_id: str) -> None: ...
    async def close(self) -> None: ...


class InMemorySessionStore:
    """Keeps states as JSON text so anything unserializable fails on save."""

    def __init__(self) -> None:
        self._states: dict[str, str] = {}

    async def save_session_state(self, session_id: str, state: dict[str, Any]) -> None:
        self._states[session_id] = json.dumps(state)
        log_service.log_store_operation("save", session_id, "success")

    async def load_session_state(self, session_id: str) -> dict[str, Any] | None:
        raw = self._states.get(session_id)
        return json.loads(raw) if raw is not None else None

    async def delete_session_state(self, session_id: str) -> None:
        self._states.pop(session_id, None)
        log_service.log_store_operation("delete", session_id, "success")

    async def close(self) -> None:
        return None


class FileSessionStore:
    """One JSON document per session, replaced atomically on every save."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, session_id: str) -> Path:
        safe = "".join(ch for ch in session_id if ch.isalnum() or ch in "-_")
        if not safe:
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.directory / f"{safe}.json"

    def _write(self, session_id: str, payload: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self._path(session_id)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read(self, session_id: str) -> dict[str, Any] | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    async def save_session_state(self, session_id: str, state: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._write, session_id, json.dumps(state))
        except OSError as exc:
            log_service.log_store_operation("save", session_id, "error", str(exc))
            raise
        log_service.log_store_operation("save", session_id, "success")

    async def load_session_state(self, session_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read, session_id)

    async def delete_session_state(self, session_id: str) -> None:
        await asyncio.to_thread(self._path(session_id).unlink, missing_ok=True)
        log_service.log_store_operation("delete", session_id, "success")

    async def close(self) -> None:
        return None


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS research_sessions (
    id TEXT PRIMARY KEY,
    state TEXT NOT NULL,
    data JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


class PostgresSessionStore:
    def __init__(self, database_url: str, *, min_size: int = 1, max_size: int = 10):
        if not database_url:
            raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def _get_pool(self) -> asyncpg.Pool:
        """Get or create the connection pool, creating the table on first use."""
        async with self._pool_lock:
            if self._pool is None:
                pool = await asyncpg.create_pool(
                    self.database_url,
                    min_size=self.min_size,
                    max_size=self.max_size,
                )
                async with pool.acquire() as conn:
                    await conn.execute(SCHEMA_SQL)
                self._pool = pool
        return self._pool

    async def save_session_state(self, session_id: str, state: dict[str, Any]) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO research_sessions (id, state, data, updated_at)
                    VALUES ($1, $2, $3::jsonb, NOW())
                    ON CONFLICT (id) DO UPDATE
                    SET state = EXCLUDED.state, data = EXCLUDED.data, updated_at = NOW()
                    """,
                    session_id,
                    str(state.get("state", "")),
                    json.dumps(state),
                )
        except asyncpg.PostgresError as exc:
            log_service.log_store_operation("save", session_id, "error", str(exc))
            raise
        log_service.log_store_operation("save", session_id, "success")

    async def load_session_state(self, session_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT data FROM research_sessions WHERE id = $1", session_id
            )
        if row is None:
            return None
        data = row["data"]
        # asyncpg hands jsonb back as text unless a codec is registered.
        return json.loads(data) if isinstance(data, str) else dict(data)

    async def delete_session_state(self, session_id: str) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute("DELETE FROM research_sessions WHERE id = $1", session_id)
        log_service.log_store_operation("delete", session_id, "success")

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


def get_session_store(config: Settings) -> SessionStore:
    backend = config.session_store.lower().strip()
    if backend == "memory":
        return InMemorySessionStore()
    if backend == "file":
        return FileSessionStore(config.session_store_dir)
    if backend == "postgres":
        return PostgresSessionStore(config.database_url)
    raise ValueError(f"Unsupported SESSION_STORE: {config.session_store}")
