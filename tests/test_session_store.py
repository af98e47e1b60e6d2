from __future__ import annotations

import json

import pytest

from deepresearch.config import Settings
from deepresearch.services.session_store import (
    FileSessionStore,
    InMemorySessionStore,
    PostgresSessionStore,
    get_session_store,
)

STATE = {"id": "abc", "state": "awaiting_approval", "learnings": [{"text": "t"}]}


@pytest.mark.asyncio
async def test_in_memory_store_round_trips_copies():
    store = InMemorySessionStore()
    await store.save_session_state("abc", STATE)

    loaded = await store.load_session_state("abc")
    loaded["state"] = "mutated"

    assert (await store.load_session_state("abc")) == STATE
    await store.delete_session_state("abc")
    assert await store.load_session_state("abc") is None


@pytest.mark.asyncio
async def test_in_memory_store_rejects_unserializable_state():
    with pytest.raises(TypeError):
        await InMemorySessionStore().save_session_state("abc", {"ledger": {1, 2}})


@pytest.mark.asyncio
async def test_file_store_writes_one_document_per_session(tmp_path):
    store = FileSessionStore(tmp_path / "sessions")

    await store.save_session_state("abc", STATE)
    await store.save_session_state("abc", {**STATE, "state": "completed"})

    files = list((tmp_path / "sessions").iterdir())
    assert [f.name for f in files] == ["abc.json"]
    assert json.loads(files[0].read_text())["state"] == "completed"
    assert (await store.load_session_state("abc"))["state"] == "completed"

    await store.delete_session_state("abc")
    assert await store.load_session_state("abc") is None
    await store.delete_session_state("abc")


@pytest.mark.asyncio
async def test_file_store_ignores_path_characters_in_ids(tmp_path):
    store = FileSessionStore(tmp_path)
    await store.save_session_state("../escape", STATE)

    assert (tmp_path / "escape.json").exists()


def test_factory_selects_backend(tmp_path):
    assert isinstance(
        get_session_store(Settings(_env_file=None, session_store="memory")), InMemorySessionStore
    )
    file_store = get_session_store(
        Settings(_env_file=None, session_store="file", session_store_dir=str(tmp_path))
    )
    assert isinstance(file_store, FileSessionStore)
    assert file_store.directory == tmp_path
    pg_store = get_session_store(
        Settings(_env_file=None, session_store="postgres", database_url="postgresql://u:p@db/x")
    )
    assert isinstance(pg_store, PostgresSessionStore)


def test_factory_rejects_unknown_backend():
    with pytest.raises(ValueError):
        get_session_store(Settings(_env_file=None, session_store="redis"))


def test_postgres_store_requires_database_url():
    with pytest.raises(RuntimeError):
        PostgresSessionStore("")
