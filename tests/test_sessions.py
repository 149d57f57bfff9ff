from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from company_intel.config import Settings
from company_intel.errors import SessionConflictError, SessionNotFoundError
from company_intel.models.session import SessionStatus
from company_intel.services import sessions
from company_intel.services.sessions import (
    InMemorySessionStore,
    SupabaseSessionStore,
    build_session_store,
    get_or_create_session,
    merge_session_data,
)


def make_row(**overrides):
    row = {
        "id": "s1",
        "company_name": "Acme",
        "domain": "acme.test",
        "status": "active",
        "phase": 1,
        "version": 3,
        "merged_data": {"discovery": {"urls": []}},
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_in_memory_update_requires_current_version():
    store = InMemorySessionStore()
    session = await store.create("Acme", "https://www.Acme.test/")

    assert session.domain == "acme.test"
    assert session.version == 0

    updated = await store.update(session.id, {"phase": 1}, expected_version=0)
    assert updated.version == 1
    assert updated.phase == 1

    stale = await store.update(session.id, {"phase": 2}, expected_version=0)
    assert stale is None
    assert (await store.get(session.id)).phase == 1


@pytest.mark.asyncio
async def test_in_memory_update_unknown_session_raises():
    store = InMemorySessionStore()
    with pytest.raises(SessionNotFoundError):
        await store.update("missing", {"phase": 1}, expected_version=0)


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields():
    store = InMemorySessionStore()
    session = await store.create("Acme", "acme.test")
    with pytest.raises(ValueError, match="Unsupported session fields"):
        await store.update(session.id, {"version": 99}, expected_version=0)


@pytest.mark.asyncio
async def test_merge_session_data_preserves_other_keys():
    store = InMemorySessionStore()
    session = await store.create("Acme", "acme.test")
    await merge_session_data(store, session.id, {"discovery": {"urls": ["a"]}}, phase=1)

    updated = await merge_session_data(store, session.id, {"intelligence": {"careers": {}}})

    assert updated.merged_data == {"discovery": {"urls": ["a"]}, "intelligence": {"careers": {}}}
    assert updated.phase == 1
    assert updated.version == 2


@pytest.mark.asyncio
async def test_merge_session_data_retries_after_conflict():
    store = InMemorySessionStore()
    session = await store.create("Acme", "acme.test")
    original_update = store.update
    calls = {"count": 0}

    async def racing_update(session_id, fields, expected_version):
        calls["count"] += 1
        if calls["count"] == 1:
            # another writer lands between our read and our write
            await original_update(session_id, {"merged_data": {"other": True}}, expected_version)
        return await original_update(session_id, fields, expected_version)

    store.update = racing_update

    updated = await merge_session_data(store, session.id, {"mine": True})

    assert updated.merged_data == {"other": True, "mine": True}
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_merge_session_data_gives_up_after_max_attempts():
    store = InMemorySessionStore()
    session = await store.create("Acme", "acme.test")
    store.update = AsyncMock(return_value=None)

    with pytest.raises(SessionConflictError) as exc_info:
        await merge_session_data(store, session.id, {"mine": True}, max_attempts=2)

    assert store.update.await_count == 2
    assert exc_info.value.retriable is True


@pytest.mark.asyncio
async def test_merge_session_data_missing_session():
    with pytest.raises(SessionNotFoundError):
        await merge_session_data(InMemorySessionStore(), "nope", {"a": 1})


@pytest.mark.asyncio
async def test_get_or_create_reuses_domain_session():
    store = InMemorySessionStore()
    first = await get_or_create_session(store, "Acme", "acme.test")
    second = await get_or_create_session(store, "Acme Inc", "https://www.acme.test")
    assert first.id == second.id


@pytest.mark.asyncio
async def test_supabase_update_filters_on_expected_version(monkeypatch):
    client = MagicMock()
    execute = AsyncMock(return_value=SimpleNamespace(data=[make_row(version=4, phase=2)]))
    monkeypatch.setattr(sessions, "_execute", execute)
    store = SupabaseSessionStore(client, table="sessions")

    updated = await store.update("s1", {"phase": 2, "status": SessionStatus.COMPLETED}, expected_version=3)

    assert updated.version == 4
    client.table.assert_called_with("sessions")
    payload = client.table.return_value.update.call_args.args[0]
    assert payload["version"] == 4
    assert payload["status"] == "completed"
    id_filter = client.table.return_value.update.return_value.eq
    id_filter.assert_called_with("id", "s1")
    id_filter.return_value.eq.assert_called_with("version", 3)


@pytest.mark.asyncio
async def test_supabase_update_conflict_returns_none(monkeypatch):
    execute = AsyncMock(
        side_effect=[SimpleNamespace(data=[]), SimpleNamespace(data=[make_row(version=5)])]
    )
    monkeypatch.setattr(sessions, "_execute", execute)
    store = SupabaseSessionStore(MagicMock(), table="sessions")

    assert await store.update("s1", {"phase": 2}, expected_version=3) is None


@pytest.mark.asyncio
async def test_supabase_update_missing_row_raises(monkeypatch):
    execute = AsyncMock(side_effect=[SimpleNamespace(data=[]), SimpleNamespace(data=[])])
    monkeypatch.setattr(sessions, "_execute", execute)
    store = SupabaseSessionStore(MagicMock(), table="sessions")

    with pytest.raises(SessionNotFoundError):
        await store.update("s1", {"phase": 2}, expected_version=3)


@pytest.mark.asyncio
async def test_supabase_get_coerces_legacy_json_string(monkeypatch):
    execute = AsyncMock(
        return_value=SimpleNamespace(data=[make_row(merged_data='{"discovery": {"urls": ["a"]}}')])
    )
    monkeypatch.setattr(sessions, "_execute", execute)
    store = SupabaseSessionStore(MagicMock(), table="sessions")

    session = await store.get("s1")

    assert session.merged_data == {"discovery": {"urls": ["a"]}}
    assert session.status is SessionStatus.ACTIVE


@pytest.mark.asyncio
async def test_execute_runs_query_in_worker_thread(monkeypatch):
    query = MagicMock()
    query.execute.return_value = SimpleNamespace(data=[])
    to_thread = AsyncMock(return_value="done")
    monkeypatch.setattr(sessions.asyncio, "to_thread", to_thread)

    assert await sessions._execute(query) == "done"
    to_thread.assert_awaited_once_with(query.execute)


def test_build_session_store_selects_backend():
    assert isinstance(build_session_store(Settings(session_backend="memory")), InMemorySessionStore)
    assert isinstance(build_session_store(Settings(session_backend="supabase")), SupabaseSessionStore)
