"""Session facade with optimistic versioning.

Every write names the version it last read. A mismatch means another writer
won: `update` returns None and the caller re-reads before trying again.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from loguru import logger
from supabase import Client, create_client

from company_intel.config import Settings, settings
from company_intel.errors import SessionConflictError, SessionNotFoundError
from company_intel.models.session import Session, SessionStatus
from company_intel.services import logger as log_service
from company_intel.utils.web import normalize_domain

UPDATABLE_FIELDS = frozenset({"company_name", "domain", "status", "phase", "merged_data"})


class SessionStore(Protocol):
    async def get(self, session_id: str) -> Session | None: ...

    async def create(self, company_name: str, domain: str) -> Session: ...

    async def update(
        self,
        session_id: str,
        fields: dict[str, Any],
        expected_version: int,
    ) -> Session | None: ...

    async def find_by_domain(self, domain: str) -> Session | None: ...


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_json_object(value: Any) -> dict[str, Any]:
    """Normalize legacy JSON-string fields into dictionaries."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _serialize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported session fields: {sorted(unknown)}")
    payload = dict(fields)
    if "merged_data" in payload:
        payload["merged_data"] = json.loads(json.dumps(payload["merged_data"], default=str))
    if isinstance(payload.get("status"), SessionStatus):
        payload["status"] = payload["status"].value
    if "domain" in payload:
        payload["domain"] = normalize_domain(payload["domain"])
    return payload


def _row_to_session(row: dict[str, Any]) -> Session:
    return Session(
        id=str(row["id"]),
        company_name=row.get("company_name") or "",
        domain=row.get("domain") or "",
        status=SessionStatus(row.get("status") or SessionStatus.ACTIVE.value),
        phase=int(row.get("phase") or 0),
        version=int(row.get("version") or 0),
        merged_data=_coerce_json_object(row.get("merged_data")),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


async def _execute(query: Any) -> Any:
    """Run blocking Supabase query execution in a worker thread."""
    return await asyncio.to_thread(query.execute)


class SupabaseSessionStore:
    def __init__(self, client: Client | None = None, *, table: str | None = None):
        self._client = client
        self.table = table or settings.session_table

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(settings.supabase_url, settings.supabase_anon_key)
        return self._client

    async def get(self, session_id: str) -> Session | None:
        result = await _execute(self.client.table(self.table).select("*").eq("id", session_id))
        return _row_to_session(result.data[0]) if result.data else None

    async def create(self, company_name: str, domain: str) -> Session:
        now = _utc_now()
        row = {
            "company_name": company_name,
            "domain": normalize_domain(domain),
            "status": SessionStatus.ACTIVE.value,
            "phase": 0,
            "version": 0,
            "merged_data": {},
            "created_at": now,
            "updated_at": now,
        }
        result = await _execute(self.client.table(self.table).insert(row))
        session = _row_to_session(result.data[0])
        log_service.log_session_operation("create", session.id, "success", details=session.domain)
        return session

    async def update(
        self,
        session_id: str,
        fields: dict[str, Any],
        expected_version: int,
    ) -> Session | None:
        payload = _serialize_fields(fields)
        payload["version"] = expected_version + 1
        payload["updated_at"] = _utc_now()
        result = await _execute(
            self.client.table(self.table)
            .update(payload)
            .eq("id", session_id)
            .eq("version", expected_version)
        )
        if result.data:
            log_service.log_session_operation(
                "update", session_id, "success", details=f"version={expected_version + 1}"
            )
            return _row_to_session(result.data[0])

        if await self.get(session_id) is None:
            raise SessionNotFoundError(session_id)
        log_service.log_session_operation(
            "update", session_id, "conflict", details=f"stale version {expected_version}"
        )
        return None

    async def find_by_domain(self, domain: str) -> Session | None:
        result = await _execute(
            self.client.table(self.table)
            .select("*")
            .eq("domain", normalize_domain(domain))
            .order("created_at", desc=True)
            .limit(1)
        )
        return _row_to_session(result.data[0]) if result.data else None


class InMemorySessionStore:
    """Process-local store with the same compare-and-swap contract.

    Used by tests and local CLI runs; nothing is shared across processes.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}

    async def get(self, session_id: str) -> Session | None:
        row = self._rows.get(session_id)
        return _row_to_session(json.loads(json.dumps(row))) if row else None

    async def create(self, company_name: str, domain: str) -> Session:
        now = _utc_now()
        session_id = str(uuid.uuid4())
        self._rows[session_id] = {
            "id": session_id,
            "company_name": company_name,
            "domain": normalize_domain(domain),
            "status": SessionStatus.ACTIVE.value,
            "phase": 0,
            "version": 0,
            "merged_data": {},
            "created_at": now,
            "updated_at": now,
        }
        return await self.get(session_id)  # type: ignore[return-value]

    async def update(
        self,
        session_id: str,
        fields: dict[str, Any],
        expected_version: int,
    ) -> Session | None:
        row = self._rows.get(session_id)
        if row is None:
            raise SessionNotFoundError(session_id)
        if row["version"] != expected_version:
            logger.debug(
                f"Session {session_id} at version {row['version']}, rejected write for {expected_version}"
            )
            return None
        row.update(_serialize_fields(fields))
        row["version"] = expected_version + 1
        row["updated_at"] = _utc_now()
        return await self.get(session_id)

    async def find_by_domain(self, domain: str) -> Session | None:
        target = normalize_domain(domain)
        matches = [row for row in self._rows.values() if row["domain"] == target]
        if not matches:
            return None
        latest = max(matches, key=lambda row: row["created_at"])
        return await self.get(latest["id"])


async def merge_session_data(
    store: SessionStore,
    session_id: str,
    patch: dict[str, Any],
    *,
    max_attempts: int | None = None,
    **fields: Any,
) -> Session:
    """Merge `patch` into the session's merged data without clobbering other keys."""
    attempts = max(int(max_attempts or settings.session_update_max_attempts), 1)
    last_version: int | None = None
    for attempt in range(1, attempts + 1):
        session = await store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        last_version = session.version
        merged = {**session.merged_data, **patch}
        updated = await store.update(session_id, {"merged_data": merged, **fields}, session.version)
        if updated is not None:
            return updated
        logger.info(
            f"Version conflict on session {session_id} (attempt {attempt}/{attempts}), re-reading"
        )
    raise SessionConflictError(session_id, last_version)


async def get_or_create_session(store: SessionStore, company_name: str, domain: str) -> Session:
    existing = await store.find_by_domain(domain)
    if existing is not None:
        return existing
    return await store.create(company_name, domain)


def build_session_store(config: Settings = settings) -> SessionStore:
    if config.session_backend == "memory":
        return InMemorySessionStore()
    return SupabaseSessionStore(table=config.session_table)
