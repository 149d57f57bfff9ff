from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from company_intel.api.deps import get_session_store
from company_intel.models.schemas import SessionCreateRequest, SessionResponse
from company_intel.models.session import Session
from company_intel.services.sessions import SessionStore, get_or_create_session

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _to_response(session: Session) -> SessionResponse:
    return SessionResponse(**session.to_dict())


@router.post("", response_model=SessionResponse)
async def create_session(
    request: SessionCreateRequest,
    store: SessionStore = Depends(get_session_store),
):
    """Create a session for a domain, or return the existing one."""
    session = await get_or_create_session(store, request.company_name, request.domain)
    return _to_response(session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    session = await store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return _to_response(session)
