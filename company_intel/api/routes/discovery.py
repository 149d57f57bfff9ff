from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query
from sse_starlette.sse import EventSourceResponse

from company_intel.api.deps import get_registry, get_session_store
from company_intel.discovery.executor import DiscoveryExecutor
from company_intel.scraping.registry import ScraperRegistry
from company_intel.services import logger as log_service
from company_intel.services import streaming
from company_intel.services.pipeline import IntelligencePipeline
from company_intel.services.sessions import SessionStore

router = APIRouter(prefix="/api/sessions", tags=["discovery"])


def _sse(events):
    async def event_generator():
        try:
            async for event in events:
                yield {"event": event.event.value, "data": event.to_json()}
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in event stream",
                error=str(e),
            )
            error_event = streaming.error("Stream failed unexpectedly.", terminal=True)
            yield {"event": error_event.event.value, "data": error_event.to_json()}

    return EventSourceResponse(event_generator())


@router.get("/{session_id}/discovery/stream")
async def stream_discovery(
    session_id: str,
    max_urls: int | None = Query(default=None, ge=1, le=5000),
    validate_urls: bool = False,
    store: SessionStore = Depends(get_session_store),
):
    """Run discovery for the session's domain, streaming progress."""
    session = await store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    executor = DiscoveryExecutor(session_store=store)
    cancel_event = asyncio.Event()

    async def work(report, report_error):
        return await executor.execute(
            session.domain,
            session_id=session_id,
            max_urls=max_urls,
            validate_urls=validate_urls,
            on_progress=report,
            on_error=report_error,
            cancel_event=cancel_event,
        )

    return _sse(
        streaming.stream(
            work,
            session_id=session_id,
            phase="discovery",
            message=f"Discovering pages on {session.domain}",
            summarize=lambda result: result.summary(),
            result_payload=lambda result: {"urls": result.urls, "merged_data": result.merged_data},
            cancel_event=cancel_event,
        )
    )


@router.get("/{session_id}/pipeline/stream")
async def stream_pipeline(
    session_id: str,
    max_urls: int | None = Query(default=None, ge=1, le=5000),
    store: SessionStore = Depends(get_session_store),
    registry: ScraperRegistry = Depends(get_registry),
):
    """Discover, scrape, merge and categorize, streaming progress."""
    session = await store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    pipeline = IntelligencePipeline(registry=registry, store=store)
    cancel_event = asyncio.Event()

    async def work(report, report_error):
        return await pipeline.run(
            session_id,
            max_urls=max_urls,
            on_progress=report,
            on_error=report_error,
            cancel_event=cancel_event,
        )

    return _sse(
        streaming.stream(
            work,
            session_id=session_id,
            phase="pipeline",
            message=f"Gathering intelligence for {session.domain}",
            summarize=lambda result: result.summary(),
            cancel_event=cancel_event,
        )
    )
