from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from company_intel.api.deps import get_registry, get_session_store
from company_intel.errors import SessionNotFoundError
from company_intel.intelligence.extractor import CategoryExtractor
from company_intel.models.schemas import ExtractRequest, ExtractResponse, MergeRequest
from company_intel.scraping.merger import MergeOptions, ScrapingMerger
from company_intel.scraping.registry import ScraperRegistry
from company_intel.services.sessions import SessionStore

router = APIRouter(prefix="/api", tags=["intelligence"])


@router.post("/merge")
async def merge_passes(request: MergeRequest):
    """Merge posted scraping passes of one URL into a single record."""
    urls = {scraping_pass.url for scraping_pass in request.passes}
    if len(urls) > 1:
        raise HTTPException(status_code=422, detail="All passes must target the same URL")
    merger = ScrapingMerger(
        MergeOptions(
            conflict_resolution=request.conflict_resolution,
            deduplicate_content=request.deduplicate_content,
            preserve_all_html=request.preserve_all_html,
        )
    )
    merged = merger.merge([scraping_pass.to_pass() for scraping_pass in request.passes])
    return merged.to_dict()


@router.post("/intelligence/extract", response_model=ExtractResponse)
async def extract_intelligence(
    request: ExtractRequest,
    store: SessionStore = Depends(get_session_store),
):
    extractor = CategoryExtractor(session_store=store if request.session_id else None)
    try:
        results = await extractor.extract(request.pages, session_id=request.session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return ExtractResponse(
        categories={category.value: bucket.to_dict() for category, bucket in results.items()},
        summary=extractor.summarize(results),
    )


@router.get("/scrapers")
async def list_scrapers(registry: ScraperRegistry = Depends(get_registry)):
    return {"scrapers": registry.describe()}
