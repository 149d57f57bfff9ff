from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from company_intel.api.routes import discovery, intelligence, sessions
from company_intel.config import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield


app = FastAPI(
    title="Company Intel",
    description="Company intelligence discovery, scraping and merge pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions.router)
app.include_router(discovery.router)
app.include_router(intelligence.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "company-intel"}
