"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from company_intel.config import settings

LOG_DIR = Path("logs")
LOG_DIR.mkdir(exist_ok=True)

logger.remove()

logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

logger.add(
    LOG_DIR / "company_intel_{time:YYYY-MM-DD}.log",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    level="DEBUG",
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "hpack",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_scrape(
    scraper: str,
    url: str,
    status: str,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log a single scraper invocation."""
    scrape_data = {
        "timestamp": _now(),
        "scraper": scraper,
        "url": url,
        "status": status,
        "duration_ms": duration_ms,
        "error": error,
    }
    if error:
        logger.warning(f"SCRAPE_FAILED: {scrape_data}")
    else:
        logger.info(f"SCRAPE: {scrape_data}")


def log_session_operation(
    operation: str,
    session_id: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log a session store operation."""
    op_data = {
        "timestamp": _now(),
        "operation": operation,
        "session_id": session_id,
        "status": status,
        "details": details,
        "error": error,
    }
    if error:
        logger.error(f"SESSION_OPERATION_FAILED: {op_data}")
    else:
        logger.info(f"SESSION_OPERATION: {op_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
