"""Centralized logging service using loguru."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from resilient_extractor.config import settings

if TYPE_CHECKING:
    from resilient_extractor.models.extraction import AttemptResult, ExtractionResponse

# Remove default handler
logger.remove()

logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

if settings.log_dir:
    LOG_DIR = Path(settings.log_dir)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(
        LOG_DIR / "resilient_extractor_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG",
        rotation="00:00",
        retention="7 days",
        compression="zip",
    )

# Reduce noise from network libraries
for logger_name in ("httpx", "httpcore", "hpack", "asyncio"):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_attempt(result: AttemptResult, stage: str) -> None:
    """Log a single backend attempt."""
    attempt_data = {
        "timestamp": _now(),
        "stage": stage,
        "service": result.service,
        "url": result.url,
        "success": result.success,
        "content_length": result.content_length,
        "response_time_ms": result.response_time_ms,
        "error_code": result.error_code,
        "error": result.error.message if result.error else None,
    }
    if result.success:
        logger.info(f"EXTRACTION_ATTEMPT: {json.dumps(attempt_data, default=str)}")
    else:
        logger.warning(f"EXTRACTION_ATTEMPT_FAILED: {json.dumps(attempt_data, default=str)}")


def log_extraction(response: ExtractionResponse) -> None:
    """Log the final outcome of one extraction run."""
    result_data = {
        "timestamp": _now(),
        "url": response.url,
        "service": response.service,
        "technical_success": response.technical_success,
        "meaningful_success": response.meaningful_success,
        "fallback_level": response.fallback_level,
        "total_attempts": len(response.attempts),
        "ultra_resilient_attempts": response.escalation_attempts,
        "total_response_time_ms": response.total_response_time_ms,
        "error_code": (response.error or {}).get("code"),
    }
    logger.info(f"EXTRACTION_RESULT: {json.dumps(result_data, default=str)}")


def log_event(
    event_type: str,
    message: str,
    **kwargs: Any,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {json.dumps(event_data, default=str)}")
