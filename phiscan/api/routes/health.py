"""GET /health: liveness check."""
from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", summary="Basic health check", response_class=PlainTextResponse)
def health_check() -> str:
    logger.debug("Health check endpoint hit.")
    return "Healthy"
