"""FastAPI application factory.

Hosts the health and status routes and runs the scan scheduler for the
lifetime of the process. This module is the authoritative app object;
phiscan/main.py re-exports it.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from phiscan.api.routes.health import router as health_router
from phiscan.api.routes.status import router as status_router
from phiscan.core.logging import setup_logging
from phiscan.core.settings import get_settings
from phiscan.pipeline.runtime import build_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings = get_settings()
    app.state.runtime = None

    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false); serving health checks only")
        yield
        return

    runtime = await build_runtime(settings)
    app.state.runtime = runtime
    task = asyncio.create_task(runtime.scheduler.run_forever())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    await runtime.close()
    app.state.runtime = None


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(status_router)
