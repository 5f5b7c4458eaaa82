"""GET /status: scheduler counters and the most recent run outcome."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(tags=["status"])


@router.get("/status", summary="Scan scheduler status")
def scheduler_status(request: Request) -> dict[str, Any]:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Scheduler is not running")

    scheduler = runtime.scheduler
    last = scheduler.last_outcome
    return {
        "ticks": scheduler.ticks,
        "in_flight": scheduler.in_flight,
        "consecutive_failures": scheduler.consecutive_failures,
        "interval_seconds": scheduler.interval_s,
        "last_run": None
        if last is None
        else {
            "started_at": last.started_at.isoformat(),
            "finished_at": last.finished_at.isoformat() if last.finished_at else None,
            "ok": last.ok,
            **last.summary(),
        },
    }
