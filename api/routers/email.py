"""Mailbox monitoring API routes."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/email", tags=["Email"])


class EmailCheckResponse(BaseModel):
    """Outcome of a manual mailbox check."""

    success: bool
    count: Optional[int] = Field(default=None, ge=0, description="Replies reconciled.")
    error: Optional[str] = None


class MonitorStatusResponse(BaseModel):
    running: bool
    polling: bool
    interval_seconds: float
    last_run_at: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None


def _get_dependency_or_503(value: Any, name: str) -> Any:
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not available",
        )
    return value


@router.post("/check", response_model=EmailCheckResponse)
async def check_emails(request: Request) -> EmailCheckResponse:
    """Poll the mailbox once, synchronously, without retries."""

    orchestrator = _get_dependency_or_503(
        getattr(request.app.state, "ingestion", None), "Ingestion service"
    )
    logger.info("Manual mailbox check requested")
    result = await run_in_threadpool(orchestrator.check_now)
    return EmailCheckResponse(**result)


@router.get("/monitor", response_model=MonitorStatusResponse)
async def monitor_status(request: Request) -> MonitorStatusResponse:
    scheduler = _get_dependency_or_503(
        getattr(request.app.state, "email_scheduler", None), "Email scheduler"
    )
    return MonitorStatusResponse(**scheduler.status())


@router.post("/monitor/start", response_model=MonitorStatusResponse)
async def start_monitor(request: Request) -> MonitorStatusResponse:
    scheduler = _get_dependency_or_503(
        getattr(request.app.state, "email_scheduler", None), "Email scheduler"
    )
    if not scheduler.running and not scheduler.start():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email monitoring could not be started; check IMAP configuration or retry once the current poll ends",
        )
    return MonitorStatusResponse(**scheduler.status())


@router.post("/monitor/stop", response_model=MonitorStatusResponse)
async def stop_monitor(request: Request) -> MonitorStatusResponse:
    scheduler = _get_dependency_or_503(
        getattr(request.app.state, "email_scheduler", None), "Email scheduler"
    )
    await run_in_threadpool(scheduler.stop)
    return MonitorStatusResponse(**scheduler.status())
