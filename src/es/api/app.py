"""HTTP trigger surface for enrollment-sync.

GET  /              health check
GET  /health        health check with scheduler and last-run details
POST /trigger-sync  run the pipeline now, optionally for a given window
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from es import __version__
from es.ledger.models import SyncTrigger
from es.orders.client import DEFAULT_LOOKBACK_MINUTES, SyncWindow
from es.sync.runner import SyncInProgressError, SyncPipeline, get_last_sync_run
from es.sync.scheduler import IntervalScheduler

logger = logging.getLogger(__name__)


class TriggerSyncRequest(BaseModel):
    """Optional window for a manual sync: a lookback or an explicit range."""

    lookback_minutes: int | None = Field(None, gt=0)
    start: datetime | None = None
    end: datetime | None = None

    def to_window(self, default_lookback: int) -> SyncWindow:
        """Raises ValueError for a half-open or inverted range."""
        if self.start is not None or self.end is not None:
            if self.start is None or self.end is None:
                raise ValueError("Both start and end are required for an explicit window")
            if self.lookback_minutes is not None:
                raise ValueError("Use either lookback_minutes or start/end, not both")
            return SyncWindow.between(self.start, self.end)
        return SyncWindow.lookback(self.lookback_minutes or default_lookback)


class TriggerSyncResponse(BaseModel):
    status: str
    message: str
    processed: int
    courses: int
    run_id: int | None = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


def create_app(
    pipeline: SyncPipeline,
    scheduler: IntervalScheduler | None = None,
    default_lookback: int = DEFAULT_LOOKBACK_MINUTES,
) -> FastAPI:
    """Build the FastAPI app around an already-wired pipeline.

    The scheduler, when given, is started and stopped with the app lifespan.
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if scheduler is not None:
            scheduler.start()
        logger.info("Trigger surface ready (scheduler %s)", "on" if scheduler else "off")
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop()
            pipeline.close()

    app = FastAPI(
        title="enrollment-sync",
        description="Reconciles course purchases into student records",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Rejected trigger request: %s", exc.errors())
        return _error(400, f"Invalid request: {exc.errors()}")

    @app.get("/")
    def root() -> dict[str, Any]:
        return {"status": "ok", "message": "Scheduler is running" if scheduler else "Service is running"}

    @app.get("/health")
    def health() -> dict[str, Any]:
        last_run = get_last_sync_run(pipeline.db_path)
        return {
            "status": "ok",
            "version": __version__,
            "scheduler_running": bool(scheduler and scheduler.running),
            "sync_in_progress": pipeline.is_running,
            "last_run": last_run.to_dict() if last_run else None,
        }

    # Plain def: FastAPI runs it in a worker thread, so the blocking run
    # does not stall the event loop.
    @app.post("/trigger-sync", response_model=TriggerSyncResponse)
    def trigger_sync(body: TriggerSyncRequest | None = None) -> Any:
        body = body or TriggerSyncRequest()
        try:
            window = body.to_window(default_lookback)
        except ValueError as e:
            return _error(400, str(e))

        logger.info("Manual sync triggered for %s", window.describe())
        try:
            result = pipeline.run(window, trigger=SyncTrigger.MANUAL, wait=False)
        except SyncInProgressError as e:
            return _error(409, str(e))
        except Exception as e:
            logger.exception("Manual sync failed")
            return _error(500, str(e))

        return TriggerSyncResponse(
            status="success",
            message="Sync completed successfully",
            processed=result.orders_fetched,
            courses=result.persisted_count,
            run_id=result.run_id,
        )

    return app
