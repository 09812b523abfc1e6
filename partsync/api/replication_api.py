from typing import Optional, Dict, Any, Union
from fastapi import APIRouter, FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from datetime import datetime
import logging
import threading

from ..config.settings import get_settings
from ..mongodb.connection import build_controller
from ..replication import LifecycleController
from ..utils.logging import configure_logging

logger = logging.getLogger(__name__)


class ReplicationResponse(BaseModel):
    """Response body for every replication endpoint."""
    status: str = Field(..., description="SUCCESS, ERROR or UP")
    message: str = Field(..., description="Human-readable message")
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
    details: Optional[Dict[str, Any]] = Field(None, description="Status snapshot")


# Global controller instance (built on first use)
_controller: Optional[LifecycleController] = None
_controller_lock = threading.Lock()


def get_controller() -> LifecycleController:
    global _controller
    with _controller_lock:
        if _controller is None:
            _controller = build_controller(get_settings().replication)
        return _controller


def set_controller(controller: Optional[LifecycleController]) -> None:
    """Replace the global controller (tests, embedding)."""
    global _controller
    with _controller_lock:
        _controller = controller


def _error(message: str) -> JSONResponse:
    body = ReplicationResponse(status="ERROR", message=message)
    return JSONResponse(status_code=500, content=body.model_dump())


replication_router = APIRouter(prefix="/api/v1/replication", tags=["replication"])


@replication_router.post("/start", response_model=ReplicationResponse)
def start_replication() -> Union[ReplicationResponse, JSONResponse]:
    try:
        logger.info("Starting replication process")
        started = get_controller().start()
    except Exception as e:
        logger.error(f"Failed to start replication: {e}", exc_info=True)
        return _error(f"Failed to start replication: {e}")

    message = "Replication started successfully" if started else "Replication is already running"
    return ReplicationResponse(status="SUCCESS", message=message)


@replication_router.post("/stop", response_model=ReplicationResponse)
def stop_replication() -> Union[ReplicationResponse, JSONResponse]:
    try:
        logger.info("Stopping replication process")
        stopped = get_controller().stop()
    except Exception as e:
        logger.error(f"Failed to stop replication: {e}", exc_info=True)
        return _error(f"Failed to stop replication: {e}")

    message = "Replication stopped successfully" if stopped else "Replication is not running"
    return ReplicationResponse(status="SUCCESS", message=message)


@replication_router.get("/status", response_model=ReplicationResponse)
def get_replication_status() -> Union[ReplicationResponse, JSONResponse]:
    try:
        controller = get_controller()
        state = controller.status()
        snapshot = controller.snapshot()
    except Exception as e:
        logger.error(f"Failed to read replication status: {e}", exc_info=True)
        return _error(f"Failed to read replication status: {e}")

    return ReplicationResponse(
        status="SUCCESS",
        message=f"Current replication status: {state.value}",
        details=snapshot
    )


@replication_router.get("/health", response_model=ReplicationResponse)
def health_check() -> ReplicationResponse:
    return ReplicationResponse(status="UP", message="Replication service is up")


app = FastAPI(title="partsync", version="0.1.0")
app.include_router(replication_router)


@app.on_event("startup")
async def startup_event():
    """Configure logging and optionally start replication."""
    settings = get_settings()
    configure_logging(settings.logging.level, settings.logging.json_format)
    if settings.api.autostart:
        get_controller().start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the replication worker on API shutdown."""
    controller = _controller
    if controller is not None and controller.is_running:
        # stop(wait=True) joins the worker thread
        await run_in_threadpool(controller.stop, wait=True, timeout=10)
