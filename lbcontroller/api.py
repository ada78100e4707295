"""FastAPI status endpoints for the load balancer controller."""

import asyncio
from typing import Optional

from fastapi import FastAPI, HTTPException, Request

from .controller import RESYNC_KEY, LoadBalancerController
from .logging_config import get_logger, log_api_request, log_api_response, log_function_entry, log_function_exit
from .models import IngressConfig, SyncStatus

logger = get_logger(__name__)

app = FastAPI(
    title="lbcontroller",
    description="Ingress load balancer controller status",
    version="0.1.0",
    docs_url="/docs",
    redoc_url=None,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests and responses."""
    start_time = asyncio.get_event_loop().time()

    log_api_request(logger, request.method, str(request.url.path),
                    client_ip=request.client.host if request.client else "unknown")

    response = await call_next(request)

    duration = asyncio.get_event_loop().time() - start_time
    log_api_response(logger, request.method, str(request.url.path),
                     response.status_code,
                     duration_ms=round(duration * 1000, 2))
    return response


controller: Optional[LoadBalancerController] = None


async def get_controller() -> LoadBalancerController:
    """Get the global controller instance."""
    if controller is None:
        raise HTTPException(status_code=503, detail="Controller not initialized")
    return controller


def initialize_controller(lb_controller: Optional[LoadBalancerController]) -> None:
    """Install the controller the endpoints report on."""
    global controller
    log_function_entry(logger, "initialize_controller")
    controller = lb_controller
    log_function_exit(logger, "initialize_controller", initialized=lb_controller is not None)


@app.get("/healthz")
async def health_check():
    """Health check endpoint."""
    ctrl = await get_controller()
    if ctrl.queue.shutting_down:
        raise HTTPException(status_code=503, detail="Controller shutting down")
    return {"status": "healthy", "service": "lbcontroller"}


@app.get("/config", response_model=IngressConfig)
async def get_config():
    """The configuration last handed to the reloader, without key material."""
    ctrl = await get_controller()
    if ctrl.last_config is None:
        raise HTTPException(status_code=404, detail="No configuration applied yet")
    return ctrl.last_config


@app.get("/status", response_model=SyncStatus)
async def get_status():
    """Counters and state of the reconcile loop."""
    ctrl = await get_controller()
    status = ctrl.sync_status.model_copy()
    status.queue_depth = len(ctrl.queue)
    return status


@app.post("/sync")
async def trigger_sync():
    """Queue a full rebuild."""
    ctrl = await get_controller()
    queued = ctrl.queue.add(RESYNC_KEY)
    logger.info("Manual sync requested", queued=queued)
    return {"status": "queued" if queued else "pending"}


@app.on_event("startup")
async def startup_event():
    """Start the controller threads."""
    if controller:
        controller.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the controller, withdrawing its addresses."""
    if controller:
        await asyncio.get_running_loop().run_in_executor(None, controller.stop)
