"""
FastAPI server for the marketplace core.

Mounts the job, wallet, withdrawal, dispute and trust routers; maps domain
errors to the {success: false, error: {code, message}} envelope. When
TRUST_WORKER_ENABLED is set, the lifespan starts the periodic runner in a
background thread.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend_careconnect import __version__
from backend_careconnect.api_server.admin_routes import admin_router, wallet_router
from backend_careconnect.api_server.jobs_routes import router as jobs_router
from backend_careconnect.api_server.payout_routes import (
    admin_dispute_router,
    admin_withdrawal_router,
    dispute_router,
    withdrawal_router,
)
from backend_careconnect.care_logging import get_logger
from backend_careconnect.config import get_settings
from backend_careconnect.core.exceptions import CareConnectError
from backend_careconnect.database import init_db

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables; start the periodic runner when enabled and stop it on shutdown."""
    from backend_careconnect.agent_worker.runner import (
        PeriodicRunnerConfig,
        start_background_runner,
        stop_background_runner,
    )

    init_db()
    runner = None
    if get_settings().trust_worker_enabled:
        config = PeriodicRunnerConfig.from_settings()
        runner = start_background_runner(config)
        logger.info("api_periodic_runner_started", interval_sec=config.interval_sec)

    yield

    if runner is not None:
        stop_background_runner(*runner)
        logger.info("api_periodic_runner_stopped")


app = FastAPI(
    title="Backend CareConnect API",
    description="Job lifecycle, escrow settlement and trust levels for the care marketplace.",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(jobs_router)
app.include_router(withdrawal_router)
app.include_router(wallet_router)
app.include_router(admin_router)
app.include_router(admin_withdrawal_router)
app.include_router(dispute_router)
app.include_router(admin_dispute_router)


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": {"code": code, "message": message}})


@app.exception_handler(CareConnectError)
async def careconnect_error_handler(request: Request, exc: CareConnectError) -> JSONResponse:
    logger.info(
        "api_domain_error",
        path=request.url.path,
        status_code=exc.status_code,
        code=exc.code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else "Invalid request"
    return _error(400, "VALIDATION_ERROR", message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = {401: "UNAUTHORIZED", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}.get(exc.status_code, "HTTP_ERROR")
    return _error(exc.status_code, code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("api_unhandled_error", path=request.url.path, error=str(exc))
    return _error(500, "SERVER_ERROR", "Internal server error")


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness check: API is up."""
    return {"status": "ok"}
