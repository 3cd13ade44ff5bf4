import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from countries_api_server.api_key_routes import router as api_key_router
from countries_api_server.auth import usage_dispatcher
from countries_api_server.config import settings
from countries_api_server.country_routes import router as country_router
from countries_api_server.database import init_db
from countries_api_server.health import metrics, router as health_router
from countries_api_server.logging_config import (
    get_logger,
    log_exception,
    log_request,
    setup_logging,
)
from countries_api_server.user_routes import router as user_router

setup_logging(
    log_level=settings.log_level,
    log_format=settings.log_format,
    log_file=settings.log_file_path if settings.log_file_enabled else None,
    log_max_bytes=settings.log_file_max_size,
    log_backup_count=settings.log_file_backup_count,
)

logger = get_logger("startup")

# Context variable for request ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("service_started", environment=settings.environment, version=settings.app_version)
    yield
    # Let in-flight usage bookkeeping land before the process exits
    usage_dispatcher.drain(timeout=10)
    logger.info("service_stopped")


app = FastAPI(
    title="Countries API",
    description="Country data for API key holders, with per-user key management and usage logs.",
    version=settings.app_version,
    lifespan=lifespan,
)

if settings.cors_enabled:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    """Add security headers to all responses"""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Tag each request with an id, log it and count its status"""
    request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    structlog.contextvars.bind_contextvars(request_id=request_id)

    log_request(
        request.method,
        request.url.path,
        request_id,
        client_ip=request.client.host if request.client else "unknown",
    )
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception:
        metrics.record_request(500)
        raise
    finally:
        structlog.contextvars.unbind_contextvars("request_id")

    log_request(
        request.method,
        request.url.path,
        request_id,
        status_code=response.status_code,
        duration_ms=(time.perf_counter() - started) * 1000,
    )
    metrics.record_request(response.status_code)

    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    request_id = request_id_var.get("")

    log_exception(
        exc,
        context={
            "method": request.method,
            "path": request.url.path,
            "request_id": request_id,
        }
    )

    return JSONResponse(
        content={"detail": "Internal server error", "request_id": request_id},
        status_code=500,
        headers={"X-Request-ID": request_id},
    )


app.include_router(health_router)
app.include_router(user_router)
app.include_router(api_key_router)
app.include_router(country_router)


@app.get("/")
async def read_root():
    return {"message": "Countries API is running."}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "countries_api_server.main_api:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )
