import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from servicedesk.core.config import settings
from servicedesk.core.database import AsyncSessionLocal, engine
from servicedesk.core.exceptions import ValidationError, WorkflowError
from servicedesk.core.sse import ConnectionRegistry
from servicedesk.api.v1 import api_router
from servicedesk.middleware.monitoring import MonitoringMiddleware, configure_structured_logging
from servicedesk.services.email_service import EmailSender
from servicedesk.services.notification_dispatcher import NotificationDispatcher
from servicedesk.services.notification_queue import NotificationQueue

# Configure structured logging
if settings.ENABLE_STRUCTURED_LOGGING:
    configure_structured_logging(
        log_level="DEBUG" if settings.DEBUG else "INFO",
        json_format=not settings.DEBUG  # Use JSON in production, plain text in debug
    )
else:
    logging.basicConfig(
        level=logging.INFO if not settings.DEBUG else logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Owns the live-push registry and the notification workers for the
    lifetime of the process.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    registry = ConnectionRegistry()
    dispatcher = NotificationDispatcher(AsyncSessionLocal, registry, EmailSender())
    queue = NotificationQueue(dispatcher)
    queue.start()

    app.state.connection_registry = registry
    app.state.notification_queue = queue

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")
    await queue.stop(timeout=settings.NOTIFICATION_SHUTDOWN_TIMEOUT_SECONDS)
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Ticket lifecycle and purchase-order approval workflow API",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request id + logging (outermost - runs first)
app.add_middleware(MonitoringMiddleware)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed bodies and parameters in the same shape as ValidationError."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    error = ValidationError("; ".join(problems) or "Invalid request")
    logger.info(f"{error.error_code} on {request.method} {request.url.path}: {error.message}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "InternalError", "detail": "Internal server error"},
    )


# Include API router
app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check including notification queue and SSE connection status."""
    queue = getattr(request.app.state, "notification_queue", None)
    registry = getattr(request.app.state, "connection_registry", None)
    return {
        "status": "healthy",
        "notifications": queue.get_status() if queue else None,
        "sse": registry.get_stats() if registry else None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "servicedesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
