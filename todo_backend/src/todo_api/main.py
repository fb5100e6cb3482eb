import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import AuthError, TodoError
from .logging_config import configure_logging
from .repositories import get_repository
from .routers import todos as todos_router
from .routers import users as users_router
from .scheduler import build_workers
from .settings import get_settings
from .utils import utcnow

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "users", "description": "Registration, login and the current user's profile."},
    {
        "name": "todos",
        "description": "CRUD operations for the current user's todos, recurrence and reordering.",
    },
]

_settings = get_settings()
configure_logging(_settings.log_level)
_started_at = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Start the background workers with the app and stop them on shutdown.

    Shutdown waits for a job that is still running; the wait happens in a
    worker thread so the event loop keeps serving.
    """
    workers = []
    if _settings.enable_scheduler:
        workers = build_workers(get_repository(), _settings)
        for worker in workers:
            worker.start()
    else:
        logger.info("Background workers disabled (ENABLE_SCHEDULER=false)")
    try:
        yield
    finally:
        for worker in workers:
            await run_in_threadpool(worker.stop)


app = FastAPI(
    title="Todo Backend",
    description="Per-user todo API with recurring todos, reordering and cleanup of completed items.",
    version="0.1.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# Configure CORS based on settings (CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": [... pydantic/fastapi error details ...]
        }
    """
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            # ctx may hold the raw exception raised by a validator
            "detail": [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()],
        },
    )


@app.exception_handler(TodoError)
async def todo_error_handler(request: Request, exc: TodoError) -> JSONResponse:
    """
    Render service errors with the same structure as validation errors.

    5xx messages are replaced by a generic one outside development.
    """
    message = exc.message
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
        if not _settings.is_development:
            message = "Internal Server Error"
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "message": message, "detail": exc.detail},
        headers=headers,
    )


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health.
    """
    return {"message": "Healthy", "backend": _settings.persistence_backend}


# PUBLIC_INTERFACE
@app.get("/health", summary="Health Status", tags=["health"])
def health_status():
    """Report status, the current server time and uptime in seconds."""
    return {
        "status": "OK",
        "timestamp": utcnow().isoformat(),
        "uptime": round(time.monotonic() - _started_at, 3),
    }


# Include routers
app.include_router(users_router.router)
app.include_router(todos_router.router)
