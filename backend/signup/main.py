"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signup.api.deps import get_registry
from signup.api.v1 import wizard
from signup.core.config import settings
from signup.core.logging import get_logger, setup_logging
from signup.errors import TransportError, WorkflowError


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging(
        "DEBUG" if settings.APP_ENV == "development" else settings.LOG_LEVEL,
        json_output=settings.APP_ENV != "development",
    )
    logger = get_logger("startup")
    logger.info(
        "Application starting",
        env=settings.APP_ENV,
        backend=settings.BACKEND_API_BASE_URL,
        layout=settings.WIZARD_LAYOUT,
    )
    yield
    registry = app.dependency_overrides.get(get_registry, get_registry)()
    await registry.aclose()
    logger.info("Application shutting down")


app = FastAPI(
    title="Policy Signup API",
    description="Guided policy application workflow and backend record creation",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """Errors raised outside a wizard outcome, e.g. reference data unavailable."""
    code = 502 if isinstance(exc, TransportError) else 500
    get_logger("api").error("Request failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=code, content={"detail": exc.to_dict()})


API_PREFIX = "/api/v1"
app.include_router(wizard.router, prefix=API_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Public health-check endpoint."""
    return {"status": "ok", "env": settings.APP_ENV}
