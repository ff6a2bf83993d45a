"""
FastAPI application entry point.
"""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import dialflow.models  # noqa: F401
from dialflow import __version__
from dialflow.broadcasts.router import router as broadcasts_router
from dialflow.config import get_settings
from dialflow.dispatch.scheduler import EngineSupervisor
from dialflow.dispatch.webhooks import router as webhooks_router
from dialflow.dnc.router import router as dnc_router
from dialflow.pacing.router import router as pacing_router
from dialflow.queue.router import router as queue_router
from dialflow.shared.database import get_database_manager
from dialflow.shared.exceptions import (
    AppError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from dialflow.shared.logging import correlation_id_var, get_logger, setup_logging
from dialflow.telephony.factory import get_call_service

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()
    db_manager = get_database_manager()

    logger.info("Application starting", extra={"env": settings.app_env})

    supervisor: EngineSupervisor | None = None
    if settings.engine_enabled:
        supervisor = EngineSupervisor(db_manager, get_call_service(), settings=settings)
        supervisor.start()
        app.state.engine_supervisor = supervisor
        logger.info(
            "Dispatch engine enabled; background tasks created",
            extra={
                "dispatcher_interval_seconds": settings.dispatcher_interval_seconds,
                "sweeper_interval_seconds": settings.sweeper_interval_seconds,
            },
        )

    yield

    logger.info("Shutting down application")

    if supervisor is not None:
        try:
            await supervisor.stop()
        except asyncio.CancelledError:
            pass
        logger.info("Dispatch engine stopped")

    await get_call_service().close()
    await db_manager.close()
    logger.info("Application shutdown complete")


def _error_body(exc: AppError) -> dict:
    return {"detail": {"code": exc.code, "message": exc.message}}


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Dialflow API",
        description="Outbound broadcast queue and dialing engine",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Map domain exceptions to HTTP responses
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content=_error_body(exc))

    @app.exception_handler(ValidationError)
    async def _validation(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=_error_body(exc))

    @app.exception_handler(InvalidStatusTransitionError)
    async def _conflict(_: Request, exc: InvalidStatusTransitionError) -> JSONResponse:
        return JSONResponse(status_code=409, content=_error_body(exc))

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    @app.middleware("http")
    async def correlation_id_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(broadcasts_router)
    app.include_router(queue_router)
    app.include_router(pacing_router)
    app.include_router(dnc_router)
    app.include_router(webhooks_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
