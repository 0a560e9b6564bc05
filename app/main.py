from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.config import Settings, get_settings
from app.core.database import Database
from app.core.logging import configure_logging
from app.middleware import TelemetryMiddleware
from app.services.experiments.errors import (
    AllocationMismatchError,
    ExperimentError,
    InvalidRequestError,
    NotFoundError,
    TrafficConfigurationError,
)

logger = structlog.get_logger()

VERSION = "0.1.0"


def _error_response(status_code: int, exc: ExperimentError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error_type": exc.error_code.lower(), **exc.details},
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        database = Database.from_settings(settings)
        await database.create_all()
        app.state.database = database
        logger.info("startup_complete", environment=settings.ENVIRONMENT)
        yield
        # Shutdown
        await database.dispose()
        logger.info("shutdown_complete")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Landing page A/B testing engine: allocation, conversions, significance",
        version=VERSION,
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(TelemetryMiddleware)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(404, exc)

    @app.exception_handler(TrafficConfigurationError)
    async def traffic_configuration_handler(request: Request, exc: TrafficConfigurationError):
        return _error_response(422, exc)

    @app.exception_handler(AllocationMismatchError)
    async def allocation_mismatch_handler(request: Request, exc: AllocationMismatchError):
        return _error_response(409, exc)

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        return _error_response(400, exc)

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.get("/")
    async def root():
        return {
            "app": settings.APP_NAME,
            "version": VERSION,
            "environment": settings.ENVIRONMENT,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run("app.main:app", host=_settings.HOST, port=_settings.PORT)
