"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dramaforge import __version__
from dramaforge.api.routes import router
from dramaforge.config import ConfigurationError
from dramaforge.engine import DramaEngine, ItemNotFound
from dramaforge.orchestrator.pipeline import InvalidTransition
from dramaforge.services.ports import GenerationError
from dramaforge.store import ProjectNotFound

logger = logging.getLogger(__name__)


def create_app(engine: Optional[DramaEngine] = None) -> FastAPI:
    """Build the API around an engine (a default one is created at startup)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager.

        Startup:
            - Create the engine unless one was injected

        Shutdown:
            - Cancel running stages and close provider HTTP clients
        """
        logger.info("Starting DramaForge API...")
        app.state.engine = engine or DramaEngine()
        logger.info("API startup complete")

        yield

        logger.info("Shutting down DramaForge API...")
        await app.state.engine.close()
        logger.info("API shutdown complete")

    app = FastAPI(
        title="DramaForge API",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS for Vite dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    _register_exception_handlers(app)
    return app


def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": str(exc)})


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProjectNotFound)
    async def project_not_found_handler(request: Request, exc: ProjectNotFound):
        return _error(404, "Project not found", exc)

    @app.exception_handler(ItemNotFound)
    async def item_not_found_handler(request: Request, exc: ItemNotFound):
        return _error(404, "Item not found", exc)

    @app.exception_handler(InvalidTransition)
    async def invalid_transition_handler(request: Request, exc: InvalidTransition):
        return _error(409, "Invalid transition", exc)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.warning(f"Configuration error in {request.method} {request.url.path}: {exc}")
        return _error(503, "Provider not configured", exc)

    @app.exception_handler(GenerationError)
    async def generation_error_handler(request: Request, exc: GenerationError):
        return _error(502, "Generation failed", exc)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(422, "Invalid request", exc)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler to prevent stack traces in API responses."""
        logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
            }
        )


app = create_app()
