"""
FastAPI Application
==================

Main FastAPI application exposing the MCP gateway over HTTP.
"""

from contextlib import asynccontextmanager
import uuid
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from ..config.settings import get_settings, Settings
from ..config.logging import get_logger
from ..core.events import InMemoryEventBus
from ..mcp_server.backend import Backend
from ..models.schemas import ErrorResponse, JSONRPCResponse, RpcErrorCode
from .auth import AuthenticationRequiredError
from .gateway import build_gateway
from .routes.health import router as health_router
from .routes.mcp import router as mcp_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    gateway = app.state.gateway

    # Startup
    logger.info("Starting MCP gateway", environment=gateway.settings.environment)
    await gateway.startup()

    try:
        yield
    finally:
        # Shutdown
        logger.info("Shutting down MCP gateway")
        try:
            await gateway.shutdown()
        except Exception as e:
            logger.error("Error during gateway shutdown", error=str(e))


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[Backend] = None,
    event_bus: Optional[InMemoryEventBus] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to use instead of the environment
        backend: Backend to use instead of ``settings.backend_factory``
        event_bus: Event bus the notification bridge subscribes to

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="MCP gateway with JSON-RPC calls and SSE notifications",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.gateway = build_gateway(settings, backend, event_bus)

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id", "X-Request-ID"],
    )

    app.include_router(health_router)
    app.include_router(mcp_router)

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):  # type: ignore
        """Add request ID to all requests."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response

    # Exception handlers
    @app.exception_handler(AuthenticationRequiredError)
    async def authentication_exception_handler(
        request: Request, exc: AuthenticationRequiredError
    ) -> JSONResponse:
        """Reject unauthenticated calls with a JSON-RPC error body."""
        logger.warning("Authentication required", path=request.url.path)
        body = JSONRPCResponse.failure(RpcErrorCode.AUTHENTICATION_REQUIRED, exc.message).to_dict()
        return JSONResponse(status_code=401, content=body, headers={"WWW-Authenticate": "ApiKey"})

    @app.exception_handler(HTTPException)
    async def custom_http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Custom HTTP exception handler with structured error response."""
        error_response = ErrorResponse(
            error=str(exc.detail),
            error_code=str(exc.status_code),
            details=None,
            request_id=getattr(request.state, "request_id", None),
        )

        logger.error(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            request_id=error_response.request_id,
        )

        return JSONResponse(
            status_code=exc.status_code, content=error_response.model_dump(mode="json")
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(
            "Unexpected error",
            error=str(exc),
            error_type=type(exc).__name__,
            request_id=request_id,
        )

        error_response = ErrorResponse(
            error="Internal server error",
            error_code="INTERNAL_ERROR",
            details={"error_type": type(exc).__name__} if settings.debug else None,
            request_id=request_id,
        )
        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))

    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "mcp_gateway.api.main:app",
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        log_level=settings.log_level.lower(),
        reload=settings.debug and settings.environment == "development",
    )


if __name__ == "__main__":
    main()
