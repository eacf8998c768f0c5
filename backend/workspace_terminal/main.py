from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from workspace_terminal import __version__
from workspace_terminal.core.config import settings
from workspace_terminal.core.exceptions import (
    ResourceNotFoundError,
    WorkspaceTerminalError,
)
from workspace_terminal.core.logging_config import logger
from workspace_terminal.core.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    RequestSizeLimitMiddleware,
)
from workspace_terminal.api.v1.router import api_router
from workspace_terminal.modules.terminal.session_registry import SessionRegistry
from workspace_terminal.services.session_reaper import SessionReaper


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Workspace root: {settings.WORKSPACE_ROOT}")
    logger.info("=" * 60)

    settings.WORKSPACE_DIR.mkdir(parents=True, exist_ok=True)

    registry = SessionRegistry()
    reaper = SessionReaper(registry)
    app.state.session_registry = registry
    app.state.session_reaper = reaper

    if settings.TERMINAL_REAPER_ENABLED:
        await reaper.start()
    else:
        logger.info("Session reaper disabled")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")

    if reaper.running:
        await reaper.stop()

    # Terminates every live process so none outlives the service
    await registry.shutdown()


app = FastAPI(
    title=settings.APP_NAME,
    description="Interactive terminal sessions scoped to project workspaces",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    redirect_slashes=False  # Prevent 307 redirects that break CORS
)

# Add middleware (order matters - last added runs first)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)


# Exception handlers
@app.exception_handler(WorkspaceTerminalError)
async def workspace_terminal_exception_handler(request: Request, exc: WorkspaceTerminalError):
    status_code = 404 if isinstance(exc, ResourceNotFoundError) else 400
    logger.warning(f"{exc.code}: {exc.message}", extra={"event_type": "handled_error", "error_code": exc.code})
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint"""
    registry = getattr(request.app.state, "session_registry", None)
    return {
        "status": "healthy",
        "app_name": settings.APP_NAME,
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "sessions": len(registry) if registry is not None else 0,
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")


def run():
    """Console entry point"""
    import uvicorn
    uvicorn.run(
        "workspace_terminal.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.DEBUG
    )


if __name__ == "__main__":
    run()
