"""Main FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from citizenconnect.api import realtime
from citizenconnect.api.routes import router
from citizenconnect.config import configure_logging, get_settings
from citizenconnect.database import init_db
from citizenconnect.schemas import ErrorResponse
from citizenconnect.services.errors import CitizenConnectError

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    configure_logging(settings)
    init_db()
    realtime.hub.bind_loop(asyncio.get_running_loop())
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield
    logger.info(f"{settings.app_name} shutting down")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Municipal complaint tracking: lifecycle, assignment and real-time notifications.",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CitizenConnectError)
async def citizenconnect_error_handler(request: Request, exc: CitizenConnectError):
    """Render service-layer errors with their status and structured body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="internal_error", message="An unexpected error occurred").model_dump(),
    )


# Include API routes
app.include_router(router, prefix=settings.api_prefix)
app.include_router(realtime.router)


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": settings.app_name, "version": settings.app_version}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("citizenconnect.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
