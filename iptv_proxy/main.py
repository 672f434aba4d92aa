"""
IPTV Tuner Proxy - FastAPI Backend

Emulates an HDHomeRun network tuner so DVR software (Plex and friends) can
use IPTV playlists as live TV, with a synthesized XMLTV guide.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from iptv_proxy.config import get_settings
from iptv_proxy.dependencies import limiter
from iptv_proxy.routers import catalog, epg, hdhomerun, streams
from iptv_proxy.services.store import get_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("Starting IPTV Tuner Proxy...")

    store = await get_store()
    logger.info("Document store initialized")

    if await store.load_catalog() is None:
        logger.warning("No channel catalog yet, run the channel probe (POST /api/catalog/refresh)")
    if await store.load_epg() is None:
        logger.warning("No EPG yet, generate it (POST /api/epg/refresh)")

    yield

    logger.info("Shutting down IPTV Tuner Proxy...")


# Create FastAPI app
settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="HDHomeRun tuner emulation for IPTV playlists",
    lifespan=lifespan
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(hdhomerun.router)
app.include_router(epg.router)
app.include_router(streams.router)
app.include_router(catalog.router)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Error handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "iptv_proxy.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
