"""
NAS Agent - FastAPI Application Entry Point

REST API for managing ZFS datasets and their per-user NFS shares.
"""

import logging
import os
import ssl
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session

from nas_agent import __version__
from nas_agent.config import settings
from nas_agent.db.repository import UserRepository
from nas_agent.db.session import get_engine
from nas_agent.errors import GatewayError, NASAgentError
from nas_agent.routers import auth, files, health, pools, shares, users
from nas_agent.services.auth import ensure_admin_user
from nas_agent.services.zfs import zfs_service

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"NAS Agent v{__version__} starting...")
    logger.info(f"Hostname: {settings.hostname}")
    logger.info(f"API Port: {settings.api_port}")

    with Session(get_engine()) as session:
        admin = ensure_admin_user(UserRepository(session))
        logger.info(f"Admin account: {admin.email}")

    # Check ZFS availability
    try:
        pools_list = zfs_service.list_pools()
    except GatewayError as e:
        logger.warning(f"ZFS unavailable ({e.message}) - agent will still start")
        pools_list = []
    if any(p.name == settings.default_pool for p in pools_list):
        logger.info(f"Managing pool {settings.default_pool}")
    else:
        logger.warning(f"Pool {settings.default_pool} not found among {[p.name for p in pools_list]}")

    yield

    logger.info("NAS Agent shutting down...")


# Create FastAPI app
app = FastAPI(
    title="NAS Agent API",
    description="REST API for ZFS dataset and NFS share management",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NASAgentError)
async def nas_agent_exception_handler(request: Request, exc: NASAgentError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "msg": exc.message}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"status": "error", "msg": "invalid request", "errors": jsonable_errors(exc)}
    )


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"status": "error", "msg": "Internal server error", "error": str(exc)}
    )


# Include routers
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(pools.router)
app.include_router(shares.router)
app.include_router(files.router)


@app.get("/")
async def root():
    """Root endpoint - points to docs."""
    return {
        "name": "NAS Agent",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/v1/health"
    }


def run():
    """Run the application with uvicorn."""
    import uvicorn

    ssl_context = None
    if settings.ssl_enabled:
        if os.path.exists(settings.ssl_cert_path) and os.path.exists(settings.ssl_key_path):
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            ssl_context.load_cert_chain(settings.ssl_cert_path, settings.ssl_key_path)
            logger.info("SSL enabled with certificate")
        else:
            logger.warning("SSL enabled but cert/key not found - starting without SSL")

    uvicorn.run(
        "nas_agent.main:app",
        host=settings.api_host,
        port=settings.api_port,
        ssl_keyfile=settings.ssl_key_path if ssl_context else None,
        ssl_certfile=settings.ssl_cert_path if ssl_context else None,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
