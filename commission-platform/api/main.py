"""
Commission Platform API - Main Application.

FastAPI application with CORS enabled for frontend communication.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.settings import get_settings

__version__ = "0.1.0"

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title="Commission Platform API",
    description="REST API for commission splits, payment distribution and reconciliation",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# TODO: Restrict origins once the CRM frontend domain is fixed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RuntimeError)
async def persistence_error_handler(request: Request, exc: RuntimeError):
    """Persistence failures surface as 500s with the repository message."""
    logger.error(
        f"Unhandled persistence error on {request.method} {request.url.path}: {exc}",
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content={"error": "PersistenceError", "detail": str(exc), "status_code": 500},
    )


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "commission-platform-api"
    }


@app.get("/", tags=["Root"])
def root():
    return {
        "message": "Commission Platform API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import commissions, expediente

app.include_router(commissions.router, prefix="/api/v1", tags=["Commissions"])
app.include_router(expediente.router, prefix="/api/v1", tags=["Expediente"])
