"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..exceptions import ConfigurationError, InvalidRequestError
from .routes import config, process, report

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Subscription & Team Migrator API",
    description="Bulk migration of customers to a new subscription and team",
    version=__version__,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Include routers
app.include_router(process.router, prefix="/api/process", tags=["process"])
app.include_router(config.router, prefix="/api/config", tags=["config"])
app.include_router(report.router, prefix="/api/report", tags=["report"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
