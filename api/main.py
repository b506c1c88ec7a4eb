"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from api.routes import health, backup, parts
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.database import engine
from core.exceptions import BackupException
from core.logging import setup_logging
from storage import close_storage, get_blob_store
import logging

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Parts Inventory Backend API",
    description="Inventory service with full backup, restore and reset",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(backup.router)
app.include_router(parts.router)


@app.exception_handler(BackupException)
async def backup_exception_handler(request: Request, exc: BackupException):
    """Structured JSON for every domain error"""
    request_id = getattr(request.state, "request_id", "-")
    if exc.status_code >= 500:
        logger.error(f"[{request_id}] {exc}")
    else:
        logger.warning(f"[{request_id}] {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Same JSON shape for anything that escaped the domain hierarchy"""
    request_id = getattr(request.state, "request_id", "-")
    logger.error(f"[{request_id}] Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    error = BackupException(
        "Internal server error",
        context={"path": request.url.path, "request_id": request_id},
        original_exception=exc
    )
    payload = error.to_dict()
    payload["error_type"] = type(exc).__name__
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    setup_logging()
    logger.info("Starting Parts Inventory Backend API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
    logger.info(f"Blob store: {get_blob_store().describe()}")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Parts Inventory Backend API")
    await close_storage()
    await engine.dispose()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Parts Inventory Backend API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "export": "/api/backup/export/full",
            "import": "/api/backup/import/full",
            "stage": "/api/backup/import/stage",
            "import_staged": "/api/backup/import/staged",
            "reset": "/api/backup/reset",
            "delete_part": "/api/parts/{part_id}"
        }
    }
