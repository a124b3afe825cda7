"""
Integrity Monitor Service - FastAPI Application
"""
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .api import router as integrity_router
from .config import settings
from .utils.logging_config import setup_logging

setup_logging(
    level=settings.LOG_LEVEL,
    log_to_file=settings.LOG_TO_FILE,
    log_dir=settings.LOG_DIR,
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title=settings.APP_NAME,
    description="Exam integrity monitoring over webcam frames",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests with timing."""
    start = time.time()
    response = await call_next(request)
    path = request.url.path
    if path not in ["/health", "/api/integrity/stream"]:
        duration_ms = int((time.time() - start) * 1000)
        logger.info(f"{request.method} {path} -> {response.status_code} in {duration_ms}ms")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(integrity_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "integrity-monitor"}


@app.on_event("startup")
async def startup_event():
    logger.info(f"{settings.APP_NAME} starting (debug={settings.DEBUG})")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
