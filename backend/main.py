"""
Batch Trip Import API Server

FastAPI server that accepts trip archives (ZIP), imports the trips they
describe in background workers, and reports per-job progress.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

import batch_api
from batch_jobs import mark_interrupted_jobs
from batch_processor import BatchProcessor
from config import APP_ENV, FRONTEND_ORIGINS, LOG_LEVEL, STORAGE_BACKEND, STORAGE_DIR, STORAGE_PUBLIC_URL
from db import init_db
from job_runner import JobRunner
from storage import create_storage_provider

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await init_db()
    await mark_interrupted_jobs()

    runner = JobRunner()
    processor = BatchProcessor(create_storage_provider(STORAGE_BACKEND), runner=runner)
    runner.set_handler(processor.process)
    await runner.start()
    batch_api.set_processor(processor)
    logger.info("Batch import service started (env=%s, storage=%s)", APP_ENV, STORAGE_BACKEND)

    try:
        yield
    finally:
        batch_api.set_processor(None)
        await runner.stop()


# Create FastAPI app
app = FastAPI(
    title="Batch Trip Import API",
    description="API for importing trips, stages, media and GPX tracks from ZIP archives",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

app.include_router(batch_api.router)

# Serve locally stored assets
if STORAGE_BACKEND == "local" and STORAGE_PUBLIC_URL.startswith("/"):
    app.mount(STORAGE_PUBLIC_URL, StaticFiles(directory=str(STORAGE_DIR)), name="files")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "batch-trip-import-api"}


# Development server
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
