from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import Settings, settings
from exceptions import FileServiceError
from ingest import IngestPipeline, UploadPolicy
from logging_config import get_logger
from metadata_store import MetadataStore
from routers import files as files_router
from storage import FileStorage
from sweeper import LifecycleSweeper

logger = get_logger(__name__)

async def build_services(current_settings: Settings):
    """Create and initialize the store, storage, pipeline and sweeper."""
    file_storage = FileStorage(current_settings.UPLOAD_DIR)
    await file_storage.initialize()
    metadata_store = MetadataStore(current_settings.METADATA_FILE)
    await metadata_store.initialize()
    policy = UploadPolicy.from_settings(current_settings)
    pipeline = IngestPipeline(metadata_store, file_storage, policy)
    sweeper = LifecycleSweeper(
        metadata_store,
        file_storage,
        interval=current_settings.cleanup_interval,
        retention=current_settings.retention,
    )
    return metadata_store, file_storage, pipeline, sweeper

def attach_services(app: FastAPI, metadata_store, file_storage, pipeline, sweeper):
    app.state.metadata_store = metadata_store
    app.state.file_storage = file_storage
    app.state.ingest_pipeline = pipeline
    app.state.sweeper = sweeper

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Temporary File Storage Service starting up...")
    services = await build_services(settings)
    attach_services(app, *services)
    logger.info(f"File storage path configured at: {settings.UPLOAD_DIR}")
    logger.info(f"Metadata snapshot at: {settings.METADATA_FILE}")
    logger.info(f"Max file size: {settings.MAX_FILE_SIZE_MB} MB, max storage: {settings.MAX_STORAGE_MB} MB")
    logger.info(f"File retention: {settings.FILE_RETENTION_HOURS} hours, cleanup interval: {settings.CLEANUP_INTERVAL_HOURS} hours")
    sweeper = app.state.sweeper
    sweeper.start()
    yield
    await sweeper.stop()
    logger.info("Temporary File Storage Service shutting down...")

app = FastAPI(
    title="Temporary File Storage Service",
    version="0.1.0",
    lifespan=lifespan
)

@app.exception_handler(FileServiceError)
async def file_service_error_handler(request: Request, exc: FileServiceError):
    if exc.client_safe:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    else:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_detail())

app.include_router(files_router.router, prefix="/api")

@app.get("/")
async def read_root():
    return {
        "service": "Temporary File Storage Service",
        "version": app.version,
        "status": "operational",
        "endpoints": {
            "upload": "POST /api/upload",
            "list_files": "GET /api/files",
            "get_file": "GET /api/files/{file_id}",
            "download_file": "GET /api/download/{file_id}",
            "delete_file": "DELETE /api/files/{file_id}",
            "cleanup": "POST /api/cleanup",
            "health": "GET /api/health",
        },
    }

if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting service on {settings.HOST}:{settings.PORT}")
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT)
