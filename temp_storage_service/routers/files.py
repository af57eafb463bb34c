from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse

import crud, schemas
from ingest import IngestPipeline
from logging_config import get_logger
from metadata_store import MetadataStore
from storage import FileStorage
from sweeper import LifecycleSweeper
from upload_stream import MultipartUpload

logger = get_logger(__name__)

router = APIRouter(
    tags=["files"],
)

def get_store(request: Request) -> MetadataStore:
    return request.app.state.metadata_store

def get_storage(request: Request) -> FileStorage:
    return request.app.state.file_storage

def get_pipeline(request: Request) -> IngestPipeline:
    return request.app.state.ingest_pipeline

def get_sweeper(request: Request) -> LifecycleSweeper:
    return request.app.state.sweeper

UPLOAD_REQUEST_BODY = {
    "required": True,
    "content": {
        "multipart/form-data": {
            "schema": {
                "type": "object",
                "required": ["file"],
                "properties": {"file": {"type": "string", "format": "binary"}},
            },
        },
    },
}

@router.post(
    "/upload",
    response_model=schemas.FileRecordPublic,
    status_code=201,
    openapi_extra={"requestBody": UPLOAD_REQUEST_BODY},
)
async def upload_file(
    request: Request,
    pipeline: IngestPipeline = Depends(get_pipeline),
):
    # parsed by hand so the size gate runs while the body is still arriving
    upload = await MultipartUpload(request.stream(), request.headers.get("content-type", "")).open()
    declared_type = upload.content_type or "application/octet-stream"
    original_name = upload.filename or "upload"
    logger.info(f"Upload request for filename: '{original_name}', content_type: '{declared_type}'")
    record = await pipeline.ingest(
        upload.chunks(),
        original_name=original_name,
        declared_type=declared_type,
    )
    return schemas.FileRecordPublic.from_record(record)

@router.get("/files", response_model=schemas.FileListResponse)
async def list_files(
    store: MetadataStore = Depends(get_store),
    pipeline: IngestPipeline = Depends(get_pipeline),
):
    records = crud.list_file_records(store)
    return schemas.FileListResponse(
        files=[schemas.FileRecordPublic.from_record(record) for record in records],
        summary=crud.get_storage_summary(store, pipeline.policy.max_total_bytes),
    )

@router.get("/files/{file_id}", response_model=schemas.FileRecordPublic)
async def get_file_metadata_endpoint(
    file_id: str,
    store: MetadataStore = Depends(get_store),
    storage: FileStorage = Depends(get_storage),
):
    record = await crud.get_file_record(store, storage, file_id)
    return schemas.FileRecordPublic.from_record(record)

@router.get("/download/{file_id}")
async def download_file(
    file_id: str,
    store: MetadataStore = Depends(get_store),
    storage: FileStorage = Depends(get_storage),
):
    logger.info(f"Download request for file_id: {file_id}")
    record = await crud.get_file_record(store, storage, file_id)
    logger.debug(f"Serving file {file_id} as '{record.original_name}'")
    return FileResponse(
        path=record.storage_path,
        filename=record.original_name,
        media_type=record.effective_type,
    )

@router.delete("/files/{file_id}", response_model=schemas.DeletedFile)
async def delete_file(
    file_id: str,
    store: MetadataStore = Depends(get_store),
    storage: FileStorage = Depends(get_storage),
):
    logger.info(f"Delete request for file_id: {file_id}")
    record = await crud.delete_file_record(store, storage, file_id)
    return schemas.DeletedFile(file_id=record.id, original_name=record.original_name)

@router.post("/cleanup", response_model=schemas.SweepResult)
async def run_cleanup(sweeper: LifecycleSweeper = Depends(get_sweeper)):
    logger.info("On-demand cleanup requested")
    return await sweeper.run_sweep()

@router.get("/health", response_model=schemas.HealthResponse)
async def health(
    store: MetadataStore = Depends(get_store),
    sweeper: LifecycleSweeper = Depends(get_sweeper),
    pipeline: IngestPipeline = Depends(get_pipeline),
):
    policy = pipeline.policy
    return schemas.HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        storage=crud.get_storage_summary(store, policy.max_total_bytes),
        max_file_size=policy.max_file_bytes,
        allowed_types=sorted(policy.allowed_types),
        sweeper=sweeper.status(),
    )
