from typing import List

from exceptions import RecordNotFound
from logging_config import get_logger
from metadata_store import MetadataStore
from models import FileRecord
from quota import usage_percentage
from schemas import StorageSummary
from storage import FileStorage, validate_file_id

logger = get_logger(__name__)


async def get_file_record(store: MetadataStore, storage: FileStorage, file_id: str) -> FileRecord:
    """Fetch a record, dropping it if its file has disappeared from disk."""
    validate_file_id(file_id)
    record = store.get(file_id)
    if not await storage.exists(record.storage_path):
        logger.error(f"File for ID {file_id} found in metadata but not in storage. Cleaning up metadata.")
        await store.reconcile([file_id])
        raise RecordNotFound(file_id, "File not found on disk")
    return record


def list_file_records(store: MetadataStore) -> List[FileRecord]:
    # newest first; ties keep reverse commit order
    return sorted(reversed(store.list()), key=lambda record: record.created_at, reverse=True)


async def delete_file_record(store: MetadataStore, storage: FileStorage, file_id: str) -> FileRecord:
    """Delete the file, then its record. A file already missing is not an error."""
    validate_file_id(file_id)
    record = store.get(file_id)
    if not await storage.remove(record.storage_path):
        logger.warning(f"File {file_id} was already missing from storage")
    removed = await store.delete(file_id)
    logger.info(f"Deleted file {file_id} ('{removed.original_name}')")
    return removed


def get_storage_summary(store: MetadataStore, max_storage_bytes: int) -> StorageSummary:
    total = store.total_bytes()
    return StorageSummary(
        total_files=len(store),
        total_storage=total,
        total_storage_formatted=f"{total / 1024 / 1024:.2f} MB",
        max_storage=max_storage_bytes,
        usage_percentage=usage_percentage(total, max_storage_bytes),
    )
