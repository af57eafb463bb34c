from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field


class FileRecordPublic(BaseModel):
    file_id: str
    original_name: str
    declared_type: str
    sniffed_type: Optional[str] = None
    mime_type: str
    size_bytes: int
    size_formatted: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_record(cls, record) -> "FileRecordPublic":
        return cls(
            file_id=record.id,
            original_name=record.original_name,
            declared_type=record.declared_type,
            sniffed_type=record.sniffed_type,
            mime_type=record.effective_type,
            size_bytes=record.size_bytes,
            size_formatted=f"{record.size_bytes / 1024:.2f} KB",
            created_at=record.created_at,
            expires_at=record.expires_at,
        )


class StorageSummary(BaseModel):
    total_files: int
    total_storage: int
    total_storage_formatted: str
    max_storage: int
    usage_percentage: float


class FileListResponse(BaseModel):
    files: List[FileRecordPublic]
    summary: StorageSummary


class DeletedFile(BaseModel):
    file_id: str
    original_name: str
    message: str = "File deleted successfully"


class SweepResult(BaseModel):
    expired_deleted: int = 0
    orphaned_metadata_removed: int = 0
    orphaned_files_removed: int = 0
    errors: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @computed_field
    @property
    def success(self) -> bool:
        return not self.errors


class SweeperStatus(BaseModel):
    is_running: bool
    cleanup_interval_seconds: float
    file_retention_seconds: float
    last_result: Optional[SweepResult] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    storage: StorageSummary
    max_file_size: int
    allowed_types: List[str]
    sweeper: SweeperStatus
