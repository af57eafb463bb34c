from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FileRecord(BaseModel):
    """One stored file. Records are never mutated, only created and deleted."""

    id: str
    original_name: str
    declared_type: str
    sniffed_type: Optional[str] = None
    size_bytes: int = Field(ge=0)
    storage_path: str
    created_at: datetime
    expires_at: datetime

    model_config = ConfigDict(frozen=True)

    @property
    def effective_type(self) -> str:
        return self.sniffed_type or self.declared_type

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def __repr__(self):
        return f"<FileRecord(id={self.id}, name='{self.original_name}', size={self.size_bytes})>"
