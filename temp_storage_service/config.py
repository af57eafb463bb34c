from datetime import timedelta
from pathlib import Path
from typing import FrozenSet

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

env_path = Path(__file__).parent / ".env"

DEFAULT_ALLOWED_MIME_TYPES = ",".join([
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "text/csv",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
])

DEFAULT_BLOCKED_EXTENSIONS = ".exe,.bat,.cmd,.sh,.ps1,.msi,.dll,.scr,.jar,.vbs,.js,.app"

MB = 1024 * 1024


def split_csv(value: str) -> FrozenSet[str]:
    return frozenset(item.strip() for item in value.split(",") if item.strip())


def normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return ext


class Settings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    UPLOAD_DIR: Path = Path("uploads")
    METADATA_FILE: Path = Path("metadata") / "files.json"

    MAX_FILE_SIZE_MB: int = 10
    MAX_STORAGE_MB: int = 1000
    FILE_RETENTION_HOURS: float = 24
    CLEANUP_INTERVAL_HOURS: float = 1

    ALLOWED_MIME_TYPES: str = DEFAULT_ALLOWED_MIME_TYPES
    BLOCKED_EXTENSIONS: str = DEFAULT_BLOCKED_EXTENSIONS

    model_config = SettingsConfigDict(env_file=env_path, extra='ignore')

    @field_validator('MAX_FILE_SIZE_MB')
    @classmethod
    def check_max_file_size(cls, v: int) -> int:
        if v <= 0 or v > 5000:
            raise ValueError("MAX_FILE_SIZE_MB must be between 1 and 5000")
        return v

    @field_validator('MAX_STORAGE_MB')
    @classmethod
    def check_max_storage(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("MAX_STORAGE_MB must be greater than 0")
        return v

    @field_validator('FILE_RETENTION_HOURS', 'CLEANUP_INTERVAL_HOURS')
    @classmethod
    def check_positive_hours(cls, v: float, info) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be greater than 0")
        return v

    @property
    def service_url(self) -> str:
        host = "127.0.0.1" if self.HOST in ("0.0.0.0", "::") else self.HOST
        return f"http://{host}:{self.PORT}"

    @property
    def max_file_size_bytes(self) -> int:
        return self.MAX_FILE_SIZE_MB * MB

    @property
    def max_storage_bytes(self) -> int:
        return self.MAX_STORAGE_MB * MB

    @property
    def retention(self) -> timedelta:
        return timedelta(hours=self.FILE_RETENTION_HOURS)

    @property
    def cleanup_interval(self) -> timedelta:
        return timedelta(hours=self.CLEANUP_INTERVAL_HOURS)

    @property
    def allowed_mime_types(self) -> FrozenSet[str]:
        return split_csv(self.ALLOWED_MIME_TYPES)

    @property
    def blocked_extensions(self) -> FrozenSet[str]:
        return frozenset(normalize_extension(ext) for ext in split_csv(self.BLOCKED_EXTENSIONS))


settings = Settings()
