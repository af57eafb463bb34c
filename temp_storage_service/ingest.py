from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AbstractSet, AsyncIterator, Callable, Optional, Union

from exceptions import ExtensionBlocked, FileServiceError, StorageIOError, TypeNotAllowed
from logging_config import get_logger
from metadata_store import MetadataStore
from models import FileRecord
from quota import admit, check_file_size
from sniffer import read_signature, resolve_content_type, sniff_bytes
from storage import FileStorage, iter_bytes, split_name

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UploadPolicy:
    max_file_bytes: int
    max_total_bytes: int
    retention: timedelta
    allowed_types: AbstractSet[str]
    blocked_extensions: AbstractSet[str]

    @classmethod
    def from_settings(cls, settings) -> "UploadPolicy":
        return cls(
            max_file_bytes=settings.max_file_size_bytes,
            max_total_bytes=settings.max_storage_bytes,
            retention=settings.retention,
            allowed_types=settings.allowed_mime_types,
            blocked_extensions=settings.blocked_extensions,
        )


def check_extension(original_name: str, blocked: AbstractSet[str]) -> None:
    _, ext = split_name(original_name)
    ext = ext.lower()
    if ext and ext in blocked:
        raise ExtensionBlocked(ext)


class IngestPipeline:
    """Validates an upload and commits it as a file plus a FileRecord.

    Either both the file and its record exist afterwards, or neither does.
    """

    def __init__(
        self,
        store: MetadataStore,
        storage: FileStorage,
        policy: UploadPolicy,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.storage = storage
        self.policy = policy
        self.clock = clock

    async def ingest(
        self,
        source: Union[bytes, AsyncIterator[bytes]],
        original_name: str,
        declared_type: str,
        declared_size: Optional[int] = None,
    ) -> FileRecord:
        # gates that need no disk I/O
        check_extension(original_name, self.policy.blocked_extensions)
        if declared_type not in self.policy.allowed_types:
            raise TypeNotAllowed(declared_type)
        if isinstance(source, (bytes, bytearray)):
            declared_size = len(source)
            source = iter_bytes(bytes(source))
        if declared_size is not None:
            check_file_size(declared_size, self.policy.max_file_bytes)

        file_id = self.storage.reserve(original_name)
        path = self.storage.path_for(file_id)
        try:
            size = await self.storage.write(file_id, source, max_bytes=self.policy.max_file_bytes)

            sample = await read_signature(path)
            sniffed = sniff_bytes(sample)
            resolve_content_type(sniffed, declared_type, self.policy.allowed_types, sample)

            admit(self.store.total_bytes(), size, self.policy.max_total_bytes)

            created_at = self.clock()
            record = FileRecord(
                id=file_id,
                original_name=original_name,
                declared_type=declared_type,
                sniffed_type=sniffed,
                size_bytes=size,
                storage_path=str(path),
                created_at=created_at,
                expires_at=created_at + self.policy.retention,
            )
            await self.store.put(record)
        except FileServiceError as e:
            logger.info(f"Rejected upload '{original_name}': {e.message}")
            await self._discard(path)
            raise
        except OSError as e:
            logger.exception(f"I/O error while ingesting '{original_name}' as {file_id}")
            await self._discard(path)
            raise StorageIOError(f"Error saving file {file_id}") from e
        except BaseException:
            # cancelled mid-transfer, most likely a client disconnect
            logger.warning(f"Upload of '{original_name}' interrupted, removing partial file {file_id}")
            await self._discard(path)
            raise
        finally:
            self.storage.release(file_id)

        logger.info(f"Stored '{original_name}' as {file_id} ({size} bytes, expires {record.expires_at.isoformat()})")
        return record

    async def _discard(self, path):
        try:
            await self.storage.remove(path)
        except StorageIOError:
            # left for the sweeper's orphan scan
            logger.error(f"Could not remove rejected upload {path}")
