import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

import aiofiles
import aiofiles.os
from pydantic import TypeAdapter, ValidationError

from exceptions import PersistenceError, RecordNotFound
from logging_config import get_logger
from models import FileRecord

logger = get_logger(__name__)

records_adapter = TypeAdapter(List[FileRecord])


class MetadataStore:
    """In-memory index of live FileRecords, written through to a JSON snapshot.

    Every mutation changes the index and rewrites the full snapshot while
    holding ``self._lock``; a failed write puts the index back as it was and
    raises ``PersistenceError``. Reads never block on the lock.
    """

    def __init__(self, snapshot_path: Union[str, Path]):
        self.snapshot_path = Path(snapshot_path)
        self._records: Dict[str, FileRecord] = {}
        self._lock = asyncio.Lock()
        self.initialized = False

    async def initialize(self):
        if self.initialized:
            return
        await aiofiles.os.makedirs(self.snapshot_path.parent, exist_ok=True)
        try:
            async with aiofiles.open(self.snapshot_path, 'rb') as f:
                data = await f.read()
        except FileNotFoundError:
            data = b""
        except OSError as e:
            raise PersistenceError(f"Failed to initialize metadata store: {e}") from e

        if data.strip():
            try:
                records = records_adapter.validate_json(data)
            except ValidationError as e:
                raise PersistenceError(f"Metadata snapshot {self.snapshot_path} is corrupt: {e}") from e
            self._records = {record.id: record for record in records}
        self.initialized = True
        logger.info(f"Loaded {len(self._records)} file record(s) from {self.snapshot_path}")

    async def _persist(self):
        payload = records_adapter.dump_json(list(self._records.values()), indent=2)
        tmp_path = self.snapshot_path.with_name(f".{self.snapshot_path.name}.tmp")
        try:
            async with aiofiles.open(tmp_path, 'wb') as f:
                await f.write(payload)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await aiofiles.os.replace(tmp_path, self.snapshot_path)
        except OSError as e:
            logger.error(f"Failed to persist metadata to {self.snapshot_path}: {e}")
            raise PersistenceError(f"Failed to persist metadata: {e}") from e

    async def put(self, record: FileRecord) -> FileRecord:
        async with self._lock:
            previous = self._records.get(record.id)
            self._records[record.id] = record
            try:
                await self._persist()
            except PersistenceError:
                if previous is None:
                    self._records.pop(record.id, None)
                else:
                    self._records[record.id] = previous
                raise
        return record

    def get(self, file_id: str) -> FileRecord:
        record = self._records.get(file_id)
        if record is None:
            raise RecordNotFound(file_id)
        return record

    def contains(self, file_id: str) -> bool:
        return file_id in self._records

    def list(self) -> List[FileRecord]:
        return list(self._records.values())

    def __len__(self):
        return len(self._records)

    async def delete(self, file_id: str) -> FileRecord:
        async with self._lock:
            record = self._records.pop(file_id, None)
            if record is None:
                raise RecordNotFound(file_id)
            try:
                await self._persist()
            except PersistenceError:
                self._records[file_id] = record
                raise
        return record

    def total_bytes(self) -> int:
        return sum(record.size_bytes for record in self._records.values())

    def expired(self, now: datetime) -> List[FileRecord]:
        return [record for record in self._records.values() if record.is_expired(now)]

    async def reconcile(self, file_ids: Optional[List[str]] = None) -> int:
        """Drop records whose file no longer exists on disk.

        Only ``file_ids`` are checked when given, otherwise every record.
        Returns the number of records removed.
        """
        async with self._lock:
            candidates = [
                self._records[file_id]
                for file_id in (file_ids if file_ids is not None else list(self._records))
                if file_id in self._records
            ]
            orphaned = []
            for record in candidates:
                if not await aiofiles.os.path.isfile(record.storage_path):
                    orphaned.append(record)
            if not orphaned:
                return 0

            for record in orphaned:
                del self._records[record.id]
            try:
                await self._persist()
            except PersistenceError:
                for record in orphaned:
                    self._records[record.id] = record
                raise

        for record in orphaned:
            logger.warning(f"Removed orphaned metadata for {record.id}: file {record.storage_path} is missing")
        return len(orphaned)
