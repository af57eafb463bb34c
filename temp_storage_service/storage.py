import re
import secrets
import time
from pathlib import Path
from typing import AsyncIterator, List, Optional, Set, Union

import aiofiles
import aiofiles.os

from exceptions import InvalidFileId, StorageIOError
from logging_config import get_logger
from quota import check_file_size

logger = get_logger(__name__)

MAX_ID_LENGTH = 200
CHUNK_SIZE = 1024 * 1024
SAFE_ID_PATTERN = re.compile(r'^[a-zA-Z0-9._-]+$')


def sanitize_component(value: str, max_length: int = 50) -> str:
    return re.sub(r'[^a-zA-Z0-9_-]', '_', value)[:max_length]


def split_name(original_name: str):
    # strip any client-supplied directory part, both separators
    name = original_name.replace("\\", "/").rsplit("/", 1)[-1]
    # "evil.exe." and "evil.exe " are saved as "evil.exe" by some filesystems
    name = name.rstrip(". \t\r\n")
    path = Path(name)
    return path.stem, path.suffix


def generate_file_id(original_name: str) -> str:
    """Build ``<stem>_<ms timestamp>_<16 hex chars><ext>`` from a client name.

    64 bits of randomness on top of the millisecond timestamp make collisions
    practically impossible.
    """
    stem, ext = split_name(original_name)
    safe_stem = sanitize_component(stem) or "file"
    safe_ext = ""
    if ext:
        safe_ext = "." + sanitize_component(ext[1:].lower(), max_length=16)
    timestamp = int(time.time() * 1000)
    return f"{safe_stem}_{timestamp}_{secrets.token_hex(8)}{safe_ext}"


def is_valid_id(file_id: str) -> bool:
    if not file_id or len(file_id) > MAX_ID_LENGTH:
        return False
    if file_id.startswith(".") or ".." in file_id:
        return False
    return bool(SAFE_ID_PATTERN.match(file_id))


def validate_file_id(file_id: str) -> str:
    if not is_valid_id(file_id):
        raise InvalidFileId(file_id)
    return file_id


async def iter_bytes(data: bytes, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


class FileStorage:
    """The storage directory: one file per record, named exactly by its id.

    Ids being written by an ingest are tracked in ``pending`` until the ingest
    either commits its record or cleans up, so the sweeper never mistakes a
    file in flight for an orphan.
    """

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)
        self.pending: Set[str] = set()

    async def initialize(self):
        if not self.base_path.exists():
            logger.info(f"Creating file storage directory at {self.base_path}")
        await aiofiles.os.makedirs(self.base_path, exist_ok=True)

    def path_for(self, file_id: str) -> Path:
        return self.base_path / validate_file_id(file_id)

    def reserve(self, original_name: str) -> str:
        file_id = generate_file_id(original_name)
        while file_id in self.pending or self.path_for(file_id).exists():
            logger.error(f"Generated file id {file_id} collides with an existing file, regenerating")
            file_id = generate_file_id(original_name)
        self.pending.add(file_id)
        return file_id

    def release(self, file_id: str):
        self.pending.discard(file_id)

    def is_pending(self, file_id: str) -> bool:
        return file_id in self.pending

    async def write(
        self,
        file_id: str,
        chunks: AsyncIterator[bytes],
        max_bytes: Optional[int] = None,
    ) -> int:
        """Stream ``chunks`` to the file for ``file_id`` and return its size.

        Raises ``FileTooLarge`` as soon as ``max_bytes`` is crossed. The caller
        owns cleanup of the partial file.
        """
        path = self.path_for(file_id)
        size = 0
        try:
            async with aiofiles.open(path, 'wb') as out_file:
                async for chunk in chunks:
                    size += len(chunk)
                    if max_bytes is not None:
                        check_file_size(size, max_bytes)
                    await out_file.write(chunk)
        except OSError as e:
            logger.exception(f"Error writing file {file_id} to {path}")
            raise StorageIOError(f"Error saving file {file_id}") from e
        return size

    async def remove(self, path: Union[str, Path]) -> bool:
        """Delete ``path``; a file that is already gone counts as deleted.

        Returns True if this call removed the file.
        """
        try:
            await aiofiles.os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete file {path}: {e}")
            raise StorageIOError(f"Failed to delete file {Path(path).name}") from e

    async def exists(self, path: Union[str, Path]) -> bool:
        return await aiofiles.os.path.isfile(path)

    async def list_names(self) -> List[str]:
        """Names of the regular files in the storage directory, hidden files excluded."""
        try:
            names = await aiofiles.os.listdir(self.base_path)
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.error(f"Failed to list storage directory {self.base_path}: {e}")
            raise StorageIOError("Failed to list storage directory") from e
        result = []
        for name in names:
            if name.startswith("."):
                continue
            if await aiofiles.os.path.isfile(self.base_path / name):
                result.append(name)
        return result

