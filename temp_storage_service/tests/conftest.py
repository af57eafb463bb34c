import sys
from datetime import timedelta
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from typing import AsyncGenerator

import pytest
import pytest_asyncio
import httpx
from httpx import AsyncClient

from main import app, attach_services
from ingest import IngestPipeline, UploadPolicy
from metadata_store import MetadataStore
from storage import FileStorage
from sweeper import LifecycleSweeper

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\x00IEND\xaeB`\x82"
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01" + b"\x00" * 32
PDF_BYTES = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<>>\nendobj\n%%EOF\n"
EXE_BYTES = b"MZ\x90\x00\x03\x00\x00\x00\x04\x00\x00\x00\xff\xff" + b"\x00" * 64
TEXT_BYTES = b"Temporary file storage test content.\n"

ALLOWED_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "application/pdf",
    "text/plain",
    "text/csv",
})
BLOCKED_EXTENSIONS = frozenset({".exe", ".bat", ".sh", ".js"})


def make_policy(**overrides) -> UploadPolicy:
    values = dict(
        max_file_bytes=1024 * 1024,
        max_total_bytes=10 * 1024 * 1024,
        retention=timedelta(hours=24),
        allowed_types=ALLOWED_TYPES,
        blocked_extensions=BLOCKED_EXTENSIONS,
    )
    values.update(overrides)
    return UploadPolicy(**values)


@pytest.fixture(scope="function")
def upload_dir(tmp_path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture(scope="function")
def snapshot_path(tmp_path) -> Path:
    return tmp_path / "metadata" / "files.json"


@pytest_asyncio.fixture(scope="function")
async def file_storage(upload_dir) -> FileStorage:
    storage = FileStorage(upload_dir)
    await storage.initialize()
    return storage


@pytest_asyncio.fixture(scope="function")
async def metadata_store(snapshot_path) -> MetadataStore:
    store = MetadataStore(snapshot_path)
    await store.initialize()
    return store


@pytest.fixture(scope="function")
def policy() -> UploadPolicy:
    return make_policy()


@pytest.fixture(scope="function")
def pipeline(metadata_store, file_storage, policy) -> IngestPipeline:
    return IngestPipeline(metadata_store, file_storage, policy)


@pytest.fixture(scope="function")
def sweeper(metadata_store, file_storage, policy) -> LifecycleSweeper:
    return LifecycleSweeper(
        metadata_store,
        file_storage,
        interval=timedelta(hours=1),
        retention=policy.retention,
    )


@pytest_asyncio.fixture(scope="function")
async def async_client(metadata_store, file_storage, pipeline, sweeper) -> AsyncGenerator[AsyncClient, None]:
    attach_services(app, metadata_store, file_storage, pipeline, sweeper)

    transport = httpx.ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testtemp") as client:
        yield client
