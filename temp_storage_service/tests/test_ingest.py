import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import patch

import metadata_store as metadata_store_module
from conftest import EXE_BYTES, PNG_BYTES, TEXT_BYTES, make_policy
from exceptions import (
    ExtensionBlocked,
    FileTooLarge,
    PersistenceError,
    StorageExceeded,
    TypeMismatch,
    TypeNotAllowed,
)
from ingest import IngestPipeline


def stored_files(upload_dir):
    return sorted(p.name for p in upload_dir.iterdir())


@pytest.mark.asyncio
async def test_ingest_commits_file_and_record(pipeline, metadata_store, upload_dir):
    record = await pipeline.ingest(PNG_BYTES, "holiday photo.png", "image/png")

    assert record.original_name == "holiday photo.png"
    assert record.sniffed_type == "image/png"
    assert record.size_bytes == len(PNG_BYTES)
    assert record.id.startswith("holiday_photo_")
    assert record.id.endswith(".png")
    assert record.expires_at - record.created_at == timedelta(hours=24)
    assert metadata_store.get(record.id) == record
    assert stored_files(upload_dir) == [record.id]
    assert (upload_dir / record.id).read_bytes() == PNG_BYTES
    assert not pipeline.storage.pending


@pytest.mark.asyncio
async def test_ingest_plain_text_keeps_declared_type(pipeline):
    record = await pipeline.ingest(TEXT_BYTES, "notes.txt", "text/plain")

    assert record.sniffed_type is None
    assert record.effective_type == "text/plain"


@pytest.mark.asyncio
async def test_ingest_from_chunk_stream(pipeline, upload_dir):
    async def chunks():
        yield TEXT_BYTES[:10]
        yield TEXT_BYTES[10:]

    record = await pipeline.ingest(chunks(), "streamed.txt", "text/plain")

    assert record.size_bytes == len(TEXT_BYTES)
    assert (upload_dir / record.id).read_bytes() == TEXT_BYTES


@pytest.mark.asyncio
async def test_original_name_cannot_escape_storage_dir(pipeline, upload_dir):
    record = await pipeline.ingest(TEXT_BYTES, "../../etc/passwd.txt", "text/plain")

    assert record.original_name == "../../etc/passwd.txt"
    assert "/" not in record.id and ".." not in record.id
    assert stored_files(upload_dir) == [record.id]


@pytest.mark.asyncio
async def test_blocked_extension_is_case_insensitive(pipeline, upload_dir):
    with pytest.raises(ExtensionBlocked):
        await pipeline.ingest(TEXT_BYTES, "setup.EXE", "text/plain")

    assert stored_files(upload_dir) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["evil.exe.", "evil.exe ", "evil.EXE. .", "dir/evil.exe.\t"])
async def test_trailing_dots_and_spaces_do_not_hide_blocked_extension(pipeline, upload_dir, name):
    with pytest.raises(ExtensionBlocked) as exc_info:
        await pipeline.ingest(TEXT_BYTES, name, "text/plain")

    assert exc_info.value.details["extension"] == ".exe"
    assert stored_files(upload_dir) == []


@pytest.mark.asyncio
async def test_declared_type_must_be_allowed(pipeline, upload_dir):
    with pytest.raises(TypeNotAllowed):
        await pipeline.ingest(b"{}", "data.json", "application/json")

    assert stored_files(upload_dir) == []


@pytest.mark.asyncio
async def test_renamed_executable_is_rejected(pipeline, metadata_store, upload_dir):
    with pytest.raises(TypeMismatch) as exc_info:
        await pipeline.ingest(EXE_BYTES, "invoice.txt", "text/plain")

    assert exc_info.value.details["actual"] == "application/x-msdownload"
    assert stored_files(upload_dir) == []
    assert metadata_store.list() == []


@pytest.mark.asyncio
async def test_oversized_file_is_rejected(metadata_store, file_storage, upload_dir):
    pipeline = IngestPipeline(metadata_store, file_storage, make_policy(max_file_bytes=16))

    with pytest.raises(FileTooLarge):
        await pipeline.ingest(TEXT_BYTES, "big.txt", "text/plain")

    assert stored_files(upload_dir) == []


@pytest.mark.asyncio
async def test_oversized_stream_is_cut_off_mid_transfer(metadata_store, file_storage, upload_dir):
    pipeline = IngestPipeline(metadata_store, file_storage, make_policy(max_file_bytes=16))
    sent = []

    async def chunks():
        for i in range(10):
            sent.append(i)
            yield b"0123456789"

    with pytest.raises(FileTooLarge):
        await pipeline.ingest(chunks(), "stream.txt", "text/plain")

    assert len(sent) < 10
    assert stored_files(upload_dir) == []


@pytest.mark.asyncio
async def test_quota_exactly_one_file(metadata_store, file_storage, upload_dir):
    pipeline = IngestPipeline(metadata_store, file_storage, make_policy(max_total_bytes=len(TEXT_BYTES)))

    first = await pipeline.ingest(TEXT_BYTES, "first.txt", "text/plain")
    with pytest.raises(StorageExceeded):
        await pipeline.ingest(b"x", "second.txt", "text/plain")

    assert stored_files(upload_dir) == [first.id]
    assert metadata_store.total_bytes() == len(TEXT_BYTES)


@pytest.mark.asyncio
async def test_persistence_failure_removes_written_file(pipeline, metadata_store, upload_dir):
    with patch.object(metadata_store_module.aiofiles.os, "replace", side_effect=OSError("disk full")):
        with pytest.raises(PersistenceError):
            await pipeline.ingest(TEXT_BYTES, "notes.txt", "text/plain")

    assert stored_files(upload_dir) == []
    assert metadata_store.list() == []


@pytest.mark.asyncio
async def test_cancelled_upload_leaves_nothing_behind(pipeline, metadata_store, upload_dir):
    started = asyncio.Event()

    async def chunks():
        yield b"partial upload "
        started.set()
        await asyncio.sleep(10)
        yield b"never arrives"

    task = asyncio.create_task(pipeline.ingest(chunks(), "slow.txt", "text/plain"))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert stored_files(upload_dir) == []
    assert metadata_store.list() == []
    assert not pipeline.storage.pending


@pytest.mark.asyncio
async def test_concurrent_ingests_lose_no_updates(pipeline, metadata_store, upload_dir):
    payloads = [TEXT_BYTES * (i + 1) for i in range(10)]

    records = await asyncio.gather(
        *(pipeline.ingest(data, f"file{i}.txt", "text/plain") for i, data in enumerate(payloads))
    )

    assert len({record.id for record in records}) == 10
    assert metadata_store.total_bytes() == sum(len(data) for data in payloads)
    for record in records:
        assert (upload_dir / record.id).stat().st_size == record.size_bytes


@pytest.mark.asyncio
async def test_expiry_is_fixed_at_creation(metadata_store, file_storage):
    created = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
    pipeline = IngestPipeline(
        metadata_store,
        file_storage,
        make_policy(retention=timedelta(seconds=1)),
        clock=lambda: created,
    )

    record = await pipeline.ingest(TEXT_BYTES, "short.txt", "text/plain")

    assert record.created_at == created
    assert record.expires_at == created + timedelta(seconds=1)
