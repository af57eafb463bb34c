from typing import AsyncIterator, Dict, List, Optional

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from exceptions import InvalidUpload
from logging_config import get_logger

logger = get_logger(__name__)


class MultipartUpload:
    """Incremental reader for the file part of a ``multipart/form-data`` body.

    The request body is pulled from ``body`` only as fast as the consumer asks
    for file bytes, so a consumer that stops early (an oversized upload) leaves
    the rest of the body unread.

    Usage::

        upload = await MultipartUpload(request.stream(), content_type).open()
        await pipeline.ingest(upload.chunks(), upload.filename, upload.content_type)
    """

    def __init__(self, body: AsyncIterator[bytes], content_type: str, field_name: str = "file"):
        media_type, params = parse_options_header(content_type or "")
        boundary = params.get(b"boundary")
        if media_type != b"multipart/form-data" or not boundary:
            raise InvalidUpload("Expected a multipart/form-data upload")

        self.field_name = field_name
        self.filename: Optional[str] = None
        self.content_type: Optional[str] = None

        self._body = body.__aiter__()
        self._parser = MultipartParser(boundary, {
            "on_part_begin": self._on_part_begin,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
        })
        self._headers: Dict[bytes, bytes] = {}
        self._header_field = b""
        self._header_value = b""
        self._buffer: List[bytes] = []
        self._found = False
        self._in_file = False
        self._file_done = False

    def _on_part_begin(self):
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int):
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int):
        self._header_value += data[start:end]

    def _on_header_end(self):
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self):
        if self._found:
            return
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        name = options.get(b"name", b"").decode("utf-8", errors="replace")
        if name != self.field_name or b"filename" not in options:
            return
        self._found = True
        self._in_file = True
        self.filename = options[b"filename"].decode("utf-8", errors="replace")
        part_type = self._headers.get(b"content-type")
        if part_type:
            self.content_type = part_type.decode("latin-1").strip()

    def _on_part_data(self, data: bytes, start: int, end: int):
        if self._in_file:
            self._buffer.append(data[start:end])

    def _on_part_end(self):
        if self._in_file:
            self._in_file = False
            self._file_done = True

    async def _feed(self) -> bool:
        """Parse the next body chunk. Returns False once the body is exhausted."""
        try:
            chunk = await self._body.__anext__()
        except StopAsyncIteration:
            self._parser.finalize()
            return False
        if chunk:
            try:
                self._parser.write(chunk)
            except MultipartParseError as e:
                logger.warning(f"Malformed multipart body: {e}")
                raise InvalidUpload("Malformed multipart body") from e
        return True

    async def open(self) -> "MultipartUpload":
        """Read up to the end of the file part's headers."""
        while not self._found:
            if not await self._feed():
                raise InvalidUpload("No file uploaded")
        return self

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            if self._buffer:
                data = b"".join(self._buffer)
                self._buffer.clear()
                yield data
            if self._file_done:
                return
            if not await self._feed():
                raise InvalidUpload("Upload ended before the file was complete")
