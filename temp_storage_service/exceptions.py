from typing import Any, Dict, Optional


class FileServiceError(Exception):
    """Base class for every error raised by the file lifecycle core.

    ``status_code`` and ``to_detail()`` describe how the HTTP layer reports the
    error. System faults override ``client_safe`` so internal detail never
    reaches the client.
    """

    status_code = 500
    client_safe = True

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> Dict[str, Any]:
        if not self.client_safe:
            return {"detail": "Internal server error"}
        payload: Dict[str, Any] = {"detail": self.message}
        payload.update(self.details)
        return payload


class ExtensionBlocked(FileServiceError):
    status_code = 400

    def __init__(self, extension: str):
        super().__init__(f"File type {extension} is not allowed for security reasons", extension=extension)


class TypeNotAllowed(FileServiceError):
    status_code = 400

    def __init__(self, mime_type: str):
        super().__init__(f"MIME type {mime_type} is not allowed", mime_type=mime_type)


class TypeMismatch(FileServiceError):
    status_code = 400

    def __init__(self, claimed: str, actual: Optional[str]):
        super().__init__(
            "File MIME type mismatch detected. Possible file spoofing attempt.",
            claimed=claimed,
            actual=actual or "unknown",
        )


class StorageExceeded(FileServiceError):
    status_code = 507

    def __init__(self, current_bytes: int, incoming_bytes: int, max_bytes: int):
        super().__init__(
            "Storage limit exceeded",
            current_usage=current_bytes,
            incoming_size=incoming_bytes,
            max_storage=max_bytes,
        )


class FileTooLarge(FileServiceError):
    status_code = 413

    def __init__(self, max_bytes: int):
        super().__init__("File size exceeds the maximum allowed limit", max_size=max_bytes)


class InvalidFileId(FileServiceError):
    status_code = 400

    def __init__(self, file_id: str):
        super().__init__("Invalid file ID format")
        self.file_id = file_id


class RecordNotFound(FileServiceError):
    status_code = 404

    def __init__(self, file_id: str, message: str = "File not found"):
        super().__init__(message)
        self.file_id = file_id


class PersistenceError(FileServiceError):
    client_safe = False


class StorageIOError(FileServiceError):
    client_safe = False


class InvalidUpload(FileServiceError):
    status_code = 400
