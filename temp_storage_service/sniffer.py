"""Content-based type detection.

The type of an upload is decided by its leading bytes, not by the label the
client sends. Only the signature window is read, so arbitrarily large files
are inspected at constant cost.
"""
from pathlib import Path
from typing import AbstractSet, Optional, Union

import aiofiles
import filetype

from exceptions import TypeMismatch, TypeNotAllowed
from logging_config import get_logger

logger = get_logger(__name__)

SIGNATURE_BYTES = 8192


async def read_signature(path: Union[str, Path], size: int = SIGNATURE_BYTES) -> bytes:
    async with aiofiles.open(path, 'rb') as f:
        return await f.read(size)


def sniff_bytes(sample: bytes) -> Optional[str]:
    """Return the MIME type implied by ``sample``'s magic bytes, or None."""
    kind = filetype.guess(sample[:SIGNATURE_BYTES])
    if kind is None:
        return None
    return kind.mime


async def sniff_type(path: Union[str, Path]) -> Optional[str]:
    return sniff_bytes(await read_signature(path))


def has_signature(mime_type: str) -> bool:
    """True when ``mime_type`` is a format that always carries magic bytes."""
    return filetype.get_type(mime=mime_type) is not None


def looks_like_text(sample: bytes) -> bool:
    if b"\x00" in sample:
        return False
    try:
        sample.decode("utf-8")
    except UnicodeDecodeError as e:
        # the window may cut a multi-byte sequence in half
        if e.start < len(sample) - 3:
            return False
    return True


def resolve_content_type(
    sniffed: Optional[str],
    declared: str,
    allowed: AbstractSet[str],
    sample: bytes = b"",
) -> str:
    """Decide the authoritative type of an upload or raise.

    A detected signature always wins over the declared label. Without one the
    declared type is accepted only if it is allow-listed, is not a format that
    would have been recognised by its signature, and, for ``text/*``, the
    content actually reads as text.
    """
    if sniffed is not None:
        if sniffed != declared:
            logger.warning(f"Type mismatch: claimed '{declared}', content is '{sniffed}'")
            raise TypeMismatch(claimed=declared, actual=sniffed)
        if sniffed not in allowed:
            raise TypeNotAllowed(sniffed)
        return sniffed

    if declared not in allowed:
        raise TypeNotAllowed(declared)
    if has_signature(declared):
        logger.warning(f"Declared '{declared}' but no matching signature found in content")
        raise TypeMismatch(claimed=declared, actual=None)
    if declared.startswith("text/") and not looks_like_text(sample):
        logger.warning(f"Declared '{declared}' but content is not text")
        raise TypeMismatch(claimed=declared, actual=None)
    return declared
