"""Scratch storage for uploaded images.

An upload is validated (extension whitelist, size cap), copied into the
uploads directory under a collision-resistant name, and deleted by the
request that created it once the model call is done.
"""

import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import structlog
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.requests import Request

from zaytoon.core.errors import (
    InputValidationError,
    UploadStorageError,
    UploadTooLargeError,
)

logger = structlog.get_logger(__name__)

ALLOWED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png"})
EXTENSION_ERROR = "Only .jpg, .jpeg or .png files are allowed."
CHUNK_SIZE = 64 * 1024
# Allowance for the prompt field and multipart framing on top of the image cap
MULTIPART_OVERHEAD = 1024 * 1024


@dataclass(frozen=True)
class StoredUpload:
    """An image sitting in scratch storage for the duration of one request."""
    original_filename: str
    extension: str
    size: int
    path: Path

    @property
    def storage_name(self) -> str:
        return self.path.name

    @property
    def mime_type(self) -> str:
        # image/jpg is not registered but Gemini accepts it
        return f"image/{self.extension[1:]}"


def ensure_upload_dir(upload_dir: Path) -> Path:
    """Create the uploads directory if needed and return it."""
    path = Path(upload_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def allowed_extension(filename: str | None) -> str:
    """Return the lower-cased extension of ``filename`` if it is whitelisted.

    Raises:
        InputValidationError: For any other extension (or none).
    """
    extension = Path(filename or "").suffix.lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise InputValidationError(EXTENSION_ERROR)
    return extension


def make_storage_name(extension: str) -> str:
    """``<epoch-ms>-<uuid4 hex><extension>``, unique under concurrent uploads."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex}{extension}"


def _copy_limited(source: BinaryIO, destination: Path, max_bytes: int) -> int:
    """Copy ``source`` to ``destination``, stopping once ``max_bytes`` is exceeded.

    The partially written file is removed before UploadTooLargeError is raised.
    """
    written = 0
    try:
        with open(destination, "xb") as out:
            while True:
                chunk = source.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise UploadTooLargeError()
                out.write(chunk)
    except Exception:
        destination.unlink(missing_ok=True)
        raise
    return written


async def store_upload(upload: UploadFile, upload_dir: Path, max_bytes: int) -> StoredUpload:
    """Validate ``upload`` and copy it into scratch storage.

    Args:
        upload: The multipart file part.
        upload_dir: Scratch directory, created if absent.
        max_bytes: Size cap for the stored file.

    Returns:
        Descriptor of the stored file. The caller owns it and must pass it
        to ``discard_upload`` once done.

    Raises:
        InputValidationError: Extension is not .jpg, .jpeg or .png.
        UploadTooLargeError: File is larger than ``max_bytes``.
        UploadStorageError: The file could not be written.
    """
    extension = allowed_extension(upload.filename)

    await upload.seek(0)
    try:
        destination = ensure_upload_dir(upload_dir) / make_storage_name(extension)
        size = await run_in_threadpool(_copy_limited, upload.file, destination, max_bytes)
    except UploadTooLargeError:
        logger.warning("upload.too_large", filename=upload.filename, limit=max_bytes)
        raise
    except OSError as e:
        logger.error("upload.store_failed", filename=upload.filename, error=str(e))
        raise UploadStorageError("Failed to store uploaded image.") from e

    stored = StoredUpload(
        original_filename=upload.filename or "",
        extension=extension,
        size=size,
        path=destination,
    )
    logger.info("upload.stored", storage_name=stored.storage_name, size=size)
    return stored


async def read_upload(stored: StoredUpload) -> bytes:
    """Read the stored image into memory."""
    return await run_in_threadpool(stored.path.read_bytes)


async def discard_upload(stored: StoredUpload) -> None:
    """Delete the stored image. Missing files are ignored."""
    await run_in_threadpool(stored.path.unlink, missing_ok=True)
    logger.info("upload.deleted", storage_name=stored.storage_name)


def is_writable(upload_dir: Path) -> bool:
    """Check that the uploads directory exists and accepts new files."""
    path = Path(upload_dir)
    return path.is_dir() and os.access(path, os.W_OK | os.X_OK)


def limited_request(request: Request, max_bytes: int) -> Request:
    """Return ``request`` with a body stream that stops past ``max_bytes``.

    A declared Content-Length over the limit is refused before anything is
    read. Otherwise the body is counted as it arrives and reading stops with
    UploadTooLargeError on the first chunk that crosses the limit, so an
    oversized upload is never spooled in full.

    Raises:
        UploadTooLargeError: Declared or received body exceeds ``max_bytes``.
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_bytes:
        logger.warning("upload.too_large", content_length=int(content_length), limit=max_bytes)
        raise UploadTooLargeError()

    receive = request.receive
    received = 0

    async def receive_limited():
        nonlocal received
        message = await receive()
        if message["type"] == "http.request":
            received += len(message.get("body", b""))
            if received > max_bytes:
                logger.warning("upload.too_large", received=received, limit=max_bytes)
                raise UploadTooLargeError()
        return message

    return Request(request.scope, receive_limited)
