"""
File storage

Uploads are validated (size, MIME type), read in chunks with progress
reporting, and kept as binary documents in the ``files`` collection.
Each stored file gets a public download URL served by the API.
"""

import logging
import time
from typing import BinaryIO, Callable, Dict, Optional

from bson import Binary, ObjectId

import database
import settings
from errors import DocumentNotFound, UploadRejected

logger = logging.getLogger(__name__)

FILES = "files"
CHUNK_SIZE = 256 * 1024

ALLOWED_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)

UPLOAD_FOLDERS = {
    "profile": "profile",
    "document": "documents",
    "restaurant": "restaurant",
    "driver": "driver",
}

ProgressCallback = Callable[[int, int], None]


def validate_file(size: Optional[int], content_type: Optional[str]) -> None:
    if size is not None and size > settings.MAX_UPLOAD_BYTES:
        raise UploadRejected(f"File size must be less than {format_file_size(settings.MAX_UPLOAD_BYTES)}")
    if content_type not in ALLOWED_TYPES:
        raise UploadRejected(
            "File type not supported. Allowed: Images (JPEG, PNG, GIF, WebP), PDF, Text, Word documents"
        )


def generate_upload_path(user_id: str, kind: str) -> str:
    return f"users/{user_id}/{UPLOAD_FOLDERS.get(kind, 'misc')}"


def format_file_size(num_bytes: int) -> str:
    if num_bytes == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def download_url(file_id: str) -> str:
    return f"{settings.PUBLIC_URL}/files/{file_id}"


def upload(
    user_id: str,
    kind: str,
    filename: str,
    content_type: str,
    stream: BinaryIO,
    size: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> Dict[str, str]:
    """Store an upload and return its id, path and download URL.

    ``size`` is the announced size when known; the limit is enforced again
    while reading so an unannounced oversize body is still refused.
    """
    validate_file(size, content_type)

    data = bytearray()
    while True:
        chunk = stream.read(CHUNK_SIZE)
        if not chunk:
            break
        data += chunk
        if len(data) > settings.MAX_UPLOAD_BYTES:
            raise UploadRejected(f"File size must be less than {format_file_size(settings.MAX_UPLOAD_BYTES)}")
        if on_progress is not None:
            on_progress(len(data), size or len(data))

    file_name = f"{int(time.time() * 1000)}_{filename}"
    file_path = f"{generate_upload_path(user_id, kind)}/{file_name}"
    file_id = str(ObjectId())
    try:
        database.set_document(FILES, file_id, {
            "owner_id": user_id,
            "kind": kind,
            "file_name": file_name,
            "file_path": file_path,
            "content_type": content_type,
            "size": len(data),
            "data": Binary(bytes(data)),
        })
    except Exception:
        logger.exception("Upload of %s failed", file_path)
        raise
    logger.info("Stored %s (%s)", file_path, format_file_size(len(data)))
    return {
        "file_id": file_id,
        "file_name": file_name,
        "file_path": file_path,
        "download_url": download_url(file_id),
    }


def fetch(file_id: str) -> Dict:
    doc = database.get_document(FILES, file_id)
    if doc is None:
        raise DocumentNotFound(FILES, file_id)
    return doc


def delete(file_id: str) -> None:
    database.delete_document(FILES, file_id)
    logger.info("Deleted file %s", file_id)
