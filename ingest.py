from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image
from werkzeug.datastructures import FileStorage

from errors import FileTooLarge, InvalidFileType, ReadFailure

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 20 * 1024 * 1024  # 20 MiB
ACCEPTED_MEDIA_TYPES = ("image/jpeg", "image/png", "image/jpg", "image/webp")

# -------------------------------------------------------------------
# Payload
# -------------------------------------------------------------------


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    media_type: str

    @property
    def size(self) -> int:
        return len(self.data)


# -------------------------------------------------------------------
# Validation + decode
# -------------------------------------------------------------------


def check_media_type(media_type: str) -> str:
    media_type = (media_type or "").lower().strip()
    if not media_type.startswith("image/"):
        raise InvalidFileType()
    return media_type


def check_size(size: int) -> None:
    if size > MAX_IMAGE_BYTES:
        raise FileTooLarge()


def verify_image(data: bytes) -> None:
    """Make sure Pillow can actually read the bytes as an image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except Exception as exc:
        raise ReadFailure() from exc


def ingest_bytes(data: bytes, media_type: str) -> ImagePayload:
    media_type = check_media_type(media_type)
    check_size(len(data))
    verify_image(data)
    return ImagePayload(data=data, media_type=media_type)


def ingest_upload(fs: FileStorage) -> ImagePayload:
    """Validate an uploaded file and return its payload.

    Type is checked before anything is read. The stream is read at most one
    byte past the ceiling, so an oversized upload is rejected without being
    buffered whole.
    """
    media_type = check_media_type(fs.mimetype)
    try:
        data = fs.stream.read(MAX_IMAGE_BYTES + 1)
    except OSError as exc:
        raise ReadFailure() from exc
    check_size(len(data))
    verify_image(data)
    logger.info("accepted upload %r (%s, %d bytes)", fs.filename, media_type, len(data))
    return ImagePayload(data=data, media_type=media_type)

