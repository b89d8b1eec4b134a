"""Storage of uploaded photos and signature images.

Files are written under UPLOAD_DIR with random names; the core keeps only
the returned reference.
"""

import logging
import os
import uuid

from fastapi import UploadFile

from config import settings
from errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/heic": ".heic",
}


async def save_image(upload: UploadFile, kind: str = "photo") -> str:
    """Persist one uploaded image and return its reference path."""
    suffix = ALLOWED_IMAGE_TYPES.get(upload.content_type or "")
    if suffix is None:
        raise ValidationError(
            f"Unsupported {kind} format: {upload.content_type}. Use jpeg, png, webp or heic.",
            {"filename": upload.filename, "content_type": upload.content_type},
        )

    content = await upload.read()
    if not content:
        raise ValidationError(f"Empty {kind} upload", {"filename": upload.filename})

    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    name = f"{kind}-{uuid.uuid4().hex}{suffix}"
    with open(os.path.join(settings.UPLOAD_DIR, name), "wb") as out:
        out.write(content)

    logger.info(f"Stored {kind} {upload.filename} ({len(content)} bytes) as {name}")
    return f"/uploads/{name}"


def discard(references: list[str]) -> None:
    """Remove stored files whose update was rejected after they were written."""
    for reference in references:
        path = os.path.join(settings.UPLOAD_DIR, os.path.basename(reference))
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Discarded upload {reference}")
