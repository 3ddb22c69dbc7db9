import logging
import os
import secrets
import time

from fastapi import UploadFile

import config
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads/"


def save_image(upload: UploadFile, prefix: str) -> str:
    """Store an uploaded image under UPLOAD_DIR and return its public path."""
    if upload is None or not upload.filename:
        raise ValidationError("Image file is required")
    ext = os.path.splitext(upload.filename)[1].lower()
    content_type = (upload.content_type or "").lower()
    if ext not in config.ALLOWED_IMAGE_EXTENSIONS or not content_type.startswith("image/"):
        raise ValidationError("Only image files are allowed!")

    data = upload.file.read(config.MAX_UPLOAD_BYTES + 1)
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise ValidationError(f"File too large, the limit is {config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB")
    if not data:
        raise ValidationError("Uploaded file is empty")

    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    filename = f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(10 ** 9)}{ext}"
    with open(os.path.join(config.UPLOAD_DIR, filename), "wb") as fh:
        fh.write(data)
    logger.info("Stored upload %s (%d bytes)", filename, len(data))
    return PUBLIC_PREFIX + filename


def discard(public_path: str) -> None:
    try:
        os.remove(resolve_upload(public_path))
    except (NotFoundError, OSError):
        logger.warning("Could not remove upload %s", public_path)


def resolve_upload(public_path: str) -> str:
    if not public_path or not public_path.startswith(PUBLIC_PREFIX):
        raise NotFoundError("File not found")
    filename = os.path.basename(public_path[len(PUBLIC_PREFIX):])
    path = os.path.join(config.UPLOAD_DIR, filename)
    if not os.path.isfile(path):
        raise NotFoundError("File not found")
    return path
