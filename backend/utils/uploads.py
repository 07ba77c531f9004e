# backend/utils/uploads.py
import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from utils.errors import ValidationFailed, ServerError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp"}


def save_image(file: UploadFile, upload_dir: str) -> str:
    """Stores an uploaded image under a random name and returns its public URL."""
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationFailed("Invalid file type", errors={"file": "must be a JPEG, PNG or WebP image"})

    filename = file.filename or ""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
    unique_filename = f"{uuid.uuid4()}.{ext}"
    save_path = Path(upload_dir) / unique_filename
    save_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(save_path, "wb") as buffer:
            shutil.copyfileobj(file.file, buffer)
    except OSError as e:
        logger.error("File save error for %s: %s", save_path, e)
        raise ServerError("File save error")
    finally:
        file.file.close()
    return f"/uploads/{unique_filename}"


def remove_image(url: Optional[str], upload_dir: str) -> None:
    if not url or not url.startswith("/uploads/"):
        return
    path = Path(upload_dir) / url[len("/uploads/"):]
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove old image %s: %s", path, e)
