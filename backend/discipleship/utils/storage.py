"""File storage for meeting photos.

Uploads are validated with Pillow, written under ``MEDIA_ROOT/<bucket>``
with a content-addressed name and exposed through the ``/media`` static
mount.
"""

from __future__ import annotations

import hashlib
import io
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ..config import settings

MEDIA_URL_PREFIX = "/media"
_FORMAT_EXT = {"JPEG": ".jpg", "PNG": ".png", "GIF": ".gif", "WEBP": ".webp"}


def get_media_root() -> Path:
    root = settings.MEDIA_ROOT
    root.mkdir(parents=True, exist_ok=True)
    return root


def sniff_image(payload: bytes) -> str:
    """Return the file extension for an accepted image payload.

    Raises ValueError for anything Pillow cannot identify or for formats
    outside the accepted set.
    """
    try:
        with Image.open(io.BytesIO(payload)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValueError("photo must be a JPEG, PNG, GIF or WEBP image")
    ext = _FORMAT_EXT.get(fmt or "")
    if not ext:
        raise ValueError("photo must be a JPEG, PNG, GIF or WEBP image")
    return ext


def save_upload(bucket: str, owner_id: str, payload: bytes) -> str:
    """Store an image under `bucket` and return its public URL path."""
    if len(payload) > settings.MAX_UPLOAD_BYTES:
        raise ValueError("file too large")
    ext = sniff_image(payload)
    digest = hashlib.sha256(payload).hexdigest()[:24]
    target_dir = get_media_root() / bucket / owner_id
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"{digest}{ext}"
    if not target.exists():
        target.write_bytes(payload)
    return f"{MEDIA_URL_PREFIX}/{bucket}/{owner_id}/{target.name}"
