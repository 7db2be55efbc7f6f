"""Direct media saves and dated export filenames."""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from io import BytesIO
import re
from typing import Any
from urllib.parse import urlparse

from PIL import Image


_DATA_URL_PREFIX = re.compile(r"^data:(?P<mime>[\w/+.-]+)?;base64,", re.IGNORECASE)

IMAGE_SIGNATURES: tuple[tuple[bytes, str, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png", "png"),
    (b"\xff\xd8\xff", "image/jpeg", "jpg"),
    (b"GIF87a", "image/gif", "gif"),
    (b"GIF89a", "image/gif", "gif"),
)

VIDEO_EXTENSIONS = {".mp4": "video/mp4", ".webm": "video/webm", ".mov": "video/quicktime", ".ogg": "video/ogg"}


def _image_kind(data: bytes) -> tuple[str, str] | None:
    for signature, mime, ext in IMAGE_SIGNATURES:
        if data.startswith(signature):
            return mime, ext
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp", "webp"
    return None


def decode_image_base64(value: Any) -> bytes | None:
    """Decode a base64 image payload; None when it is not a recognizable image."""
    if not isinstance(value, str):
        return None
    text = _DATA_URL_PREFIX.sub("", value.strip())
    text = "".join(text.split())
    if not text:
        return None
    text += "=" * (-len(text) % 4)
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return None
    if _image_kind(data) is None or not image_is_loadable(data):
        return None
    return data


def image_is_loadable(data: bytes) -> bool:
    """True when Pillow can parse the whole image, not just its signature."""
    try:
        with Image.open(BytesIO(data)) as image:
            image.verify()
    except Exception:
        return False
    return True


def image_file_info(data: bytes) -> tuple[str, str]:
    """(mime, extension) for decoded image bytes, defaulting to PNG."""
    return _image_kind(data) or ("image/png", "png")


def is_http_url(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def video_file_info(url: str) -> tuple[str, str]:
    path = urlparse(url).path.lower()
    for ext, mime in VIDEO_EXTENSIONS.items():
        if path.endswith(ext):
            return mime, ext.lstrip(".")
    return "video/mp4", "mp4"


def date_stamp(moment: datetime | None = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.strftime("%Y-%m-%d")


def export_filename(kind: str, extension: str, moment: datetime | None = None) -> str:
    """``<kind>_<YYYY-MM-DD>.<ext>`` with the kind reduced to filename-safe characters."""
    safe = re.sub(r"[^A-Za-z0-9]+", "_", str(kind)).strip("_").lower() or "export"
    return f"{safe}_{date_stamp(moment)}.{extension.lstrip('.')}"
