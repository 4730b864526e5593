import base64
import binascii
import re
from io import BytesIO

import structlog
from PIL import Image, UnidentifiedImageError

from src.core.exceptions import InvalidImage
from src.schemas.domain import SourceImage

logger = structlog.get_logger()

FORMAT_TO_MEDIA_TYPE = {
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}

_DATA_URL_RE = re.compile(r"^data:([A-Za-z0-9.+/-]+)?(;[^,]*)?,", re.IGNORECASE)


def detect_mime_type(image_bytes: bytes) -> str:
    fmt = _detect_image_format(image_bytes)
    return FORMAT_TO_MEDIA_TYPE.get(fmt, "image/jpeg")


def _detect_image_format(image_bytes: bytes) -> str:
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if image_bytes[:2] == b"\xff\xd8":
        return "jpeg"
    if image_bytes[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "webp"
    return "jpeg"


def decode_image_data(data: str) -> tuple[bytes, str | None]:
    declared_mime = None
    match = _DATA_URL_RE.match(data)
    if match:
        declared_mime = match.group(1)
        data = data[match.end():]
    try:
        return base64.b64decode(data, validate=False), declared_mime
    except (binascii.Error, ValueError) as e:
        raise InvalidImage(f"Image data is not valid base64: {e}") from e


def read_dimensions(image_bytes: bytes) -> tuple[int, int] | None:
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("image_dimensions_unreadable", error=str(e))
        return None


def load_source_image(data: str | bytes, mime_type: str | None = None) -> SourceImage:
    """Build a SourceImage from raw bytes, a base64 string or a data URL.

    The MIME type is taken from the magic bytes; a declared type (argument or
    data-URL header) only fills in when sniffing cannot tell.
    """
    if isinstance(data, str):
        image_bytes, declared_mime = decode_image_data(data.strip())
        mime_type = mime_type or declared_mime
    else:
        image_bytes = data

    if not image_bytes:
        raise InvalidImage("Image data is empty")

    sniffed = _detect_image_format(image_bytes)
    if sniffed != "jpeg" or image_bytes[:2] == b"\xff\xd8" or not mime_type:
        mime_type = FORMAT_TO_MEDIA_TYPE[sniffed]

    size = read_dimensions(image_bytes)
    width, height = size if size else (None, None)
    return SourceImage(content=image_bytes, mime_type=mime_type, width=width, height=height)


def to_data_url(image: SourceImage) -> str:
    encoded = base64.b64encode(image.content).decode()
    return f"data:{image.mime_type};base64,{encoded}"
