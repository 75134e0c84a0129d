"""
Image payload helpers: load bytes, sniff the MIME type with Pillow, validate
size / format, and base64-encode for inlining into a provider request.
"""

import base64
import io
from pathlib import Path
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

MAX_IMAGE_BYTES = 10 * 1024 * 1024  # 10MB

# Pillow format name → MIME type
SUPPORTED_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "WEBP": "image/webp",
}


class ImageValidationError(ValueError):
    pass


class ImagePayload(BaseModel):
    data: bytes
    mime_type: str = "image/png"
    name: Optional[str] = None

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.b64()}"


def sniff_mime_type(data: bytes) -> str:
    """Return the MIME type of an image, or raise ImageValidationError."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").upper()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageValidationError(f"Could not read image data: {e}")

    mime = SUPPORTED_FORMATS.get(fmt)
    if mime is None:
        raise ImageValidationError(
            f"Unsupported file format '{fmt or 'unknown'}'. Please use PNG, JPG, GIF, BMP, or WEBP"
        )
    return mime


def validate_image(data: bytes) -> str:
    """Check size and format; returns the sniffed MIME type."""
    if not data:
        raise ImageValidationError("Image is empty")
    if len(data) > MAX_IMAGE_BYTES:
        raise ImageValidationError("File size must be less than 10MB")
    return sniff_mime_type(data)


def load_image(source: Union[str, Path, bytes], name: Optional[str] = None) -> ImagePayload:
    """
    Build a validated ImagePayload from a file path or raw bytes.

    Args:
        source: Path to an image file, or the image bytes themselves
        name:   Optional display name (defaults to the file name)
    """
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    else:
        path = Path(source)
        data = path.read_bytes()
        name = name or path.name

    mime_type = validate_image(data)
    return ImagePayload(data=data, mime_type=mime_type, name=name)
