"""
Image inspection helpers (Pillow).

The cover chain only needs to know two things about downloaded bytes:
whether they decode as an image, and how large that image is.
"""

import logging
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Open Library answers missing covers with a 1x1 GIF
MIN_VALID_DIMENSION = 2
MIN_ACCEPTABLE_NON_GOOGLE = 200

_EXTENSIONS = {"JPEG": "jpg", "PNG": "png", "GIF": "gif", "WEBP": "webp"}


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str | None

    @property
    def content_type(self) -> str:
        if self.format and self.format in Image.MIME:
            return Image.MIME[self.format]
        return "application/octet-stream"

    @property
    def extension(self) -> str:
        return _EXTENSIONS.get(self.format or "", "jpg")


def inspect_image(data: bytes | None) -> ImageInfo | None:
    """
    Decode image bytes and report their dimensions.

    Returns:
        ImageInfo, or None when data is empty or not a decodable image
    """
    if not data:
        return None
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            return ImageInfo(width=img.width, height=img.height, format=img.format)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug(f"Bytes are not a decodable image: {e}")
        return None


def looks_like_placeholder(info: ImageInfo) -> bool:
    """True for the tiny stand-in images providers return instead of a 404."""
    return info.width < MIN_VALID_DIMENSION or info.height < MIN_VALID_DIMENSION
