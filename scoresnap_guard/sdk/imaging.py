"""
Image preprocessing collaborator.

Bounds the uploaded image to a maximum dimension, preserving aspect ratio,
to keep payload size and remote cost down.
"""

import io
from typing import Protocol

from PIL import Image

from scoresnap_guard.core.errors import ErrorKind, InferenceError
from scoresnap_guard.core.security import get_logger

logger = get_logger(__name__)

_JPEG_QUALITY = 90


class ImagePreprocessor(Protocol):
    """Resizes encoded images before upload."""

    def resize(self, image: bytes, max_dimension: int) -> bytes: ...


def detect_media_type(data: bytes) -> str:
    """Sniff the media type from the image header, defaulting to JPEG."""
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:4] == b"GIF8":
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


class PillowImagePreprocessor:
    """Pillow-based resizer.

    Images already within bounds are returned untouched. Larger images are
    downscaled and re-encoded as PNG if they were PNG, otherwise JPEG.
    """

    def resize(self, image: bytes, max_dimension: int) -> bytes:
        """Downscale ``image`` so neither side exceeds ``max_dimension``.

        Raises:
            InferenceError: IMAGE_PROCESSING_FAILED if the image can't be decoded
        """
        if not image:
            raise InferenceError(ErrorKind.IMAGE_PROCESSING_FAILED, "image is empty")
        try:
            with Image.open(io.BytesIO(image)) as img:
                width, height = img.size
                if max(width, height) <= max_dimension:
                    return image

                source_format = img.format
                img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
                output = io.BytesIO()
                if source_format == "PNG":
                    img.save(output, "PNG", optimize=True)
                else:
                    if img.mode not in ("RGB", "L"):
                        img = img.convert("RGB")
                    img.save(output, "JPEG", quality=_JPEG_QUALITY, optimize=True)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise InferenceError(ErrorKind.IMAGE_PROCESSING_FAILED, str(e))

        logger.debug(
            "Resized image from %dx%d to %dx%d",
            width, height, img.size[0], img.size[1]
        )
        return output.getvalue()
