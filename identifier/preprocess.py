from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from PIL import Image, ImageOps

from recognition.request import Payload


logger = logging.getLogger(__name__)

ImageSource = Union[bytes, bytearray, str, Path, Image.Image]


class InvalidImageError(ValueError):
    """Raised when a capture cannot be turned into a transport payload."""


@dataclass(frozen=True)
class ImagePreprocessor:
    """Bound and re-encode a captured photo for the recognition service.

    The larger side is reduced to ``max_dimension`` (images are never
    enlarged) and the result is encoded as JPEG. Payloads above ``max_bytes``
    get one more, smaller encoding before the image is rejected.
    """

    max_dimension: int = 1000
    quality: int = 70
    max_bytes: int = 5_000_000
    fallback_dimension: int = 400
    fallback_quality: int = 60

    def prepare(self, image: ImageSource, image_ref: str | None = None) -> Payload:
        if image_ref is None and isinstance(image, (str, Path)):
            image_ref = str(image)
        source = self._load(image)

        data, size = self._encode(source, self.max_dimension, self.quality)
        if len(data) > self.max_bytes:
            logger.info(
                "Payload too large bytes=%d limit=%d; re-encoding at %dpx",
                len(data),
                self.max_bytes,
                self.fallback_dimension,
            )
            data, size = self._encode(source, self.fallback_dimension, self.fallback_quality)
            if len(data) > self.max_bytes:
                raise InvalidImageError("Image too large for processing")

        width, height = size
        logger.debug(
            "Prepared payload source=%dx%d payload=%dx%d bytes=%d",
            source.width,
            source.height,
            width,
            height,
            len(data),
        )
        return Payload(data=data, width=width, height=height, encoding="jpeg", image_ref=image_ref)

    def _load(self, image: ImageSource) -> Image.Image:
        if isinstance(image, Image.Image):
            loaded = image
        else:
            if isinstance(image, (str, Path)):
                try:
                    raw = Path(image).read_bytes()
                except OSError as exc:
                    raise InvalidImageError(f"Unable to read image {image}: {exc}") from exc
            elif isinstance(image, (bytes, bytearray)):
                raw = bytes(image)
            else:
                raise InvalidImageError(f"Unsupported image type: {type(image).__name__}")
            if not raw:
                raise InvalidImageError("Image is empty")
            try:
                loaded = Image.open(io.BytesIO(raw))
                loaded.load()
            except (OSError, ValueError, Image.DecompressionBombError) as exc:
                raise InvalidImageError("Failed to process image") from exc

        if loaded.width <= 0 or loaded.height <= 0:
            raise InvalidImageError("Image has no pixels")
        oriented = ImageOps.exif_transpose(loaded)
        if oriented.mode != "RGB":
            oriented = oriented.convert("RGB")
        return oriented

    def _encode(
        self, image: Image.Image, max_dimension: int, quality: int
    ) -> tuple[bytes, tuple[int, int]]:
        resized = _bound(image, max_dimension)
        buffer = io.BytesIO()
        resized.save(buffer, format="JPEG", quality=quality)
        return buffer.getvalue(), resized.size


def _bound(image: Image.Image, max_dimension: int) -> Image.Image:
    width, height = image.size
    longest = max(width, height)
    if longest <= max_dimension:
        return image
    scale = max_dimension / longest
    target = (max(1, round(width * scale)), max(1, round(height * scale)))
    return image.resize(target, Image.Resampling.LANCZOS)


__all__ = ["ImagePreprocessor", "ImageSource", "InvalidImageError"]
