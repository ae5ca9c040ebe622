import io
import random
from pathlib import Path

import pytest
from PIL import Image

from identifier.preprocess import ImagePreprocessor, InvalidImageError


def _encoded(image: Image.Image, format: str = "JPEG") -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=format)
    return buffer.getvalue()


def _noise(size) -> Image.Image:
    width, height = size
    data = random.Random(7).randbytes(width * height * 3)
    return Image.frombytes("RGB", size, data)


def test_large_capture_is_bounded_and_keeps_aspect() -> None:
    raw = _encoded(Image.new("RGB", (3000, 1500), (200, 180, 140)))

    payload = ImagePreprocessor().prepare(raw)

    assert (payload.width, payload.height) == (1000, 500)
    assert payload.mime_type == "image/jpeg"
    decoded = Image.open(io.BytesIO(payload.data))
    assert decoded.format == "JPEG"
    assert decoded.size == (1000, 500)


def test_small_capture_is_not_enlarged() -> None:
    payload = ImagePreprocessor().prepare(Image.new("RGB", (200, 120), "gray"))

    assert (payload.width, payload.height) == (200, 120)


def test_transparent_png_is_flattened_to_jpeg() -> None:
    raw = _encoded(Image.new("RGBA", (50, 40), (10, 200, 30, 128)), format="PNG")

    payload = ImagePreprocessor().prepare(raw)

    assert Image.open(io.BytesIO(payload.data)).mode == "RGB"


def test_path_input_sets_image_ref(tmp_path: Path) -> None:
    path = tmp_path / "specimen.png"
    Image.new("RGB", (30, 30), "white").save(path)

    payload = ImagePreprocessor().prepare(path)
    overridden = ImagePreprocessor().prepare(str(path), image_ref="catalog/17")

    assert payload.image_ref == str(path)
    assert overridden.image_ref == "catalog/17"


def test_oversized_payload_falls_back_to_smaller_encoding() -> None:
    image = _noise((1200, 1200))
    full = ImagePreprocessor().prepare(image)
    limit = len(full.data) - 1

    payload = ImagePreprocessor(max_bytes=limit).prepare(image)

    assert max(full.width, full.height) == 1000
    assert max(payload.width, payload.height) == 400
    assert len(payload.data) <= limit


def test_payload_that_never_fits_is_rejected() -> None:
    with pytest.raises(InvalidImageError, match="too large"):
        ImagePreprocessor(max_bytes=1_000).prepare(_noise((600, 600)))


@pytest.mark.parametrize(
    "image",
    [
        b"",
        b"definitely not an image",
        bytearray(b"\x89PNG\r\n\x1a\n truncated"),
        Image.new("RGB", (0, 0)),
        12345,
    ],
)
def test_unusable_input_is_rejected(image) -> None:
    with pytest.raises(InvalidImageError):
        ImagePreprocessor().prepare(image)


def test_missing_file_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(InvalidImageError, match="Unable to read"):
        ImagePreprocessor().prepare(tmp_path / "missing.jpg")
