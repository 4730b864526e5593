import base64
from io import BytesIO

import pytest
from PIL import Image

from src.core.exceptions import InvalidImage
from src.services.source_image import (
    decode_image_data,
    detect_mime_type,
    load_source_image,
    read_dimensions,
    to_data_url,
)


def _make_test_image(width: int = 100, height: int = 60, fmt: str = "JPEG") -> bytes:
    img = Image.new("RGB", (width, height), color="red")
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


class TestDetectMimeType:
    def test_png(self) -> None:
        assert detect_mime_type(_make_test_image(fmt="PNG")) == "image/png"

    def test_jpeg(self) -> None:
        assert detect_mime_type(_make_test_image()) == "image/jpeg"

    def test_webp(self) -> None:
        assert detect_mime_type(_make_test_image(fmt="WEBP")) == "image/webp"

    def test_gif(self) -> None:
        assert detect_mime_type(b"GIF89a" + b"\x00" * 10) == "image/gif"

    def test_unknown_defaults_to_jpeg(self) -> None:
        assert detect_mime_type(b"random") == "image/jpeg"


class TestDecodeImageData:
    def test_plain_base64(self) -> None:
        data, mime = decode_image_data(base64.b64encode(b"abc").decode())
        assert data == b"abc"
        assert mime is None

    def test_data_url(self) -> None:
        data, mime = decode_image_data("data:image/png;base64," + base64.b64encode(b"abc").decode())
        assert data == b"abc"
        assert mime == "image/png"

    def test_invalid_base64(self) -> None:
        with pytest.raises(InvalidImage):
            decode_image_data("abc")


class TestLoadSourceImage:
    def test_from_bytes(self) -> None:
        image = load_source_image(_make_test_image(100, 60))
        assert image.mime_type == "image/jpeg"
        assert image.dimensions == (100, 60)
        assert image.extension == "jpg"

    def test_from_data_url(self) -> None:
        raw = _make_test_image(fmt="PNG")
        image = load_source_image("data:image/jpeg;base64," + base64.b64encode(raw).decode())
        assert image.content == raw
        assert image.mime_type == "image/png"

    def test_declared_type_fills_in_for_unknown_bytes(self) -> None:
        image = load_source_image(b"not-an-image", mime_type="image/webp")
        assert image.mime_type == "image/webp"
        assert image.dimensions is None

    def test_empty(self) -> None:
        with pytest.raises(InvalidImage):
            load_source_image(b"")

    def test_empty_string(self) -> None:
        with pytest.raises(InvalidImage):
            load_source_image("   ")

    def test_round_trip_data_url(self) -> None:
        image = load_source_image(_make_test_image())
        assert to_data_url(image).startswith("data:image/jpeg;base64,")
        assert load_source_image(to_data_url(image)).content == image.content


def test_read_dimensions_invalid() -> None:
    assert read_dimensions(b"garbage") is None
