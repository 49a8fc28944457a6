"""Transport encoding and MIME sniffing for uploaded images."""

import pytest

from carb_vision import (
    DEFAULT_MIME_TYPE,
    ValidationError,
    decode_image,
    detect_mime_type,
    encode_image,
    to_data_url,
)


def test_encoding_is_lossless(png_bytes) -> None:
    assert decode_image(encode_image(png_bytes)) == png_bytes


def test_all_byte_values_survive() -> None:
    data = bytes(range(256)) * 3
    assert decode_image(encode_image(data)) == data


def test_data_url_prefix_is_stripped(png_bytes) -> None:
    url = to_data_url("image/png", encode_image(png_bytes))

    assert url.startswith("data:image/png;base64,")
    assert decode_image(url) == png_bytes


def test_invalid_payload_raises() -> None:
    with pytest.raises(ValidationError, match="not valid base64"):
        decode_image("not base64!!")


def test_detects_png(png_bytes) -> None:
    assert detect_mime_type(png_bytes, "application/octet-stream") == "image/png"


def test_unknown_bytes_fall_back_to_declared_type() -> None:
    assert detect_mime_type(b"\x00\x01garbage", "image/heic") == "image/heic"


def test_unknown_bytes_without_image_type_use_default() -> None:
    assert detect_mime_type(b"\x00\x01garbage", "text/plain") == DEFAULT_MIME_TYPE
    assert detect_mime_type(b"\x00\x01garbage") == DEFAULT_MIME_TYPE
