"""
Тесты валидатора загрузок.

Порядок проверок: тип -> пустой файл -> размер -> декодирование.
"""

import pytest

from image_ocr.errors import CorruptImage, EmptyUpload, UnsupportedImageType, UploadTooLarge
from image_ocr.services.validator import UploadValidator
from tests.conftest import make_image_bytes

MB = 1024 * 1024


@pytest.fixture
def validator() -> UploadValidator:
    return UploadValidator(max_size_bytes=10 * MB, enforce_max_size=True)


@pytest.mark.parametrize(
    "fmt, content_type",
    [
        ("PNG", "image/png"),
        ("JPEG", "image/jpeg"),
        ("JPEG", "image/jpg"),
        ("GIF", "image/gif"),
    ],
)
def test_valid_image_accepted(validator, fmt, content_type):
    data = make_image_bytes(fmt, size=(80, 30))

    image = validator.validate(data, content_type)

    assert image.decode_verified
    assert image.image_format == fmt
    assert image.size_bytes == len(data)
    assert (image.width, image.height) == (80, 30)


def test_content_type_parameters_ignored(validator, png_bytes):
    image = validator.validate(png_bytes, "Image/PNG; charset=binary")
    assert image.content_type == "image/png"


def test_unsupported_type_rejected_before_size_check(validator):
    oversized = b"x" * (11 * MB)

    with pytest.raises(UnsupportedImageType):
        validator.validate(oversized, "text/plain")


def test_missing_content_type_rejected(validator, png_bytes):
    with pytest.raises(UnsupportedImageType):
        validator.validate(png_bytes, None)


def test_empty_file_rejected(validator):
    with pytest.raises(EmptyUpload):
        validator.validate(b"", "image/png")


def test_eleven_megabytes_over_ten_megabyte_limit(validator):
    with pytest.raises(UploadTooLarge) as exc_info:
        validator.validate(b"\0" * (11 * MB), "image/png")

    assert exc_info.value.status_code == 413
    assert exc_info.value.context["size_bytes"] == 11 * MB


def test_size_limit_disabled_skips_size_check():
    validator = UploadValidator(max_size_bytes=10, enforce_max_size=False)
    data = make_image_bytes("PNG")

    assert len(data) > 10
    assert validator.validate(data, "image/png").size_bytes == len(data)
    assert validator.size_limit is None


def test_mislabeled_payload_rejected(validator, png_bytes):
    with pytest.raises(CorruptImage) as exc_info:
        validator.validate(png_bytes, "image/jpeg")

    assert "PNG" in exc_info.value.message


def test_garbage_bytes_rejected(validator):
    with pytest.raises(CorruptImage):
        validator.validate(b"definitely not an image", "image/png")


def test_truncated_png_rejected(validator, png_bytes):
    with pytest.raises(CorruptImage):
        validator.validate(png_bytes[: len(png_bytes) // 2], "image/png")


def test_error_context_has_no_image_content(validator):
    payload = b"SECRET-PAYLOAD" * 10

    with pytest.raises(CorruptImage) as exc_info:
        validator.validate(payload, "image/png")

    assert "SECRET-PAYLOAD" not in str(exc_info.value)
    assert exc_info.value.context["size_bytes"] == len(payload)
