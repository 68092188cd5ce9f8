"""
Валидатор загруженных изображений.

Проверяет по порядку:
    1. Заявленный Content-Type (до проверки размера)
    2. Пустой файл
    3. Размер (если лимит включён)
    4. Пробное декодирование через Pillow — заявленному типу не доверяем

Не трогает ни движок, ни файловую систему.
"""

import io
import logging
import struct
import warnings
from typing import Optional

from PIL import Image, UnidentifiedImageError

from image_ocr.config import Settings
from image_ocr.errors import CorruptImage, EmptyUpload, UnsupportedImageType, UploadTooLarge
from image_ocr.schemas import UploadedImage

logger = logging.getLogger(__name__)

# MIME тип -> формат Pillow, который должен получиться при декодировании
SUPPORTED_TYPES: dict[str, str] = {
    "image/png": "PNG",
    "image/jpg": "JPEG",
    "image/jpeg": "JPEG",
    "image/webp": "WEBP",
    "image/gif": "GIF",
}


class UploadValidator:
    """
    Проверка загрузок перед тем, как они попадут в пул движков.

    Args:
        max_size_bytes: максимальный размер файла
        enforce_max_size: включена ли проверка размера
    """

    def __init__(self, max_size_bytes: int, enforce_max_size: bool = True) -> None:
        self.max_size_bytes = max_size_bytes
        self.enforce_max_size = enforce_max_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadValidator":
        return cls(
            max_size_bytes=settings.max_upload_size_bytes,
            enforce_max_size=settings.max_upload_size_enabled,
        )

    @property
    def size_limit(self) -> Optional[int]:
        """Лимит размера или None, если проверка выключена."""
        return self.max_size_bytes if self.enforce_max_size else None

    def check_content_type(self, content_type: Optional[str]) -> str:
        """
        Нормализует и проверяет заявленный MIME тип.

        Returns:
            str: тип без параметров в нижнем регистре ("image/png")

        Raises:
            UnsupportedImageType: тип не указан или не поддерживается
        """
        normalized = (content_type or "").split(";", 1)[0].strip().lower()
        if normalized not in SUPPORTED_TYPES:
            raise UnsupportedImageType(
                f"Неподдерживаемый тип файла: {content_type or 'не указан'}. "
                f"Допустимы: {', '.join(SUPPORTED_TYPES)}",
                content_type=content_type,
            )
        return normalized

    def check_size(self, size_bytes: int, content_type: Optional[str] = None) -> None:
        if self.enforce_max_size and size_bytes > self.max_size_bytes:
            raise UploadTooLarge(
                f"Файл слишком большой: {size_bytes} байт, максимум: {self.max_size_bytes} байт",
                size_bytes=size_bytes,
                content_type=content_type,
            )

    def validate(self, data: bytes, content_type: Optional[str]) -> UploadedImage:
        """
        Проверяет загруженный файл и возвращает UploadedImage.

        Args:
            data: содержимое файла
            content_type: заявленный MIME тип

        Returns:
            UploadedImage: проверенное изображение

        Raises:
            UnsupportedImageType: тип не поддерживается
            EmptyUpload: файл пустой
            UploadTooLarge: превышен лимит размера
            CorruptImage: файл не декодируется или не совпадает с заявленным типом
        """
        declared = self.check_content_type(content_type)
        size_bytes = len(data)

        if size_bytes == 0:
            raise EmptyUpload("Файл пустой", content_type=declared)

        self.check_size(size_bytes, declared)

        image_format, width, height = self._probe(data, declared)

        return UploadedImage(
            data=data,
            content_type=declared,
            size_bytes=size_bytes,
            image_format=image_format,
            width=width,
            height=height,
            decode_verified=True,
        )

    def _probe(self, data: bytes, declared: str) -> tuple[str, int, int]:
        """
        Пробное декодирование: формат, размеры и целостность файла.

        verify() проверяет структуру файла без полной распаковки пикселей.
        """
        try:
            with warnings.catch_warnings():
                # DecompressionBombWarning -> ошибка
                warnings.simplefilter("error", Image.DecompressionBombWarning)
                with Image.open(io.BytesIO(data)) as img:
                    image_format = img.format or ""
                    width, height = img.size
                    img.verify()
        except (UnidentifiedImageError, Image.DecompressionBombError, Image.DecompressionBombWarning) as e:
            raise CorruptImage(
                f"Файл не является изображением: {e}",
                size_bytes=len(data),
                content_type=declared,
            ) from e
        except (OSError, SyntaxError, ValueError, EOFError, struct.error) as e:
            raise CorruptImage(
                f"Изображение повреждено: {e}",
                size_bytes=len(data),
                content_type=declared,
            ) from e

        expected = SUPPORTED_TYPES[declared]
        if image_format != expected:
            logger.warning(
                f"Тип не совпадает: заявлен {declared}, декодирован {image_format or 'unknown'}"
            )
            raise CorruptImage(
                f"Содержимое файла ({image_format or 'unknown'}) не соответствует "
                f"заявленному типу {declared}",
                size_bytes=len(data),
                content_type=declared,
            )

        return image_format, width, height
