"""
Схемы данных OCR сервиса.

Включает:
    - Pydantic модели для API (параметры распознавания, ответы)
    - Внутренние dataclass'ы пайплайна (загрузка, языковая модель, запрос)
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic модели для API
# =============================================================================


class OCROptions(BaseModel):
    """
    Параметры распознавания от пользователя.

    Attributes:
        languages: языки для OCR (по умолчанию — язык из настроек)
        model: вариант модели для единственного языка (например "fast")
        psm: переопределение режима сегментации страницы Tesseract
        deskew: определить и скорректировать наклон перед распознаванием
        include_blocks: вернуть блоки текста с координатами и уверенностью
    """

    languages: Optional[list[str]] = Field(
        default=None,
        description="Языки для OCR: ['eng'], ['rus', 'eng']",
    )
    model: Optional[str] = Field(
        default=None,
        description="Вариант модели: <tessdata>/<язык>/<модель>.traineddata",
    )
    psm: Optional[int] = Field(
        default=None,
        ge=0,
        le=13,
        description="Page segmentation mode Tesseract",
    )
    deskew: bool = False
    include_blocks: bool = True


class BlockResult(BaseModel):
    """
    Текстовый блок, найденный движком.

    Attributes:
        block_id: номер блока на изображении
        text: текст блока (строки через \\n)
        confidence: средняя уверенность по словам блока (0-100)
        bbox: охватывающий прямоугольник {left, top, right, bottom}
    """

    block_id: int
    text: str
    confidence: float = 0.0
    bbox: dict[str, int] = Field(default_factory=dict)


class FileInfo(BaseModel):
    filename: str
    content_type: str
    size_bytes: int


class OCRResponse(BaseModel):
    """
    Ответ API с результатом распознавания.

    Attributes:
        request_id: UUID запроса
        text: распознанный текст
        confidence: средняя уверенность по всем словам (0-100)
        language: строка языков Tesseract, с которой шло распознавание
        languages: коды языков запроса в исходном порядке
        processing_time_ms: полное время обработки запроса
        recognition_time_ms: время работы движка
        deskew_angle: применённый угол коррекции наклона
        width: ширина изображения в пикселях
        height: высота изображения в пикселях
        blocks: блоки текста (пусто, если include_blocks=False)
        file_info: информация о загруженном файле
    """

    request_id: str
    text: str
    confidence: float = 0.0
    language: str
    languages: list[str]
    processing_time_ms: float
    recognition_time_ms: float
    deskew_angle: float = 0.0
    width: int = 0
    height: int = 0
    blocks: list[BlockResult] = []
    file_info: Optional[FileInfo] = None


class LanguageModel(BaseModel):
    """
    Языковая модель, найденная в каталоге tessdata.

    Attributes:
        language: код языка
        model: имя варианта модели (None для <язык>.traineddata)
        full_path: полный путь к файлу
        relative_path: путь относительно tessdata без расширения
    """

    language: str
    model: Optional[str] = None
    full_path: Optional[str] = None
    relative_path: Optional[str] = None


class LanguagesResponse(BaseModel):
    languages: list[LanguageModel]


class ErrorDetail(BaseModel):
    error: str
    message: str
    request_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Тело ответа с ошибкой: {"detail": {"error", "message", "request_id"}}."""

    detail: ErrorDetail


# =============================================================================
# Внутренние dataclass'ы для пайплайна
# =============================================================================


@dataclass(frozen=True)
class UploadedImage:
    """
    Проверенное загруженное изображение. Не меняется после валидации.

    Attributes:
        data: исходные байты файла
        content_type: заявленный MIME тип
        size_bytes: размер в байтах
        image_format: формат, определённый при декодировании (PNG, JPEG, ...)
        width: ширина в пикселях
        height: высота в пикселях
        decode_verified: изображение успешно прошло пробное декодирование
    """

    data: bytes = field(repr=False)
    content_type: str
    size_bytes: int
    image_format: str
    width: int
    height: int
    decode_verified: bool = True


@dataclass(frozen=True)
class LanguageAsset:
    """
    Файл языковой модели.

    Attributes:
        code: код языка из каталога
        path: полный путь к .traineddata
        tesseract_name: имя для Tesseract (путь относительно tessdata без расширения)
        model: вариант модели или None
        exists: файл найден на диске при разрешении
    """

    code: str
    path: str
    tesseract_name: str
    model: Optional[str] = None
    exists: bool = False


@dataclass(frozen=True)
class RecognitionRequest:
    """
    Запрос на распознавание: изображение + упорядоченные языки + параметры.

    Список языков непуст, все коды есть в каталоге.
    """

    request_id: str
    image: UploadedImage
    assets: tuple[LanguageAsset, ...]
    options: OCROptions

    @property
    def languages(self) -> list[str]:
        return [asset.code for asset in self.assets]

    @property
    def language_key(self) -> str:
        """Строка языков в формате Tesseract: "rus+eng"."""
        return "+".join(asset.tesseract_name for asset in self.assets)


@dataclass
class EngineOutput:
    """
    Сырой результат одного вызова движка.

    Attributes:
        data: словарь pytesseract.image_to_data()
        elapsed_ms: время вызова (декодирование + deskew + OCR)
        width: ширина изображения, поданного в движок
        height: высота изображения, поданного в движок
        deskew_angle: применённый угол коррекции наклона
        instance_id: идентификатор экземпляра движка
        generation: поколение экземпляра движка
    """

    data: dict[str, Any]
    elapsed_ms: float
    width: int = 0
    height: int = 0
    deskew_angle: float = 0.0
    instance_id: int = 0
    generation: int = 0
