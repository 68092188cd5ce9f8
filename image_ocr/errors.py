"""
Иерархия ошибок OCR сервиса.

Разделяет ошибки клиента (невалидный ввод, 4xx) и ошибки сервера
(движок, конфигурация, перегрузка пула). Каждая ошибка несёт
машинный код, сообщение, HTTP статус и диагностический контекст.

В контекст никогда не попадает содержимое изображения — только
метаданные: языки, размер, тип, идентификатор экземпляра движка.
"""

from typing import Any


class OCRServiceError(Exception):
    """
    Базовая ошибка сервиса.

    Attributes:
        error: машинный код ошибки ("file_too_large", "engine_failure", ...)
        message: человекочитаемое описание
        status_code: HTTP статус, в который отображается ошибка
        context: диагностические поля без данных изображения
    """

    error = "ocr_error"
    status_code = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {key: value for key, value in context.items() if value is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in sorted(self.context.items()))
        return f"{self.message} ({details})"


# =============================================================================
# Ошибки клиента (4xx) — повторять на сервере бессмысленно
# =============================================================================


class InputValidationError(OCRServiceError):
    error = "invalid_request"
    status_code = 400


class EmptyUpload(InputValidationError):
    error = "empty_file"


class UploadTooLarge(InputValidationError):
    error = "file_too_large"
    status_code = 413


class UnsupportedImageType(InputValidationError):
    error = "invalid_file_type"
    status_code = 415


class CorruptImage(InputValidationError):
    error = "invalid_image"


class InvalidLanguage(InputValidationError):
    error = "invalid_language"


class InvalidOptions(InputValidationError):
    error = "invalid_config"


# =============================================================================
# Ошибки пула — временные, клиент может повторить запрос
# =============================================================================


class PoolTimeout(OCRServiceError):
    """Все экземпляры движка заняты дольше таймаута ожидания."""

    error = "engine_busy"
    status_code = 503

    def __init__(self, message: str, retry_after: float = 1.0, **context: Any) -> None:
        super().__init__(message, **context)
        self.retry_after = retry_after


class PoolClosed(OCRServiceError):
    error = "service_shutting_down"
    status_code = 503


class RequestTimeout(OCRServiceError):
    """Запрос не уложился в общий дедлайн; вызов движка дорабатывает в фоне."""

    error = "request_timeout"
    status_code = 408


# =============================================================================
# Ошибки сервера
# =============================================================================


class EngineFailure(OCRServiceError):
    """Ошибка нативного движка (загрузка модели или распознавание)."""

    error = "engine_failure"
    status_code = 500


class AssetMissing(OCRServiceError):
    """Язык есть в каталоге, но файла модели нет на диске."""

    error = "language_asset_missing"
    status_code = 500
