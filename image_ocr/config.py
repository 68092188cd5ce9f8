"""
Конфигурация OCR сервиса изображений.

Все значения читаются из .env файла (или переменных окружения)
с префиксом OCR_. У каждого параметра есть значение по умолчанию,
поэтому сервис стартует и без .env.

Экземпляр Settings создаётся один раз в фабрике приложения
и явно передаётся в конструкторы пула, валидатора и реестра языков.

Документация по параметрам: .env.example
"""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_pool_size() -> int:
    return max(os.cpu_count() or 1, 1)


class Settings(BaseSettings):
    """
    Настройки OCR сервиса.

    Читает переменные с префиксом OCR_ из .env файла.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # --- Языковые модели ---
    # Каталог с <код>.traineddata и <код>/<модель>.traineddata
    tessdata_path: str = "tesseract"
    default_language: str = "eng"

    # --- Пул движков ---
    pool_size: int = Field(default_factory=_default_pool_size, ge=1)
    acquire_timeout_seconds: float = Field(default=10.0, gt=0)
    shutdown_grace_seconds: float = Field(default=5.0, ge=0)
    # Дедлайн запроса: ожидание движка + распознавание
    request_timeout_seconds: float = Field(default=15.0, gt=0)

    # --- Лимиты загрузки ---
    max_upload_size_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    max_upload_size_enabled: bool = True

    # --- OCR: Tesseract ---
    ocr_oem: int = 3
    ocr_psm: int = 3

    # --- Deskew: коррекция наклона ---
    deskew_resize_px: int = 1200
    deskew_num_peaks: int = 20
    skew_threshold: float = 0.5
