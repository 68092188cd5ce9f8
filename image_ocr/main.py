"""
OCR сервис изображений — FastAPI приложение.

Принимает изображение, распознаёт текст пулом экземпляров Tesseract
и возвращает текст с уверенностью и временем обработки.

Эндпоинты:
    POST /api/v1/images — загрузка изображения и распознавание текста
    GET  /api/v1/languages — доступные языковые модели
    GET  /system/health — готовность (пул движков + модель по умолчанию)

Запуск:
    uvicorn image_ocr.main:app --host 0.0.0.0 --port 8000
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from image_ocr.config import Settings
from image_ocr.errors import InvalidOptions, OCRServiceError, PoolTimeout
from image_ocr.schemas import ErrorDetail, ErrorResponse, LanguagesResponse, OCROptions, OCRResponse
from image_ocr.services.engine import EngineFactory, tesseract_engine_factory
from image_ocr.services.health import HealthProbe
from image_ocr.services.languages import LanguageRegistry, parse_language_field
from image_ocr.services.ocr_service import OCRService
from image_ocr.services.pool import EnginePool
from image_ocr.services.validator import UploadValidator

logger = logging.getLogger(__name__)

# Размер чанка при чтении загрузки
UPLOAD_CHUNK_SIZE = 1024 * 1024

# Ответы с ошибками для OpenAPI
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Невалидный файл, язык или config"},
    408: {"model": ErrorResponse, "description": "Запрос не уложился в дедлайн"},
    413: {"model": ErrorResponse, "description": "Файл слишком большой"},
    415: {"model": ErrorResponse, "description": "Неподдерживаемый тип файла"},
    500: {"model": ErrorResponse, "description": "Ошибка движка или нет модели языка"},
    503: {"model": ErrorResponse, "description": "Все движки заняты или сервис останавливается"},
}


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ без \\uXXXX экранирования не-ASCII текста."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [OCR-Service] %(message)s",
        datefmt="%H:%M:%S",
    )


def create_app(
    settings: Optional[Settings] = None,
    engine_factory: Optional[EngineFactory] = None,
) -> FastAPI:
    """
    Собирает приложение.

    Настройки передаются явно во все компоненты. Пул движков
    создаётся при старте приложения и останавливается при выходе.

    Args:
        settings: настройки (по умолчанию — из .env / окружения)
        engine_factory: фабрика экземпляров движка (по умолчанию — Tesseract)
    """
    settings = settings or Settings()
    configure_logging(settings.log_level)
    engine_factory = engine_factory or tesseract_engine_factory(
        settings.tessdata_path,
        oem=settings.ocr_oem,
        psm=settings.ocr_psm,
    )

    registry = LanguageRegistry.from_settings(settings)
    pool = EnginePool(
        engine_factory,
        size=settings.pool_size,
        acquire_timeout=settings.acquire_timeout_seconds,
        shutdown_grace=settings.shutdown_grace_seconds,
    )
    service = OCRService.from_settings(settings, pool, registry)
    health = HealthProbe(pool, registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Запуск OCR сервиса: пул={settings.pool_size}, tessdata={settings.tessdata_path}, "
            f"язык по умолчанию={settings.default_language}"
        )
        preload = ()
        if registry.check_default():
            preload = registry.resolve_all([settings.default_language])
        await pool.start(preload)
        try:
            yield
        finally:
            await pool.close()

    app = FastAPI(
        title="Image OCR Service",
        description="Сервис распознавания текста на изображениях (Tesseract OCR)",
        version="1.0.0",
        default_response_class=UnicodeJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service
    app.state.health = health

    @app.exception_handler(OCRServiceError)
    async def ocr_error_handler(request: Request, exc: OCRServiceError) -> UnicodeJSONResponse:
        headers = {}
        if isinstance(exc, PoolTimeout):
            headers["Retry-After"] = str(max(int(exc.retry_after), 1))
        body = ErrorResponse(
            detail=ErrorDetail(
                error=exc.error,
                message=exc.message,
                request_id=exc.context.get("request_id"),
            )
        )
        return UnicodeJSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(),
            headers=headers,
        )

    @app.get("/system/health")
    async def health_check() -> UnicodeJSONResponse:
        """
        Проверка готовности сервиса.

        Returns:
            200 {"status": "ok", ...} или 503 {"status": "degraded", ...}
        """
        report = health.report()
        report["service"] = "image-ocr"
        report["config"] = {
            "max_upload_size_bytes": settings.max_upload_size_bytes,
            "max_upload_size_enabled": settings.max_upload_size_enabled,
            "acquire_timeout_seconds": settings.acquire_timeout_seconds,
            "request_timeout_seconds": settings.request_timeout_seconds,
            "ocr_oem": settings.ocr_oem,
            "ocr_psm": settings.ocr_psm,
        }
        status_code = 200 if report["status"] == "ok" else 503
        return UnicodeJSONResponse(status_code=status_code, content=report)

    @app.get("/api/v1/languages", response_model=LanguagesResponse)
    async def list_languages() -> LanguagesResponse:
        """Доступные языковые модели из каталога tessdata."""
        return LanguagesResponse(languages=registry.available())

    @app.post("/api/v1/images", response_model=OCRResponse, responses=ERROR_RESPONSES)
    async def recognize_image(
        file: UploadFile = File(..., description="Изображение для распознавания"),
        language: Optional[str] = Form(
            default=None,
            description='Языки: "eng" или "rus+eng"',
        ),
        config: Optional[str] = Form(
            default=None,
            description='JSON параметры: {"languages": ["eng"], "psm": 6, "deskew": true}',
        ),
    ) -> OCRResponse:
        """
        Распознаёт текст на изображении.

        Args:
            file: изображение (multipart/form-data)
            language: языки (имеют приоритет над config.languages)
            config: JSON строка с параметрами OCROptions

        Returns:
            OCRResponse: результат распознавания
        """
        request_id = str(uuid.uuid4())

        try:
            options = _parse_config(config)
            if language:
                options = options.model_copy(update={"languages": parse_language_field(language)})

            service.validator.check_content_type(file.content_type)
            data = await _read_upload(file, service.validator)
        except OCRServiceError as e:
            e.context.setdefault("request_id", request_id)
            raise

        return await service.recognize(
            data,
            file.content_type,
            options,
            filename=file.filename,
            request_id=request_id,
        )

    return app


def _parse_config(config_json: Optional[str]) -> OCROptions:
    """
    Парсит JSON параметры распознавания из строки.

    Returns:
        OCROptions: параметры с дефолтными значениями, если не указаны

    Raises:
        InvalidOptions: некорректный JSON или значения
    """
    if not config_json:
        return OCROptions()

    try:
        return OCROptions.model_validate_json(config_json)
    except ValidationError as e:
        raise InvalidOptions(f"Ошибка парсинга config: {e.errors(include_url=False)}") from e


async def _read_upload(file: UploadFile, validator: UploadValidator) -> bytes:
    """
    Читает загрузку чанками и прерывается, как только превышен лимит.

    Raises:
        UploadTooLarge: размер превысил лимит
    """
    limit = validator.size_limit
    chunks = []
    total = 0

    while chunk := await file.read(UPLOAD_CHUNK_SIZE):
        total += len(chunk)
        if limit is not None and total > limit:
            validator.check_size(total, file.content_type)
        chunks.append(chunk)

    return b"".join(chunks)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    logger.info(f"Запуск OCR сервиса на {settings.host}:{settings.port}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
