"""
Пайплайн обработки запроса на распознавание.

    1. Валидация загрузки (тип, размер, пробное декодирование)
    2. Разрешение языков (все коды проверяются до захвата движка)
    3. Захват экземпляра движка из пула (с перезагрузкой языков)
    4. Распознавание на рабочем потоке
    5. Сборка ответа
    6. Возврат экземпляра в пул или его замена
"""

import asyncio
import logging
import time
import uuid
from typing import Optional

from image_ocr.config import Settings
from image_ocr.errors import OCRServiceError, RequestTimeout
from image_ocr.schemas import EngineOutput, FileInfo, OCROptions, OCRResponse, RecognitionRequest
from image_ocr.services.invoker import RecognitionInvoker
from image_ocr.services.languages import LanguageRegistry
from image_ocr.services.pool import EnginePool
from image_ocr.services.result_assembler import assemble_response
from image_ocr.services.validator import UploadValidator

logger = logging.getLogger(__name__)


class OCRService:
    """
    Координатор пайплайна распознавания.

    Args:
        validator: валидатор загрузок
        registry: реестр языковых моделей
        pool: пул движков
        invoker: вызов распознавания
        acquire_timeout: таймаут ожидания свободного движка
        request_timeout: дедлайн ожидания движка и распознавания (None - без дедлайна)
    """

    def __init__(
        self,
        validator: UploadValidator,
        registry: LanguageRegistry,
        pool: EnginePool,
        invoker: RecognitionInvoker,
        acquire_timeout: Optional[float] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        self.validator = validator
        self.registry = registry
        self.pool = pool
        self.invoker = invoker
        self.acquire_timeout = acquire_timeout
        self.request_timeout = request_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        pool: EnginePool,
        registry: Optional[LanguageRegistry] = None,
    ) -> "OCRService":
        return cls(
            validator=UploadValidator.from_settings(settings),
            registry=registry or LanguageRegistry.from_settings(settings),
            pool=pool,
            invoker=RecognitionInvoker.from_settings(pool, settings),
            acquire_timeout=settings.acquire_timeout_seconds,
            request_timeout=settings.request_timeout_seconds,
        )

    async def recognize(
        self,
        data: bytes,
        content_type: Optional[str],
        options: Optional[OCROptions] = None,
        filename: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> OCRResponse:
        """
        Распознаёт текст на загруженном изображении.

        Args:
            data: содержимое файла
            content_type: заявленный MIME тип
            options: параметры распознавания
            filename: имя файла для логирования и ответа
            request_id: UUID запроса (генерируется, если не передан)

        Returns:
            OCRResponse: результат распознавания

        Raises:
            InputValidationError: ошибка ввода (4xx)
            PoolTimeout, PoolClosed: все движки заняты / сервис останавливается
            EngineFailure, AssetMissing: ошибка сервера
        """
        start_time = time.perf_counter()
        request_id = request_id or str(uuid.uuid4())
        options = options or OCROptions()

        try:
            image = self.validator.validate(data, content_type)
            assets = self.registry.resolve_all(options.languages or [], options.model)
        except OCRServiceError as e:
            e.context.setdefault("request_id", request_id)
            logger.info(f"Запрос {request_id} отклонён: {e}")
            raise

        request = RecognitionRequest(
            request_id=request_id,
            image=image,
            assets=assets,
            options=options,
        )

        logger.info(
            f"Запрос {request_id}: {filename or 'без имени'} "
            f"({image.image_format} {image.width}x{image.height}, {image.size_bytes} байт), "
            f"языки: {request.language_key}"
        )

        try:
            output = await self._run_with_deadline(request)
        except OCRServiceError as e:
            e.context.setdefault("request_id", request_id)
            e.context.setdefault("size_bytes", image.size_bytes)
            e.context.setdefault("languages", request.language_key)
            logger.error(f"Запрос {request_id} завершился ошибкой: {e}")
            raise

        processing_time_ms = (time.perf_counter() - start_time) * 1000

        response = assemble_response(
            output,
            request_id=request_id,
            language=request.language_key,
            languages=request.languages,
            processing_time_ms=processing_time_ms,
            include_blocks=options.include_blocks,
            file_info=FileInfo(
                filename=filename or "unknown",
                content_type=image.content_type,
                size_bytes=image.size_bytes,
            ),
        )

        logger.info(
            f"Запрос {request_id} завершён на #{output.instance_id}.g{output.generation}: "
            f"{len(response.text)} симв., уверенность {response.confidence:.0f}%, "
            f"{processing_time_ms:.0f}ms (движок {output.elapsed_ms:.0f}ms)"
        )

        return response

    async def _run_with_deadline(self, request: RecognitionRequest) -> EngineOutput:
        """
        Захват движка и распознавание в пределах request_timeout.

        По истечении дедлайна запрос отменяется: не начатый вызов движка
        пропускается, начатый дорабатывает в фоне, а пул сам вернёт
        или заменит экземпляр.

        Raises:
            RequestTimeout: дедлайн истёк
        """
        try:
            async with asyncio.timeout(self.request_timeout):
                async with self.pool.lease(request.assets, self.acquire_timeout) as instance:
                    return await self.invoker.run(instance, request)
        except TimeoutError:
            raise RequestTimeout(
                f"Запрос не уложился в {self.request_timeout} секунд",
                timeout_seconds=self.request_timeout,
            ) from None
