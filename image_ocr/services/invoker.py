"""
Вызов распознавания на уже выданном и настроенном экземпляре движка.

Декодирование, deskew и OCR — блокирующие и CPU-bound, поэтому
выполняются на рабочих потоках пула, а не в event loop.
"""

import io
import logging
import time

from PIL import Image

from image_ocr.config import Settings
from image_ocr.errors import CorruptImage, EngineFailure
from image_ocr.schemas import EngineOutput, RecognitionRequest
from image_ocr.services.engine import apply_deskew, estimate_skew
from image_ocr.services.pool import EngineInstance, EnginePool

logger = logging.getLogger(__name__)


class RecognitionInvoker:
    """
    Запускает распознавание через рабочие потоки пула.

    Args:
        pool: пул движков (владеет рабочими потоками)
        deskew_resize_px: размер по длинной стороне для определения наклона
        deskew_num_peaks: параметр num_peaks для deskew
        skew_threshold: минимальный угол, при котором применяется коррекция
    """

    def __init__(
        self,
        pool: EnginePool,
        deskew_resize_px: int = 1200,
        deskew_num_peaks: int = 20,
        skew_threshold: float = 0.5,
    ) -> None:
        self.pool = pool
        self.deskew_resize_px = deskew_resize_px
        self.deskew_num_peaks = deskew_num_peaks
        self.skew_threshold = skew_threshold

    @classmethod
    def from_settings(cls, pool: EnginePool, settings: Settings) -> "RecognitionInvoker":
        return cls(
            pool,
            deskew_resize_px=settings.deskew_resize_px,
            deskew_num_peaks=settings.deskew_num_peaks,
            skew_threshold=settings.skew_threshold,
        )

    async def run(self, instance: EngineInstance, request: RecognitionRequest) -> EngineOutput:
        """
        Распознаёт изображение запроса на экземпляре instance.

        Raises:
            EngineFailure: ошибка движка (экземпляр будет заменён пулом)
            CorruptImage: изображение не декодируется целиком
        """
        return await self.pool.run(instance, self._recognize, instance, request)

    def _recognize(self, instance: EngineInstance, request: RecognitionRequest) -> EngineOutput:
        start = time.perf_counter()
        image = request.image
        context = {
            "request_id": request.request_id,
            "languages": request.language_key,
            "size_bytes": image.size_bytes,
            "instance_id": instance.instance_id,
            "generation": instance.generation,
        }

        try:
            with Image.open(io.BytesIO(image.data)) as source:
                img = source.convert("RGB")
        except (OSError, ValueError, SyntaxError) as e:
            raise CorruptImage(f"Не удалось декодировать изображение: {e}", **context) from e

        angle = 0.0
        if request.options.deskew:
            angle = estimate_skew(img, self.deskew_resize_px, self.deskew_num_peaks)
            if abs(angle) > self.skew_threshold:
                img = apply_deskew(img, angle, self.skew_threshold)
            else:
                angle = 0.0

        try:
            data = instance.engine.recognize(img, request.options.psm)
        except EngineFailure as e:
            e.context.update({k: v for k, v in context.items() if k not in e.context})
            raise
        except Exception as e:
            raise EngineFailure(f"Ошибка движка: {e}", **context) from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        width, height = img.size

        logger.debug(
            f"Распознавание {request.request_id} на {instance.label}: {elapsed_ms:.1f}ms"
        )

        return EngineOutput(
            data=data,
            elapsed_ms=elapsed_ms,
            width=width,
            height=height,
            deskew_angle=angle,
            instance_id=instance.instance_id,
            generation=instance.generation,
        )
