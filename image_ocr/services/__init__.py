"""
Сервисы OCR обработки.

Модули:
    - validator: проверка загруженных изображений
    - languages: реестр языковых моделей tessdata
    - engine: адаптер Tesseract и коррекция наклона
    - pool: пул экземпляров движка
    - invoker: распознавание на рабочих потоках
    - result_assembler: сборка ответа
    - health: проверка готовности
    - ocr_service: координация пайплайна
"""

from image_ocr.services.health import HealthProbe
from image_ocr.services.invoker import RecognitionInvoker
from image_ocr.services.languages import LanguageRegistry
from image_ocr.services.ocr_service import OCRService
from image_ocr.services.pool import EngineInstance, EnginePool
from image_ocr.services.validator import UploadValidator

__all__ = [
    "HealthProbe",
    "RecognitionInvoker",
    "LanguageRegistry",
    "OCRService",
    "EngineInstance",
    "EnginePool",
    "UploadValidator",
]
