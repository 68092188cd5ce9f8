"""
Image OCR Service — распознавание текста на изображениях.

Пайплайн запроса:
    - Валидация загрузки (тип, размер, пробное декодирование)
    - Разрешение языковых моделей tessdata
    - Пул экземпляров Tesseract с эксклюзивной выдачей и самовосстановлением
    - Распознавание на рабочих потоках, вне event loop
    - Сборка ответа с уверенностью и временем обработки
"""

from image_ocr.config import Settings
from image_ocr.schemas import OCROptions, OCRResponse

__all__ = [
    "Settings",
    "OCROptions",
    "OCRResponse",
]
