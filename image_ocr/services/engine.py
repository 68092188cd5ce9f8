"""
Адаптер движка Tesseract.

TesseractEngine — один «нативный» экземпляр движка: помнит загруженные
языки и не рассчитан на параллельные вызовы. Пул выдаёт каждый экземпляр
только одному запросу за раз.

Пул зависит только от протокола Engine (load / recognize / clear / close),
поэтому в тестах вместо Tesseract подставляется фейковый движок.
"""

import logging
from typing import Any, Callable, Optional, Protocol, Sequence

import numpy as np
import pytesseract
from deskew import determine_skew
from PIL import Image

from image_ocr.errors import EngineFailure
from image_ocr.schemas import LanguageAsset

logger = logging.getLogger(__name__)


class Engine(Protocol):
    """Протокол экземпляра движка распознавания."""

    def load(self, assets: Sequence[LanguageAsset]) -> None: ...

    def recognize(self, image: Image.Image, psm: Optional[int] = None) -> dict[str, Any]: ...

    def clear(self) -> None: ...

    def close(self) -> None: ...


EngineFactory = Callable[[], Engine]


class TesseractEngine:
    """
    Экземпляр движка Tesseract (через pytesseract).

    Args:
        tessdata_path: каталог с моделями (--tessdata-dir)
        oem: OCR Engine Mode
        psm: Page Segmentation Mode по умолчанию

    Raises:
        EngineFailure: бинарник Tesseract недоступен
    """

    def __init__(self, tessdata_path: str, oem: int = 3, psm: int = 3) -> None:
        self.tessdata_path = tessdata_path
        self.oem = oem
        self.psm = psm
        self.lang: Optional[str] = None

        try:
            self.version = str(pytesseract.get_tesseract_version())
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, OSError) as e:
            raise EngineFailure(f"Tesseract недоступен: {e}") from e

    def load(self, assets: Sequence[LanguageAsset]) -> None:
        """
        Привязывает экземпляр к набору языков.

        Проверяет, что Tesseract видит каждую модель в каталоге tessdata.
        При ошибке экземпляр остаётся без языков.
        """
        names = [asset.tesseract_name for asset in assets]
        lang = "+".join(names)
        self.lang = None

        try:
            known = set(pytesseract.get_languages(config=self._tessdata_config()))
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, OSError) as e:
            raise EngineFailure(f"Не удалось загрузить модели {lang}: {e}", language=lang) from e

        # Модели из подкаталогов Tesseract не перечисляет — их наличие проверил реестр
        missing = [name for name in names if "/" not in name and name not in known]
        if missing:
            raise EngineFailure(
                f"Tesseract не видит модели: {', '.join(missing)}",
                language=lang,
            )

        self.lang = lang

    def recognize(self, image: Image.Image, psm: Optional[int] = None) -> dict[str, Any]:
        """
        Распознаёт изображение одним вызовом image_to_data.

        Returns:
            dict: словарь pytesseract.Output.DICT (text, conf, block_num, ...)
        """
        if self.lang is None:
            raise EngineFailure("Языковая модель не загружена")

        config = f"{self._tessdata_config()} --oem {self.oem} --psm {psm if psm is not None else self.psm}"

        try:
            return pytesseract.image_to_data(
                image,
                lang=self.lang,
                config=config,
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, OSError, RuntimeError) as e:
            raise EngineFailure(f"Ошибка распознавания: {e}", language=self.lang) from e

    def clear(self) -> None:
        # image_to_data не хранит состояние между вызовами
        pass

    def close(self) -> None:
        self.lang = None

    def _tessdata_config(self) -> str:
        return f'--tessdata-dir "{self.tessdata_path}"'


def tesseract_engine_factory(tessdata_path: str, oem: int = 3, psm: int = 3) -> EngineFactory:
    """Фабрика экземпляров TesseractEngine для пула."""

    def factory() -> Engine:
        return TesseractEngine(tessdata_path, oem=oem, psm=psm)

    return factory


def estimate_skew(img: Image.Image, resize_px: int = 1200, num_peaks: int = 20) -> float:
    """
    Определяет угол наклона текста на изображении.

    Выполняет:
        1. Resize до resize_px по длинной стороне
        2. Конвертация в grayscale
        3. Определение угла через deskew (проекционный профиль)

    Returns:
        float: угол в градусах (0.0, если определить не удалось)
    """
    w, h = img.size
    ratio = min(resize_px / max(w, h), 1.0)
    small_img = img.resize((max(int(w * ratio), 1), max(int(h * ratio), 1)), Image.Resampling.BILINEAR)

    img_array = np.array(small_img.convert("L"))

    try:
        angle = determine_skew(img_array, num_peaks=num_peaks)
    except Exception as e:
        logger.warning(f"Deskew не определил угол, наклон не исправляется: {e}")
        angle = None

    return float(angle) if angle is not None else 0.0


def apply_deskew(img: Image.Image, angle: float, threshold: float = 0.5) -> Image.Image:
    """
    Поворачивает изображение, компенсируя наклон.

    expand=True увеличивает холст, fillcolor="white" заполняет углы белым.
    """
    if abs(angle) < threshold:
        return img

    return img.rotate(
        -angle,
        resample=Image.Resampling.BICUBIC,
        expand=True,
        fillcolor="white",
    )
