"""
Общие фикстуры тестов.

Содержит:
    - FakeEngine — движок без Tesseract, который отслеживает
      параллельные вызовы одного экземпляра
    - каталог tessdata во временной папке
    - генерацию тестовых изображений через Pillow
"""

import io
import threading
import time
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image, ImageDraw

from image_ocr.config import Settings
from image_ocr.errors import EngineFailure


class EngineTracker:
    """
    Общее состояние всех FakeEngine одной фабрики.

    Attributes:
        created: сколько экземпляров создано
        load_calls: строки языков в порядке загрузки
        recognize_calls: количество вызовов recognize
        overlaps: сколько раз экземпляр вызван повторно, пока занят
        max_concurrent: максимум одновременных вызовов по всем экземплярам
        fail_load: языки, загрузка которых падает
        fail_recognize: сколько следующих вызовов recognize упадут
        fail_factory: фабрика падает при создании
        delay: задержка recognize в секундах
        gate: если задан, recognize ждёт его перед возвратом
        entered: выставляется, когда recognize начался
        load_gate: если задан, load ждёт его перед тем, как выставить языки
        load_entered: выставляется, когда load начался
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.created = 0
        self.load_calls: list[str] = []
        self.recognize_calls = 0
        self.overlaps = 0
        self.active: set[int] = set()
        self.max_concurrent = 0
        self.fail_load: set[str] = set()
        self.fail_recognize = 0
        self.fail_factory = False
        self.native_crash = False
        self.delay = 0.0
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()
        self.load_gate: Optional[threading.Event] = None
        self.load_entered = threading.Event()

    def factory(self) -> "FakeEngine":
        if self.fail_factory:
            raise EngineFailure("Tesseract недоступен")
        with self.lock:
            self.created += 1
            engine_id = self.created
        return FakeEngine(self, engine_id)


class FakeEngine:
    def __init__(self, tracker: EngineTracker, engine_id: int) -> None:
        self.tracker = tracker
        self.engine_id = engine_id
        self.lang: Optional[str] = None
        self.closed = False

    def load(self, assets) -> None:
        lang = "+".join(asset.tesseract_name for asset in assets)
        self.tracker.load_calls.append(lang)
        self.lang = None
        self.tracker.load_entered.set()
        if self.tracker.load_gate is not None:
            self.tracker.load_gate.wait(5)
        if lang in self.tracker.fail_load:
            raise EngineFailure(f"Не удалось загрузить {lang}", language=lang)
        self.lang = lang

    def recognize(self, image, psm=None) -> dict:
        tracker = self.tracker
        with tracker.lock:
            if self.engine_id in tracker.active:
                tracker.overlaps += 1
            tracker.active.add(self.engine_id)
            tracker.max_concurrent = max(tracker.max_concurrent, len(tracker.active))
            tracker.recognize_calls += 1
            should_fail = tracker.fail_recognize > 0
            if should_fail:
                tracker.fail_recognize -= 1
        tracker.entered.set()

        try:
            if tracker.delay:
                time.sleep(tracker.delay)
            if tracker.gate is not None:
                tracker.gate.wait(5)
            if should_fail:
                if tracker.native_crash:
                    raise RuntimeError("segfault в нативном коде")
                raise EngineFailure("Ошибка распознавания", language=self.lang)
            return fake_tesseract_data(self.lang or "")
        finally:
            with tracker.lock:
                tracker.active.discard(self.engine_id)

    def clear(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


def fake_tesseract_data(lang: str) -> dict:
    """Словарь в формате pytesseract.image_to_data: два блока, три слова."""
    return {
        "level": [1, 5, 5, 5],
        "block_num": [0, 1, 1, 2],
        "par_num": [0, 1, 1, 1],
        "line_num": [0, 1, 1, 1],
        "word_num": [0, 1, 2, 1],
        "left": [0, 10, 70, 10],
        "top": [0, 10, 12, 60],
        "width": [200, 50, 60, 40],
        "height": [100, 20, 18, 20],
        "conf": [-1, 96, 90, 81],
        "text": ["", "Hello", "world", lang],
    }


def make_image_bytes(fmt: str = "PNG", size: tuple[int, int] = (120, 40), text: str = "Hi") -> bytes:
    img = Image.new("RGB", size, "white")
    ImageDraw.Draw(img).text((5, 5), text, fill="black")
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def tracker() -> EngineTracker:
    return EngineTracker()


@pytest.fixture
def tessdata(tmp_path: Path) -> Path:
    """Каталог tessdata: eng, deu и вариант chi_sim/fast."""
    (tmp_path / "eng.traineddata").write_bytes(b"test data")
    (tmp_path / "deu.traineddata").write_bytes(b"test data")
    (tmp_path / "chi_sim").mkdir()
    (tmp_path / "chi_sim" / "fast.traineddata").write_bytes(b"test data")
    return tmp_path


@pytest.fixture
def settings(tessdata: Path) -> Settings:
    return Settings(
        _env_file=None,
        tessdata_path=str(tessdata),
        default_language="eng",
        pool_size=2,
        acquire_timeout_seconds=2.0,
        shutdown_grace_seconds=0.5,
        max_upload_size_bytes=10 * 1024 * 1024,
        max_upload_size_enabled=True,
    )


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")
