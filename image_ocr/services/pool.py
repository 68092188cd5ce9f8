"""
Пул экземпляров движка распознавания.

Движок тяжёлый в инициализации и не реентерабельный: два параллельных
вызова одного экземпляра портят результат. Поэтому:
    - N экземпляров создаются один раз при старте (N = pool_size)
    - запрос получает экземпляр в эксклюзивное владение через acquire()
    - если загруженные языки не совпадают с запрошенными — перезагрузка
    - ошибка движка -> экземпляр выбрасывается и заменяется новым
      (generation + 1) до того, как ошибка уйдёт вызывающему
    - блокирующие вызовы движка идут в отдельный ThreadPoolExecutor
      размером с пул, event loop ими не блокируется

Очередь свободных экземпляров меняется только из потока event loop
(завершения фоновых вызовов возвращаются туда через call_soon_threadsafe),
поэтому критическая секция — это put/get очереди, без блокировок
вокруг вызова движка.
"""

import asyncio
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional, Sequence, TypeVar

from image_ocr.errors import EngineFailure, OCRServiceError, PoolClosed, PoolTimeout
from image_ocr.schemas import LanguageAsset
from image_ocr.services.engine import Engine, EngineFactory

logger = logging.getLogger(__name__)

T = TypeVar("T")


def language_key(assets: Sequence[LanguageAsset]) -> str:
    """Строка языков Tesseract для набора моделей: "rus+eng"."""
    return "+".join(asset.tesseract_name for asset in assets)


@dataclass(eq=False)
class EngineInstance:
    """
    Экземпляр движка под управлением пула.

    Attributes:
        instance_id: номер слота в пуле (не меняется при замене)
        generation: поколение (увеличивается при каждой замене)
        engine: нативный handle движка
        languages: строка загруженных языков (None — ничего не загружено)
        busy: экземпляр выдан запросу
        detached: запрос отменён, а вызов движка ещё идёт в фоне
    """

    instance_id: int
    generation: int
    engine: Engine = field(repr=False)
    languages: Optional[str] = None
    busy: bool = False
    detached: bool = False

    @property
    def label(self) -> str:
        return f"#{self.instance_id}.g{self.generation}"


class EnginePool:
    """
    Пул экземпляров движка фиксированного размера.

    Args:
        factory: фабрика нового экземпляра движка
        size: количество экземпляров
        acquire_timeout: таймаут ожидания свободного экземпляра (сек)
        shutdown_grace: время на завершение активных запросов при остановке (сек)
    """

    def __init__(
        self,
        factory: EngineFactory,
        size: int,
        acquire_timeout: float = 10.0,
        shutdown_grace: float = 5.0,
    ) -> None:
        if size < 1:
            raise ValueError("Размер пула должен быть >= 1")

        self.size = size
        self.acquire_timeout = acquire_timeout
        self.shutdown_grace = shutdown_grace
        self._factory = factory
        self._executor = ThreadPoolExecutor(max_workers=size, thread_name_prefix="ocr-engine")
        self._idle: asyncio.Queue[EngineInstance] = asyncio.Queue()
        self._instances: dict[int, EngineInstance] = {}
        self._background: set[asyncio.Task] = set()
        self._drained = asyncio.Event()
        self._started = False
        self._closed = False
        self.replacements = 0

    # -------------------------------------------------------------------------
    # Жизненный цикл
    # -------------------------------------------------------------------------

    async def start(self, preload: Sequence[LanguageAsset] = ()) -> None:
        """
        Создаёт все экземпляры параллельно на рабочих потоках.

        Args:
            preload: языки, загружаемые в каждый экземпляр сразу
        """
        if self._started:
            return
        self._started = True

        start = time.perf_counter()
        instances = await asyncio.gather(
            *(self._spawn(slot, 1, preload) for slot in range(self.size))
        )

        for instance in instances:
            if instance is not None:
                self._instances[instance.instance_id] = instance
                self._idle.put_nowait(instance)

        duration = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Пул движков запущен: {len(self._instances)}/{self.size} экземпляров "
            f"за {duration}ms, языки: {language_key(preload) or 'нет'}"
        )
        if not self._instances:
            logger.error("Не создано ни одного экземпляра движка")

    async def close(self, grace: Optional[float] = None) -> None:
        """
        Останавливает пул.

        Новые запросы получают PoolClosed. Активные запросы получают
        grace секунд на завершение, после чего экземпляры освобождаются
        принудительно.
        """
        if self._closed:
            return
        self._closed = True
        grace = self.shutdown_grace if grace is None else grace

        busy = self.busy_count
        if busy:
            logger.info(f"Остановка пула: ожидание {busy} активных запросов ({grace}с)")
            self._check_drained()
            try:
                async with asyncio.timeout(grace):
                    await self._drained.wait()
            except TimeoutError:
                logger.warning(
                    f"Остановка пула: принудительно освобождено {self.busy_count} экземпляров"
                )

        for task in list(self._background):
            task.cancel()

        for instance in self._instances.values():
            instance.busy = False
            instance.engine.close()
        self._instances.clear()

        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Пул движков остановлен")

    # -------------------------------------------------------------------------
    # Выдача и возврат экземпляров
    # -------------------------------------------------------------------------

    async def acquire(
        self,
        assets: Sequence[LanguageAsset],
        timeout: Optional[float] = None,
    ) -> EngineInstance:
        """
        Ожидает свободный экземпляр и настраивает его на нужные языки.

        Ожидание не занимает поток: задача запроса приостанавливается
        на очереди. Отмена во время ожидания ничего не стоит.

        Args:
            assets: модели языков запроса
            timeout: таймаут ожидания (по умолчанию acquire_timeout)

        Returns:
            EngineInstance: экземпляр в эксклюзивном владении

        Raises:
            PoolClosed: пул остановлен
            PoolTimeout: свободный экземпляр не появился за timeout
            EngineFailure: перезагрузка языков не удалась (экземпляр уже заменён)
        """
        key = language_key(assets)
        timeout = self.acquire_timeout if timeout is None else timeout

        if self._closed:
            raise PoolClosed("Сервис останавливается", languages=key)
        if not self._instances:
            raise EngineFailure("Нет работоспособных экземпляров движка", languages=key)

        try:
            async with asyncio.timeout(timeout):
                instance = await self._idle.get()
        except TimeoutError:
            logger.warning(f"Таймаут ожидания движка: {timeout}с, языки={key}, занято={self.busy_count}")
            raise PoolTimeout(
                f"Все экземпляры движка заняты дольше {timeout} секунд",
                retry_after=timeout,
                languages=key,
                pool_size=self.size,
            ) from None

        if self._closed:
            self._idle.put_nowait(instance)
            raise PoolClosed("Сервис останавливается", languages=key)

        instance.busy = True

        if instance.languages != key:
            await self._reload(instance, assets, key)

        return instance

    def release(self, instance: EngineInstance) -> None:
        """
        Возвращает экземпляр в очередь свободных.

        Сбрасывает состояние последнего вызова. Вызывается только
        из потока event loop.
        """
        if self._instances.get(instance.instance_id) is not instance:
            # Экземпляр уже заменён или пул остановлен
            return

        instance.engine.clear()
        instance.busy = False
        instance.detached = False
        self._idle.put_nowait(instance)
        self._check_drained()

    async def replace(self, instance: EngineInstance, reason: str = "") -> Optional[EngineInstance]:
        """
        Выбрасывает экземпляр и создаёт на его месте новый (generation + 1).

        Returns:
            EngineInstance или None, если новый экземпляр создать не удалось
        """
        slot = instance.instance_id
        if self._instances.get(slot) is instance:
            del self._instances[slot]
        instance.busy = False
        instance.languages = None
        instance.engine.close()

        logger.warning(f"Замена экземпляра {instance.label}: {reason or 'ошибка движка'}")
        self.replacements += 1

        if self._closed:
            self._check_drained()
            return None

        fresh = await self._spawn(slot, instance.generation + 1, ())
        if fresh is None:
            self._check_drained()
            return None

        if self._closed:
            fresh.engine.close()
            return None

        self._instances[slot] = fresh
        self._idle.put_nowait(fresh)
        self._check_drained()
        logger.info(f"Экземпляр {instance.label} заменён на {fresh.label}")
        return fresh

    @asynccontextmanager
    async def lease(
        self,
        assets: Sequence[LanguageAsset],
        timeout: Optional[float] = None,
    ) -> AsyncIterator[EngineInstance]:
        """
        Эксклюзивное владение экземпляром на время блока async with.

        EngineFailure внутри блока -> экземпляр заменяется до того,
        как ошибка уйдёт выше. Если вызов движка продолжается в фоне
        после отмены запроса, экземпляр вернёт фоновое завершение.
        """
        instance = await self.acquire(assets, timeout)
        try:
            yield instance
        except EngineFailure as e:
            await self._replace_shielded(instance, str(e))
            raise
        except BaseException:
            if not instance.detached:
                self.release(instance)
            raise
        else:
            self.release(instance)

    # -------------------------------------------------------------------------
    # Рабочие потоки
    # -------------------------------------------------------------------------

    async def run(self, instance: EngineInstance, fn: Callable[..., T], *args: Any) -> T:
        """
        Выполняет блокирующий вызов движка на рабочем потоке.

        Если запрос отменён до начала вызова — вызов не выполняется.
        Если вызов уже идёт — он доработает до конца (прервать движок
        нельзя), результат будет отброшен, а экземпляр вернётся в пул
        или будет заменён после завершения.
        """
        loop = asyncio.get_running_loop()
        future = self._executor.submit(fn, *args)
        try:
            return await asyncio.wrap_future(future)
        except asyncio.CancelledError:
            if not future.cancel():
                instance.detached = True
                future.add_done_callback(
                    lambda f: self._schedule_finish(loop, instance, f)
                )
            raise

    def _schedule_finish(
        self,
        loop: asyncio.AbstractEventLoop,
        instance: EngineInstance,
        future: Future,
    ) -> None:
        # Вызывается из рабочего потока
        try:
            loop.call_soon_threadsafe(self._finish_detached, instance, future)
        except RuntimeError:
            logger.debug(f"Event loop закрыт, завершение {instance.label} пропущено")

    def _finish_detached(self, instance: EngineInstance, future: Future) -> None:
        error = None if future.cancelled() else future.exception()
        if error is None or _is_input_error(error):
            logger.info(f"Отменённый запрос: вызов на {instance.label} завершён, результат отброшен")
            self.release(instance)
            return

        if self._instances.get(instance.instance_id) is not instance:
            return

        self._start_replace(instance, str(error))

    def _start_replace(self, instance: EngineInstance, reason: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.replace(instance, reason))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _replace_shielded(self, instance: EngineInstance, reason: str) -> None:
        """Замена, которую не прерывает отмена запроса (дедлайн, разрыв соединения)."""
        await asyncio.shield(self._start_replace(instance, reason))

    async def _reload(
        self,
        instance: EngineInstance,
        assets: Sequence[LanguageAsset],
        key: str,
    ) -> None:
        previous = instance.languages
        # Пока идёт загрузка, набор языков движка не известен
        instance.languages = None
        start = time.perf_counter()
        try:
            await self.run(instance, _load_engine, instance.engine, list(assets))
        except EngineFailure as e:
            await self._replace_shielded(instance, f"перезагрузка {previous} -> {key}: {e}")
            e.context.setdefault("instance_id", instance.instance_id)
            e.context.setdefault("generation", instance.generation)
            raise
        except asyncio.CancelledError:
            if not instance.detached:
                self.release(instance)
            raise
        except Exception as e:
            await self._replace_shielded(instance, f"перезагрузка {previous} -> {key}: {e}")
            raise EngineFailure(
                f"Не удалось загрузить модели {key}: {e}",
                languages=key,
                instance_id=instance.instance_id,
                generation=instance.generation,
            ) from e

        instance.languages = key
        duration = int((time.perf_counter() - start) * 1000)
        logger.info(f"Экземпляр {instance.label}: языки {previous or '-'} -> {key} за {duration}ms")

    async def _spawn(
        self,
        slot: int,
        generation: int,
        preload: Sequence[LanguageAsset],
    ) -> Optional[EngineInstance]:
        """Создаёт экземпляр на рабочем потоке. None — создать не удалось."""
        loop = asyncio.get_running_loop()
        try:
            engine = await loop.run_in_executor(self._executor, self._factory)
        except Exception as e:
            logger.error(f"Не удалось создать экземпляр #{slot}.g{generation}: {e}")
            return None

        instance = EngineInstance(instance_id=slot, generation=generation, engine=engine)

        if preload:
            key = language_key(preload)
            try:
                await loop.run_in_executor(self._executor, _load_engine, engine, list(preload))
            except Exception as e:
                logger.error(f"Экземпляр {instance.label}: не удалось загрузить {key}: {e}")
            else:
                instance.languages = key

        return instance

    def _check_drained(self) -> None:
        if self._closed and self.busy_count == 0:
            self._drained.set()

    # -------------------------------------------------------------------------
    # Состояние
    # -------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def usable_count(self) -> int:
        return len(self._instances)

    @property
    def busy_count(self) -> int:
        return sum(1 for instance in self._instances.values() if instance.busy)

    @property
    def idle_count(self) -> int:
        return self._idle.qsize()

    def stats(self) -> dict:
        """
        Статистика пула для health-эндпоинта.

        Returns:
            dict: {size, usable, busy, idle, replacements, closed, instances}
        """
        return {
            "size": self.size,
            "usable": self.usable_count,
            "busy": self.busy_count,
            "idle": self.idle_count,
            "replacements": self.replacements,
            "closed": self._closed,
            "instances": [
                {
                    "instance_id": instance.instance_id,
                    "generation": instance.generation,
                    "languages": instance.languages,
                    "busy": instance.busy,
                }
                for instance in sorted(self._instances.values(), key=lambda i: i.instance_id)
            ],
        }


def _load_engine(engine: Engine, assets: list[LanguageAsset]) -> None:
    engine.load(assets)


def _is_input_error(error: BaseException) -> bool:
    """Ошибка ввода (битое изображение и т.п.) не означает поломку движка."""
    return isinstance(error, OCRServiceError) and not isinstance(error, EngineFailure)
