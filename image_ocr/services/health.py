"""
Проверка готовности сервиса.

Сервис здоров, только если в пуле есть хотя бы один рабочий экземпляр
движка и модель языка по умолчанию найдена на диске.
"""

from image_ocr.services.languages import LanguageRegistry
from image_ocr.services.pool import EnginePool


class HealthProbe:
    def __init__(self, pool: EnginePool, registry: LanguageRegistry) -> None:
        self.pool = pool
        self.registry = registry

    def is_healthy(self) -> bool:
        return (
            not self.pool.closed
            and self.pool.usable_count >= 1
            and self.registry.default_available
        )

    def report(self) -> dict:
        """
        Состояние для health-эндпоинта.

        Returns:
            dict: {status, default_language, pool}
        """
        return {
            "status": "ok" if self.is_healthy() else "degraded",
            "default_language": {
                "code": self.registry.default_language,
                "available": self.registry.default_available,
            },
            "pool": self.pool.stats(),
        }
