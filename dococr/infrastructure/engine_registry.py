"""
Реестр движков: engine_id -> адаптер.

Порядок каскада: предпочтительный движок (если зарегистрирован) первым,
затем остальные в порядке по умолчанию. Незарегистрированные движки
из порядка по умолчанию пропускаются.
"""

from typing import Dict, Iterable, List, Optional

from loguru import logger

from config.settings import DEFAULT_ENGINE_ORDER
from ..domain.interfaces import IEngineAdapter


class EngineRegistry:
    """Таблица адаптеров. Без глобальных клиентов: адаптеры передаёт фабрика."""

    def __init__(
        self,
        adapters: Iterable[IEngineAdapter] = (),
        default_order: Optional[List[str]] = None
    ) -> None:
        self._adapters: Dict[str, IEngineAdapter] = {}
        self.default_order = list(default_order or DEFAULT_ENGINE_ORDER)
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: IEngineAdapter) -> None:
        if adapter.engine_id in self._adapters:
            logger.warning(f"[EngineRegistry] Адаптер {adapter.engine_id} заменён")
        self._adapters[adapter.engine_id] = adapter
        logger.debug(f"[EngineRegistry] Зарегистрирован {adapter.engine_id}")

    def get(self, engine_id: str) -> Optional[IEngineAdapter]:
        return self._adapters.get(engine_id)

    def __contains__(self, engine_id: object) -> bool:
        return engine_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    @property
    def engine_ids(self) -> List[str]:
        return list(self._adapters)

    def cascade_order(self, preferred: Optional[str] = None) -> List[IEngineAdapter]:
        """
        Адаптеры в порядке вызова.

        Движки, которых нет в default_order, но которые зарегистрированы,
        идут в конце в порядке регистрации.
        """
        order: List[str] = []

        if preferred:
            if preferred in self._adapters:
                order.append(preferred)
            else:
                logger.warning(f"[EngineRegistry] Предпочтительный движок {preferred} не зарегистрирован, игнорируем")

        for engine_id in self.default_order + list(self._adapters):
            if engine_id in self._adapters and engine_id not in order:
                order.append(engine_id)

        return [self._adapters[engine_id] for engine_id in order]
