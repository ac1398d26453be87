"""
Базовый адаптер движка: таймаут и приведение ошибок провайдера.

Вызов провайдера идёт в отдельном потоке. Если ответ не пришёл за
timeout_seconds, поток бросается (результат игнорируется), а вызывающий
получает EngineTimeoutError. Отмены вызова на лету нет.
"""

from abc import abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import List, Optional, Sequence

from loguru import logger

from config.settings import ENGINE_TIMEOUT_SECONDS
from contracts.extraction_dto import RawEngineResult
from contracts.queue_dto import ExtractionOptions
from ...domain.interfaces import IEngineAdapter
from ...domain.exceptions import EngineError, EngineCallError, EngineTimeoutError


class BaseEngineAdapter(IEngineAdapter):
    """
    Общая часть всех адаптеров.

    Наследник реализует _call_provider() и возвращает RawEngineResult
    в единицах провайдера. Таблицы/формы, которые движок не поддерживает
    или которые не запрошены, обнуляются здесь.
    """

    ENGINE_ID: str = ""

    def __init__(
        self,
        timeout_seconds: float = ENGINE_TIMEOUT_SECONDS,
        supports_tables: bool = False,
        supports_forms: bool = False
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._supports_tables = supports_tables
        self._supports_forms = supports_forms

    @property
    def engine_id(self) -> str:
        return self.ENGINE_ID

    @property
    def supports_tables(self) -> bool:
        return self._supports_tables

    @property
    def supports_forms(self) -> bool:
        return self._supports_forms

    def extract(
        self,
        image_bytes: bytes,
        language_hints: Sequence[str] = (),
        options: Optional[ExtractionOptions] = None
    ) -> RawEngineResult:
        options = options or ExtractionOptions()
        hints = list(language_hints)

        logger.debug(
            f"[{self.engine_id}] Вызов провайдера: {len(image_bytes)} байт, "
            f"hints={hints}, timeout={self.timeout_seconds:g}s"
        )

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"engine-{self.engine_id.lower()}")
        future = executor.submit(self._call_provider, image_bytes, hints, options)
        try:
            result = future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError:
            logger.warning(f"[{self.engine_id}] Таймаут {self.timeout_seconds:g}s, результат будет проигнорирован")
            raise EngineTimeoutError(self.engine_id, self.timeout_seconds)
        except EngineError:
            raise
        except Exception as e:
            logger.warning(f"[{self.engine_id}] Ошибка провайдера: {e}")
            raise EngineCallError(
                engine=self.engine_id,
                message="Ошибка вызова провайдера",
                original_error=e
            )
        finally:
            executor.shutdown(wait=False)

        if not (self.supports_tables and options.enable_table_detection):
            result.tables = []
        if not (self.supports_forms and options.enable_form_detection):
            result.form_fields = []

        logger.debug(
            f"[{self.engine_id}] Ответ: {len(result.pages)} стр., "
            f"confidence={result.overall_confidence:.3f}, "
            f"{len(result.tables)} таблиц, {len(result.form_fields)} полей"
        )
        return result

    @abstractmethod
    def _call_provider(
        self,
        image_bytes: bytes,
        language_hints: List[str],
        options: ExtractionOptions
    ) -> RawEngineResult:
        """Синхронный вызов SDK провайдера."""
        pass
