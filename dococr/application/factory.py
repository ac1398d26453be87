"""
Фабрика компонентов dococr.

Единственное место, где создаются SDK-клиенты провайдеров:
адаптеры получают их через конструктор, оркестратор получает
адаптеры через реестр. Глобальных клиентов нет.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from loguru import logger
from pydantic import ValidationError

from config.settings import (
    ACCEPTANCE_THRESHOLD, DEFAULT_ENGINE_ORDER, ENGINES, ENGINES_FILE, QUEUE_MAX_ATTEMPTS,
    QUEUE_RETRY_BASE_DELAY_SECONDS, QUEUE_WORKER_COUNT, REVIEW_THRESHOLD,
)
from ..domain.contracts import ContractValidationError, EngineSettings
from ..domain.exceptions import ExtractionConfigurationError
from ..domain.interfaces import (
    IDocumentStorage, IEngineAdapter, IEventPublisher, IImageEnhancer, IResultStore,
)
from ..infrastructure.adapters import AzureDocumentAdapter, GoogleVisionAdapter, TesseractAdapter
from ..infrastructure.engine_registry import EngineRegistry
from ..infrastructure.event_publisher import LoguruEventPublisher
from ..infrastructure.file_manager import FileSystemDocumentStorage, JsonResultStore
from ..post_ocr.locale_config import LocaleConfigLoader
from ..post_ocr.locale_detector import LocaleDetector
from ..post_ocr.pattern_extractor import PatternExtractor
from ..post_ocr.structure import StructureReconciler
from ..post_ocr.text_normalizer import TextNormalizer
from ..pre_ocr.pipeline import EnhancementPipeline
from ..queue.processing_queue import ProcessingQueue
from ..queue.retry_policy import RetryPolicy
from ..queue.worker_pool import WorkerPool
from .document_processor import DocumentProcessor
from .orchestrator import ExtractionOrchestrator


def _build_google_vision(settings: EngineSettings, client: Optional[Any]) -> IEngineAdapter:
    return GoogleVisionAdapter(
        client=client,
        credentials_path=settings.credentials_path,
        timeout_seconds=settings.timeout_seconds,
    )


def _build_azure_document(settings: EngineSettings, client: Optional[Any]) -> IEngineAdapter:
    kwargs = {"model_id": settings.model} if settings.model else {}
    return AzureDocumentAdapter(
        client=client,
        endpoint=settings.endpoint,
        api_key=settings.api_key,
        timeout_seconds=settings.timeout_seconds,
        supports_tables=settings.supports_tables,
        supports_forms=settings.supports_forms,
        **kwargs
    )


def _build_tesseract(settings: EngineSettings, client: Optional[Any]) -> IEngineAdapter:
    # pytesseract вызывает бинарник, клиент не нужен
    return TesseractAdapter(
        executable=settings.executable,
        timeout_seconds=settings.timeout_seconds,
    )


EngineBuilder = Callable[[EngineSettings, Optional[Any]], IEngineAdapter]

# Новый движок: адаптер + строка здесь
ENGINE_BUILDERS: Dict[str, EngineBuilder] = {
    GoogleVisionAdapter.ENGINE_ID: _build_google_vision,
    AzureDocumentAdapter.ENGINE_ID: _build_azure_document,
    TesseractAdapter.ENGINE_ID: _build_tesseract,
}


class DocOcrComponentFactory:
    """
    Фабрика компонентов.

    Сборка по умолчанию: три движка из ENGINES, файловые хранилища,
    события в лог, пул из QUEUE_WORKER_COUNT воркеров.
    """

    @staticmethod
    def load_engine_settings(engines_file: Optional[str] = None) -> List[EngineSettings]:
        """
        Настройки движков из config.settings.ENGINES, поверх: YAML файл.

        Формат YAML:
            engines:
              AZURE_COGNITIVE:
                enabled: true
                endpoint: https://...
        """
        raw: Dict[str, Dict[str, Any]] = {name: dict(cfg) for name, cfg in ENGINES.items()}

        engines_file = engines_file if engines_file is not None else ENGINES_FILE
        if engines_file:
            path = Path(engines_file)
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ExtractionConfigurationError(
                    message=f"Не удалось прочитать конфиг движков: {path}",
                    component="DocOcrComponentFactory",
                    original_error=e
                )
            for name, overrides in (data.get("engines") or {}).items():
                raw.setdefault(name.upper(), {}).update(overrides or {})
            logger.debug(f"[Factory] Конфиг движков дополнен из {path}")

        settings = []
        for name, cfg in raw.items():
            try:
                settings.append(EngineSettings(engine_id=name, **cfg))
            except ValidationError as e:
                contract_error = ContractValidationError.from_pydantic("Factory", "EngineSettings", e)
                raise ExtractionConfigurationError(
                    message=f"Невалидная конфигурация движка {name}: {contract_error}",
                    component="DocOcrComponentFactory",
                    original_error=e
                )
        return settings

    @staticmethod
    def create_engine_adapter(settings: EngineSettings, client: Optional[Any] = None) -> IEngineAdapter:
        """
        Адаптер по engine_id через ENGINE_BUILDERS.

        Raises:
            ExtractionConfigurationError: движок неизвестен или не сконфигурирован
        """
        logger.debug(f"[Factory] Создание адаптера {settings.engine_id}")

        builder = ENGINE_BUILDERS.get(settings.engine_id)
        if builder is None:
            raise ExtractionConfigurationError(
                message=f"Неизвестный движок: {settings.engine_id}",
                component="DocOcrComponentFactory"
            )
        return builder(settings, client)

    @staticmethod
    def create_engine_registry(
        adapters: Optional[List[IEngineAdapter]] = None,
        engine_settings: Optional[List[EngineSettings]] = None,
        default_order: Optional[List[str]] = None
    ) -> EngineRegistry:
        """
        Реестр из готовых адаптеров или из настроек.

        Движок, который не удалось сконфигурировать (нет ключа, нет файла
        credentials), пропускается с ошибкой в логе. Если не собрался
        ни один: ExtractionConfigurationError.
        """
        registry = EngineRegistry(default_order=default_order or DEFAULT_ENGINE_ORDER)

        if adapters is not None:
            for adapter in adapters:
                registry.register(adapter)
            return registry

        if engine_settings is None:
            engine_settings = DocOcrComponentFactory.load_engine_settings()

        for settings in engine_settings:
            if not settings.enabled:
                logger.debug(f"[Factory] Движок {settings.engine_id} выключен")
                continue
            try:
                registry.register(DocOcrComponentFactory.create_engine_adapter(settings))
            except ExtractionConfigurationError as e:
                logger.error(f"[Factory] Движок {settings.engine_id} пропущен: {e}")

        if len(registry) == 0:
            raise ExtractionConfigurationError(
                message="Не удалось сконфигурировать ни один движок",
                component="DocOcrComponentFactory"
            )
        return registry

    @staticmethod
    def create_image_enhancer() -> IImageEnhancer:
        logger.debug("[Factory] Создание препроцессора изображений")
        return EnhancementPipeline()

    @staticmethod
    def create_orchestrator(
        registry: Optional[EngineRegistry] = None,
        publisher: Optional[IEventPublisher] = None,
        locale_loader: Optional[LocaleConfigLoader] = None,
        acceptance_threshold: float = ACCEPTANCE_THRESHOLD,
        review_threshold: float = REVIEW_THRESHOLD
    ) -> ExtractionOrchestrator:
        if registry is None:
            registry = DocOcrComponentFactory.create_engine_registry()
        loader = locale_loader or LocaleConfigLoader()
        return ExtractionOrchestrator(
            registry=registry,
            publisher=publisher,
            normalizer=TextNormalizer(loader),
            pattern_extractor=PatternExtractor(loader),
            structure=StructureReconciler(),
            locale_detector=LocaleDetector(loader),
            acceptance_threshold=acceptance_threshold,
            review_threshold=review_threshold,
        )

    @staticmethod
    def create_queue(
        publisher: Optional[IEventPublisher] = None,
        max_attempts: int = QUEUE_MAX_ATTEMPTS,
        retry_base_delay_seconds: float = QUEUE_RETRY_BASE_DELAY_SECONDS
    ) -> ProcessingQueue:
        return ProcessingQueue(
            publisher=publisher,
            retry_policy=RetryPolicy(base_delay_seconds=retry_base_delay_seconds, max_attempts=max_attempts),
        )

    @staticmethod
    def create_worker_pool(
        queue: ProcessingQueue,
        orchestrator: ExtractionOrchestrator,
        storage: Optional[IDocumentStorage] = None,
        result_store: Optional[IResultStore] = None,
        enhancer: Optional[IImageEnhancer] = None,
        size: int = QUEUE_WORKER_COUNT
    ) -> WorkerPool:
        processor = DocumentProcessor(
            storage=storage or FileSystemDocumentStorage(),
            orchestrator=orchestrator,
            result_store=result_store or JsonResultStore(),
            enhancer=enhancer if enhancer is not None else DocOcrComponentFactory.create_image_enhancer(),
        )
        return WorkerPool(queue=queue, processor=processor, size=size)

    @staticmethod
    def create_default_service(
        storage: Optional[IDocumentStorage] = None,
        result_store: Optional[IResultStore] = None,
        publisher: Optional[IEventPublisher] = None,
        workers: int = QUEUE_WORKER_COUNT
    ) -> "DocOcrService":
        """Полная сборка с настройками по умолчанию."""
        logger.info("[Factory] Создание сервиса с настройками по умолчанию")

        publisher = publisher or LoguruEventPublisher()
        queue = DocOcrComponentFactory.create_queue(publisher)
        orchestrator = DocOcrComponentFactory.create_orchestrator(publisher=publisher)
        pool = DocOcrComponentFactory.create_worker_pool(
            queue, orchestrator, storage=storage, result_store=result_store, size=workers
        )
        return DocOcrService(queue=queue, pool=pool, orchestrator=orchestrator)


class DocOcrService:
    """Собранные компоненты: очередь для вызывающих, пул для обработки."""

    def __init__(self, queue: ProcessingQueue, pool: WorkerPool, orchestrator: ExtractionOrchestrator):
        self.queue = queue
        self.pool = pool
        self.orchestrator = orchestrator

    @property
    def result_store(self) -> IResultStore:
        return self.pool.processor.result_store
