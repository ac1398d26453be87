"""
Интерфейсы (абстрактные классы) проекта dococr.

Оркестратор, воркеры и очередь зависят только от этих интерфейсов:
конкретные провайдеры и хранилища подставляет фабрика.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from contracts.extraction_dto import (
    RawEngineResult, ExtractionResult, EngineAttempt, EnhancementRecord,
)
from contracts.queue_dto import ExtractionOptions, EnhancementOptions, QueueItem
from .events import OcrEvent


class IEngineAdapter(ABC):
    """Единый интерфейс движка извлечения текста."""

    @property
    @abstractmethod
    def engine_id(self) -> str:
        """Идентификатор движка (GOOGLE_VISION, AZURE_COGNITIVE, TESSERACT)."""
        pass

    @property
    @abstractmethod
    def engine_version(self) -> str:
        pass

    @property
    @abstractmethod
    def supports_tables(self) -> bool:
        pass

    @property
    @abstractmethod
    def supports_forms(self) -> bool:
        pass

    @abstractmethod
    def extract(
        self,
        image_bytes: bytes,
        language_hints: Sequence[str] = (),
        options: Optional[ExtractionOptions] = None
    ) -> RawEngineResult:
        """
        Извлекает текст (и структуру, если движок умеет).

        Args:
            image_bytes: Байты изображения или документа
            language_hints: Языковые подсказки (ISO-639-1, в порядке приоритета)
            options: Флаги таблиц/форм

        Returns:
            RawEngineResult в единицах провайдера

        Raises:
            EngineTimeoutError: превышен таймаут
            EngineCallError: любая другая ошибка провайдера
        """
        pass


class IImageEnhancer(ABC):
    """Интерфейс препроцессора изображений."""

    @abstractmethod
    def enhance_pages(
        self,
        image_bytes: bytes,
        options: Optional[EnhancementOptions] = None
    ) -> Tuple[bytes, List[EnhancementRecord]]:
        """
        Нормализует качество изображения перед OCR.

        Returns:
            (байты, по одному EnhancementRecord на страницу).
            Неподдерживаемые байты возвращаются без изменений с пустым списком.
        """
        pass

    def enhance(
        self,
        image_bytes: bytes,
        options: Optional[EnhancementOptions] = None
    ) -> Tuple[bytes, EnhancementRecord]:
        """Одностраничная форма: запись первой страницы или EnhancementRecord.empty()."""
        data, records = self.enhance_pages(image_bytes, options)
        return data, records[0] if records else EnhancementRecord.empty()


class IDocumentStorage(ABC):
    """Хранилище исходных документов."""

    @abstractmethod
    def read(self, document_ref: str) -> bytes:
        """
        Raises:
            DocumentNotFoundError: документа нет
        """
        pass

    @abstractmethod
    def exists(self, document_ref: str) -> bool:
        pass


class IResultStore(ABC):
    """Хранилище результатов извлечения."""

    @abstractmethod
    def save_result(
        self,
        result: ExtractionResult,
        attempts: Sequence[EngineAttempt],
        enhancement_records: Sequence[EnhancementRecord] = ()
    ) -> str:
        """Сохраняет результат, возвращает его id. Старые результаты не перезаписываются."""
        pass

    @abstractmethod
    def save_failure(
        self,
        document_ref: str,
        attempts: Sequence[EngineAttempt],
        error: str
    ) -> None:
        """Сохраняет лог попыток неудачного запуска."""
        pass

    @abstractmethod
    def latest(self, document_ref: str) -> Optional[ExtractionResult]:
        pass

    @abstractmethod
    def history(self, document_ref: str) -> List[ExtractionResult]:
        """Все результаты документа, новые первыми."""
        pass


class IEventPublisher(ABC):
    """Публикация событий жизненного цикла (аудит, уведомления)."""

    @abstractmethod
    def publish(self, event: OcrEvent) -> None:
        pass


class IDocumentProcessor(ABC):
    """Тело воркера: обработка одного элемента очереди."""

    @abstractmethod
    def process(self, item: QueueItem) -> ExtractionResult:
        """
        Raises:
            ExtractionError: recoverable определяет retry или терминальный FAILED
        """
        pass
