"""
Тело воркера: обработка одного элемента очереди.

1. Чтение документа из хранилища
2. Enhancement (если включён для элемента)
3. Каскад движков + нормализация + паттерны
4. Сохранение результата (или лога попыток при неудаче)

Статусы очереди здесь не меняются: исключение уходит воркеру,
а он решает retry / FAILED по флагу recoverable.
"""

import time
from dataclasses import replace
from typing import List, Optional

from loguru import logger

from contracts.extraction_dto import EnhancementRecord, ExtractionResult
from contracts.queue_dto import QueueItem
from ..domain.exceptions import AllEnginesFailedError
from ..domain.interfaces import IDocumentProcessor, IDocumentStorage, IImageEnhancer, IResultStore
from .orchestrator import ExtractionOrchestrator


class DocumentProcessor(IDocumentProcessor):
    """Связывает хранилище, enhancement, оркестратор и хранилище результатов."""

    def __init__(
        self,
        storage: IDocumentStorage,
        orchestrator: ExtractionOrchestrator,
        result_store: IResultStore,
        enhancer: Optional[IImageEnhancer] = None
    ):
        self.storage = storage
        self.orchestrator = orchestrator
        self.result_store = result_store
        self.enhancer = enhancer

    def process(self, item: QueueItem) -> ExtractionResult:
        started = time.monotonic()
        logger.info(f"[Processor] Обработка {item.document_ref} (queue_id={item.id}, попытка {item.attempt_count + 1})")

        image_bytes = self.storage.read(item.document_ref)

        records: List[EnhancementRecord] = []
        if item.options.enable_enhancement and self.enhancer is not None:
            image_bytes, records = self._enhance(item, image_bytes)
        else:
            logger.debug(f"[Processor] Enhancement пропущен: {item.document_ref}")

        try:
            result, attempts = self.orchestrator.run(
                image_bytes,
                language_hints=item.language_hints,
                preferred_engine=item.preferred_engine,
                options=item.options,
                document_ref=item.document_ref,
                queue_id=item.id,
            )
        except AllEnginesFailedError as e:
            self.result_store.save_failure(item.document_ref, e.attempts, e.summary())
            raise

        operations = tuple(dict.fromkeys(op for record in records for op in record.operations))
        result = replace(
            result,
            enhancements_applied=operations,
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )

        self.result_store.save_result(result, attempts, records)
        logger.info(
            f"[Processor] Готово: {item.document_ref} -> {result.engine} "
            f"({result.word_count} слов, {result.processing_time_ms} мс)"
        )
        return result

    def _enhance(self, item: QueueItem, image_bytes: bytes):
        """Ошибка enhancement не валит документ: OCR идёт по исходным байтам."""
        try:
            return self.enhancer.enhance_pages(image_bytes, item.options.enhancement)
        except Exception as e:
            logger.warning(f"[Processor] Enhancement не удался для {item.document_ref}, используем оригинал: {e}")
            return image_bytes, []
