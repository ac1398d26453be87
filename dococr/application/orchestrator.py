"""
Оркестратор движков: каскад с порогом уверенности.

ЦКП: ExtractionResult лучшего движка + полный лог попыток.

Алгоритм:
1. Порядок: предпочтительный движок, затем порядок по умолчанию
2. Каждый вызов -> EngineAttempt (SUCCESS / FALLBACK / FAILED / TIMEOUT)
3. confidence >= порога принятия -> каскад останавливается
4. Иначе выбирается лучший из полученных результатов
5. Ни одного результата -> AllEnginesFailedError (очередь повторит)

needs_manual_review выставляется по отдельному порогу проверки,
независимо от того, был ли результат "принят".
"""

import time
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from loguru import logger

from config.settings import ACCEPTANCE_THRESHOLD, AUTO_LOCALE, DEFAULT_LOCALE, REVIEW_THRESHOLD
from contracts.extraction_dto import (
    AttemptStatus, EngineAttempt, ExtractionResult, PageResult, RawEngineResult, TextBlock,
)
from contracts.queue_dto import ExtractionOptions
from ..domain.events import OcrEvent, OcrEventType
from ..domain.exceptions import AllEnginesFailedError, EngineTimeoutError, ExtractionConfigurationError
from ..domain.interfaces import IEventPublisher
from ..infrastructure.engine_registry import EngineRegistry
from ..post_ocr.locale_detector import LocaleDetector
from ..post_ocr.pattern_extractor import PatternExtractor
from ..post_ocr.structure import StructureReconciler, normalize_box
from ..post_ocr.text_normalizer import TextNormalizer


class ExtractionOrchestrator:
    """Запускает движки по очереди и выбирает результат."""

    def __init__(
        self,
        registry: EngineRegistry,
        publisher: Optional[IEventPublisher] = None,
        normalizer: Optional[TextNormalizer] = None,
        pattern_extractor: Optional[PatternExtractor] = None,
        structure: Optional[StructureReconciler] = None,
        locale_detector: Optional[LocaleDetector] = None,
        acceptance_threshold: float = ACCEPTANCE_THRESHOLD,
        review_threshold: float = REVIEW_THRESHOLD,
        default_locale: str = DEFAULT_LOCALE,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Args:
            registry: Реестр адаптеров движков
            publisher: Получатель событий OCR_ENGINE_FALLBACK (опционально)
            normalizer: Нормализатор текста
            pattern_extractor: Извлечение дат, сумм, идентификаторов
            structure: Сборка таблиц и форм
            locale_detector: Определение локали по тексту, если подсказок нет
            acceptance_threshold: Порог остановки каскада
            review_threshold: Порог ручной проверки
            default_locale: Локаль, если подсказок нет и детектор не справился
            clock: Источник времени (для тестов)
        """
        for name, value in (("acceptance_threshold", acceptance_threshold), ("review_threshold", review_threshold)):
            if not 0.0 <= value <= 1.0:
                raise ExtractionConfigurationError(
                    message=f"{name} вне [0, 1]: {value}",
                    component="ExtractionOrchestrator"
                )

        self.registry = registry
        self.publisher = publisher
        self.normalizer = normalizer or TextNormalizer()
        self.pattern_extractor = pattern_extractor or PatternExtractor(self.normalizer.loader)
        self.structure = structure or StructureReconciler()
        self.acceptance_threshold = acceptance_threshold
        self.review_threshold = review_threshold
        self.default_locale = default_locale
        self.locale_detector = locale_detector or LocaleDetector(self.normalizer.loader, default_locale)
        self.clock = clock

        logger.info(
            f"[Orchestrator] Инициализирован: движки={registry.engine_ids}, "
            f"accept={acceptance_threshold}, review={review_threshold}"
        )

    def run(
        self,
        image_bytes: bytes,
        language_hints: Sequence[str] = (),
        preferred_engine: Optional[str] = None,
        options: Optional[ExtractionOptions] = None,
        document_ref: Optional[str] = None,
        queue_id: Optional[str] = None
    ) -> Tuple[ExtractionResult, List[EngineAttempt]]:
        """
        Прогоняет документ через каскад движков.

        Returns:
            (результат выбранного движка, попытки в порядке вызова)

        Raises:
            AllEnginesFailedError: ни один движок не вернул результат
        """
        options = options or ExtractionOptions()
        hints = [h for h in language_hints if h and h.lower() != AUTO_LOCALE]
        run_started = time.monotonic()

        cascade = self.registry.cascade_order(preferred_engine)
        logger.info(
            f"[Orchestrator] {document_ref}: каскад {[a.engine_id for a in cascade]}"
        )

        attempts: List[EngineAttempt] = []
        best: Optional[RawEngineResult] = None
        best_confidence = -1.0

        for order, adapter in enumerate(cascade, start=1):
            started_at = self.clock()
            try:
                raw = adapter.extract(image_bytes, hints, options)
            except Exception as e:
                status = AttemptStatus.TIMEOUT if isinstance(e, EngineTimeoutError) else AttemptStatus.FAILED
                attempt = EngineAttempt(
                    engine=adapter.engine_id,
                    order=order,
                    status=status,
                    confidence=None,
                    error_message=str(e),
                    started_at=started_at,
                    completed_at=self.clock(),
                )
                attempts.append(attempt)
                logger.warning(f"[Orchestrator] {adapter.engine_id}: {status.value} ({e})")
                if order < len(cascade):
                    self._publish_fallback(attempt, document_ref, queue_id)
                continue

            confidence = raw.overall_confidence
            accepted = confidence >= self.acceptance_threshold
            attempt = EngineAttempt(
                engine=adapter.engine_id,
                order=order,
                status=AttemptStatus.SUCCESS if accepted else AttemptStatus.FALLBACK,
                confidence=confidence,
                error_message=None,
                started_at=started_at,
                completed_at=self.clock(),
                page_count=len(raw.pages),
            )
            attempts.append(attempt)

            if confidence > best_confidence:
                best = raw
                best_confidence = confidence

            if accepted:
                logger.info(f"[Orchestrator] {adapter.engine_id}: confidence={confidence:.3f}, принят")
                break

            if order == len(cascade):
                logger.warning(
                    f"[Orchestrator] {adapter.engine_id}: confidence={confidence:.3f} "
                    f"< {self.acceptance_threshold}, движков больше нет"
                )
                break

            logger.warning(
                f"[Orchestrator] {adapter.engine_id}: confidence={confidence:.3f} "
                f"< {self.acceptance_threshold}, переход к следующему движку"
            )
            self._publish_fallback(attempt, document_ref, queue_id)

        if best is None:
            error = AllEnginesFailedError(attempts)
            logger.error(f"[Orchestrator] {document_ref}: {error.summary()}")
            raise error

        elapsed_ms = int((time.monotonic() - run_started) * 1000)
        result = self._build_result(best, best_confidence, hints, options, document_ref, elapsed_ms)

        logger.info(
            f"[Orchestrator] {document_ref}: выбран {result.engine} "
            f"(confidence={result.overall_confidence:.3f}, review={result.needs_manual_review})"
        )
        return result, attempts

    def _build_result(
        self,
        raw: RawEngineResult,
        confidence: float,
        hints: List[str],
        options: ExtractionOptions,
        document_ref: Optional[str],
        elapsed_ms: int
    ) -> ExtractionResult:
        full_text = raw.text()
        locale = hints[0] if hints else self.locale_detector.detect(full_text)
        normalized = self.normalizer.normalize(full_text, locale)
        patterns = self.pattern_extractor.extract(normalized, locale)

        tables = self.structure.reconcile_tables(raw.tables, raw.pages) if options.enable_table_detection else []
        forms = self.structure.reconcile_form_fields(raw.form_fields, raw.pages) if options.enable_form_detection else []

        needs_review = confidence < self.review_threshold
        review_reason = None
        if needs_review:
            review_reason = (
                f"Уверенность {confidence:.2f} ниже порога проверки {self.review_threshold:.2f} "
                f"(движок {raw.engine})"
            )

        return ExtractionResult(
            document_ref=document_ref or "",
            engine=raw.engine,
            engine_version=raw.engine_version,
            full_text=full_text,
            full_text_normalized=normalized,
            page_results=tuple(self._page_results(raw)),
            overall_confidence=confidence,
            needs_manual_review=needs_review,
            review_reason=review_reason,
            detected_tables=tuple(tables),
            detected_form_fields=tuple(forms),
            detected_patterns=patterns,
            language=locale,
            processing_time_ms=elapsed_ms,
            created_at=self.clock(),
        )

    @staticmethod
    def _page_results(raw: RawEngineResult) -> List[PageResult]:
        pages = []
        for page in raw.pages:
            blocks = tuple(
                TextBlock(
                    text=block.text,
                    confidence=block.confidence,
                    bounding_box=normalize_box(block.bounding_box, page.width, page.height),
                    block_type=block.block_type,
                )
                for block in page.blocks
            )
            pages.append(PageResult(
                page_number=page.page_number,
                text=page.text,
                confidence=page.effective_confidence(),
                width=page.width,
                height=page.height,
                blocks=blocks,
            ))
        return pages

    def _publish_fallback(self, attempt: EngineAttempt, document_ref: Optional[str], queue_id: Optional[str]) -> None:
        if self.publisher is None:
            return
        event = OcrEvent(
            event_type=OcrEventType.OCR_ENGINE_FALLBACK,
            document_ref=document_ref,
            queue_id=queue_id,
            payload={
                "engine": attempt.engine,
                "order": attempt.order,
                "status": attempt.status.value,
                "confidence": attempt.confidence,
                "error": attempt.error_message,
            },
            timestamp=attempt.completed_at,
        )
        try:
            self.publisher.publish(event)
        except Exception:
            logger.exception(f"[Orchestrator] Не удалось опубликовать OCR_ENGINE_FALLBACK для {document_ref}")
