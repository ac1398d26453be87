"""
Контракты DTO между слоями проекта dococr.

Контракты:
- Очередь: QueueItem, QueueItemView, ExtractionOptions (queue_dto.py)
- Движки -> Оркестратор: RawEngineResult (extraction_dto.py)
- Оркестратор -> Хранилище: ExtractionResult, EngineAttempt, EnhancementRecord

Валидация входных данных (pydantic): в dococr.domain.contracts.
"""

from .extraction_dto import (
    OcrEngine,
    ENGINE_DISPLAY_NAMES,
    AttemptStatus,
    BoundingBox,
    TextBlock,
    PageResult,
    TableCell,
    DetectedTable,
    FormField,
    PatternMatch,
    DetectedPatterns,
    EngineAttempt,
    QualityMeasurement,
    StageMeasurement,
    EnhancementRecord,
    RawPage,
    RawTableCell,
    RawTable,
    RawFormField,
    RawEngineResult,
    ExtractionResult,
)

from .queue_dto import (
    QueuePriority,
    QueueStatus,
    ACTIVE_STATUSES,
    EnhancementOptions,
    ExtractionOptions,
    QueueItem,
    QueueItemView,
    BatchItemOutcome,
    BatchEnqueueResult,
)

__all__ = [
    # Движки и результат
    "OcrEngine",
    "ENGINE_DISPLAY_NAMES",
    "AttemptStatus",
    "BoundingBox",
    "TextBlock",
    "PageResult",
    "TableCell",
    "DetectedTable",
    "FormField",
    "PatternMatch",
    "DetectedPatterns",
    "EngineAttempt",
    "QualityMeasurement",
    "StageMeasurement",
    "EnhancementRecord",
    "RawPage",
    "RawTableCell",
    "RawTable",
    "RawFormField",
    "RawEngineResult",
    "ExtractionResult",
    # Очередь
    "QueuePriority",
    "QueueStatus",
    "ACTIVE_STATUSES",
    "EnhancementOptions",
    "ExtractionOptions",
    "QueueItem",
    "QueueItemView",
    "BatchItemOutcome",
    "BatchEnqueueResult",
]
