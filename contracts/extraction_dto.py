"""
DTO контракт: движки OCR -> оркестратор -> хранилище результатов.

Два уровня:
1. Raw*: то, что возвращает адаптер движка (координаты в единицах провайдера)
2. ExtractionResult: итог обработки документа (неизменяемый, координаты 0..1)

ВАЖНО: ExtractionResult и EngineAttempt frozen. Повторный запуск создаёт
новый результат, старый остаётся в истории.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple, Dict, Any


class OcrEngine(str, Enum):
    """Идентификаторы движков."""
    GOOGLE_VISION = "GOOGLE_VISION"        # Облачный vision-сервис
    AZURE_COGNITIVE = "AZURE_COGNITIVE"    # Облачный document-analysis сервис
    TESSERACT = "TESSERACT"                # Локальный fallback

    @property
    def display_name(self) -> str:
        return ENGINE_DISPLAY_NAMES[self]


ENGINE_DISPLAY_NAMES = {
    OcrEngine.GOOGLE_VISION: "Google Cloud Vision",
    OcrEngine.AZURE_COGNITIVE: "Azure Cognitive Services",
    OcrEngine.TESSERACT: "Tesseract OCR",
}


class AttemptStatus(str, Enum):
    """Статус одной попытки движка."""
    SUCCESS = "SUCCESS"      # confidence >= порога принятия
    FAILED = "FAILED"        # ошибка вызова
    TIMEOUT = "TIMEOUT"      # превышен таймаут адаптера
    FALLBACK = "FALLBACK"    # результат есть, но ниже порога принятия


@dataclass(frozen=True)
class BoundingBox:
    """
    Прямоугольник на странице.

    В Raw*: единицы провайдера (пиксели, дюймы),
    в ExtractionResult: доли страницы (0..1).
    """
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class TextBlock:
    """Блок текста с уверенностью распознавания."""
    text: str
    confidence: float                          # 0.0 - 1.0
    bounding_box: Optional[BoundingBox] = None
    block_type: str = "TEXT"                   # TEXT, LINE, WORD, TABLE, FORM


@dataclass(frozen=True)
class PageResult:
    """Результат одной страницы."""
    page_number: int
    text: str
    confidence: float
    width: float = 0.0
    height: float = 0.0
    blocks: Tuple[TextBlock, ...] = ()


@dataclass(frozen=True)
class TableCell:
    """Ячейка таблицы (сетка row-major)."""
    row: int
    column: int
    text: str
    confidence: float
    bounding_box: Optional[BoundingBox] = None
    is_header: bool = False
    row_span: int = 1
    column_span: int = 1


@dataclass(frozen=True)
class DetectedTable:
    """Таблица: rows[r][c]: ячейка строки r, колонки c."""
    page_number: int
    row_count: int
    column_count: int
    rows: Tuple[Tuple[TableCell, ...], ...]
    has_header_row: bool
    confidence: float


@dataclass(frozen=True)
class FormField:
    """
    Пара label/value из формы.

    value = None если значение не найдено: метка остаётся в результате,
    чтобы было видно неотвеченное поле.
    """
    page_number: int
    label: str
    value: Optional[str]
    label_confidence: float
    value_confidence: Optional[float] = None
    label_box: Optional[BoundingBox] = None
    value_box: Optional[BoundingBox] = None


@dataclass(frozen=True)
class PatternMatch:
    """Найденный доменный паттерн (дата, сумма, идентификатор)."""
    kind: str              # date, amount, iban, nip, regon, email, phone
    value: str             # каноническое значение (ISO дата, Decimal строка, ...)
    raw: str               # как было в тексте
    start: int = 0         # позиция в нормализованном тексте
    unit: Optional[str] = None   # ISO код валюты для сумм


@dataclass(frozen=True)
class DetectedPatterns:
    """Результат PatternExtractor."""
    dates: Tuple[PatternMatch, ...] = ()
    amounts: Tuple[PatternMatch, ...] = ()
    identifiers: Tuple[PatternMatch, ...] = ()

    def is_empty(self) -> bool:
        return not (self.dates or self.amounts or self.identifiers)


@dataclass(frozen=True)
class EngineAttempt:
    """Аудит одного вызова движка во время оркестрации."""
    engine: str
    order: int                           # 1-based позиция в каскаде
    status: AttemptStatus
    confidence: Optional[float]          # None при полном отказе
    error_message: Optional[str]
    started_at: datetime
    completed_at: datetime
    page_count: int = 0

    @property
    def duration_ms(self) -> int:
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engine": self.engine,
            "order": self.order,
            "status": self.status.value,
            "confidence": self.confidence,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
            "page_count": self.page_count,
        }


@dataclass(frozen=True)
class QualityMeasurement:
    """Метрики качества изображения, все в [0, 1]."""
    noise_level: float
    contrast_ratio: float
    brightness: float
    sharpness: float


@dataclass(frozen=True)
class StageMeasurement:
    """Эффект одной стадии enhancement."""
    name: str
    noise_before: float
    noise_after: float
    contrast_before: float
    contrast_after: float


@dataclass(frozen=True)
class EnhancementRecord:
    """Метрики до/после и применённые операции для одной страницы."""
    page_number: int = 1
    before: Optional[QualityMeasurement] = None
    after: Optional[QualityMeasurement] = None
    rotation_angle: float = 0.0
    operations: Tuple[str, ...] = ()
    stages: Tuple[StageMeasurement, ...] = ()

    @classmethod
    def empty(cls) -> "EnhancementRecord":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# RAW: ответ адаптера движка
# ============================================================================

@dataclass
class RawPage:
    """Страница в единицах провайдера."""
    page_number: int
    width: float = 0.0
    height: float = 0.0
    text: str = ""
    blocks: List[TextBlock] = field(default_factory=list)
    confidence: Optional[float] = None    # Если провайдер отдаёт уверенность страницы

    def effective_confidence(self) -> float:
        """Уверенность страницы: от провайдера или среднее по блокам."""
        if self.confidence is not None:
            return self.confidence
        if not self.blocks:
            return 0.0
        return sum(b.confidence for b in self.blocks) / len(self.blocks)


@dataclass
class RawTableCell:
    row_index: int
    column_index: int
    text: str
    confidence: float = 1.0
    bounding_box: Optional[BoundingBox] = None
    is_header: bool = False
    row_span: int = 1
    column_span: int = 1


@dataclass
class RawTable:
    page_number: int
    cells: List[RawTableCell] = field(default_factory=list)
    row_count: int = 0
    column_count: int = 0


@dataclass
class RawFormField:
    page_number: int
    label: str
    value: Optional[str] = None
    label_confidence: float = 1.0
    value_confidence: Optional[float] = None
    label_box: Optional[BoundingBox] = None
    value_box: Optional[BoundingBox] = None


@dataclass
class RawEngineResult:
    """
    Общая форма результата всех движков.

    Движки без поддержки таблиц/форм возвращают пустые списки, а не ошибку.
    """
    engine: str
    engine_version: str
    pages: List[RawPage] = field(default_factory=list)
    tables: List[RawTable] = field(default_factory=list)
    form_fields: List[RawFormField] = field(default_factory=list)
    full_text: str = ""

    @property
    def overall_confidence(self) -> float:
        """Среднее по уверенности страниц (0.0 если страниц нет)."""
        if not self.pages:
            return 0.0
        return sum(p.effective_confidence() for p in self.pages) / len(self.pages)

    def text(self) -> str:
        if self.full_text:
            return self.full_text
        return "\n\n".join(p.text for p in self.pages if p.text)


# ============================================================================
# ИТОГ: результат обработки документа
# ============================================================================

@dataclass(frozen=True)
class ExtractionResult:
    """
    Итог обработки одного QueueItem.

    overall_confidence: уверенность ВЫБРАННОЙ попытки, не среднее по всем.
    needs_manual_review выставляется строго по порогу ручной проверки.
    """
    document_ref: str
    engine: str
    engine_version: str
    full_text: str
    full_text_normalized: str
    page_results: Tuple[PageResult, ...]
    overall_confidence: float
    needs_manual_review: bool
    review_reason: Optional[str] = None
    detected_tables: Tuple[DetectedTable, ...] = ()
    detected_form_fields: Tuple[FormField, ...] = ()
    detected_patterns: DetectedPatterns = field(default_factory=DetectedPatterns)
    enhancements_applied: Tuple[str, ...] = ()
    language: Optional[str] = None
    processing_time_ms: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def page_count(self) -> int:
        return len(self.page_results)

    @property
    def word_count(self) -> int:
        return len(self.full_text_normalized.split())

    @property
    def character_count(self) -> int:
        return len(self.full_text_normalized)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["page_count"] = self.page_count
        data["word_count"] = self.word_count
        data["character_count"] = self.character_count
        return data
