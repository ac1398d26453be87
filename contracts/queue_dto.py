"""
DTO контракт: очередь обработки.

QueueItem изменяется только очередью (под её блокировкой).
Наружу отдаются копии в виде QueueItemView.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple, Dict, Any


class QueuePriority(str, Enum):
    """Приоритет обработки: LOW < NORMAL < HIGH < URGENT."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    QueuePriority.LOW: 0,
    QueuePriority.NORMAL: 1,
    QueuePriority.HIGH: 2,
    QueuePriority.URGENT: 3,
}


class QueueStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# Не больше одного элемента на документ в этих статусах
ACTIVE_STATUSES = frozenset({QueueStatus.QUEUED, QueueStatus.PROCESSING})


@dataclass(frozen=True)
class EnhancementOptions:
    """Опциональные стадии enhancement (основной пайплайн фиксирован)."""
    deskew: bool = False
    remove_noise: bool = False
    binarize: bool = False


@dataclass(frozen=True)
class ExtractionOptions:
    """Флаги обработки одного документа."""
    preferred_engine: Optional[str] = None
    language_hints: Tuple[str, ...] = ()
    enable_table_detection: bool = False
    enable_form_detection: bool = False
    enable_enhancement: bool = True
    enhancement: EnhancementOptions = field(default_factory=EnhancementOptions)


@dataclass
class QueueItem:
    """Одна единица работы и её жизненный цикл."""
    document_ref: str
    priority: QueuePriority
    options: ExtractionOptions
    max_attempts: int
    queued_at: datetime
    sequence: int = 0                          # Тай-брейк FIFO при равном queued_at
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: QueueStatus = QueueStatus.QUEUED
    attempt_count: int = 0
    last_error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    result_id: Optional[str] = None

    @property
    def preferred_engine(self) -> Optional[str]:
        return self.options.preferred_engine

    @property
    def language_hints(self) -> Tuple[str, ...]:
        return self.options.language_hints

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def snapshot(self) -> "QueueItem":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "document_ref": self.document_ref,
            "priority": self.priority.value,
            "status": self.status.value,
            "preferred_engine": self.options.preferred_engine,
            "language_hints": list(self.options.language_hints),
            "enable_table_detection": self.options.enable_table_detection,
            "enable_form_detection": self.options.enable_form_detection,
            "enable_enhancement": self.options.enable_enhancement,
            "attempt_count": self.attempt_count,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "next_retry_at": _iso(self.next_retry_at),
            "queued_at": _iso(self.queued_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "cancel_reason": self.cancel_reason,
            "result_id": self.result_id,
        }


@dataclass(frozen=True)
class QueueItemView:
    """
    Снимок QueueItem для вызывающей стороны.

    position: сколько QUEUED элементов впереди (0 = следующий),
    None если элемент уже не в очереди.
    """
    item: QueueItem
    position: Optional[int] = None
    estimated_wait_ms: Optional[int] = None

    def __getattr__(self, name: str) -> Any:
        # Делегируем поля QueueItem (status, attempt_count, ...)
        if name == "item":
            raise AttributeError(name)
        return getattr(self.item, name)

    def to_dict(self) -> Dict[str, Any]:
        data = self.item.to_dict()
        data["position"] = self.position
        data["estimated_wait_ms"] = self.estimated_wait_ms
        return data


@dataclass(frozen=True)
class BatchItemOutcome:
    """Итог постановки одного документа из batch."""
    document_ref: str
    status: str                       # QUEUED, SKIPPED, FAILED
    queue_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class BatchEnqueueResult:
    batch_id: str
    results: Tuple[BatchItemOutcome, ...]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def queued(self) -> int:
        return sum(1 for r in self.results if r.status == "QUEUED")

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == "SKIPPED")

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == "FAILED")

    def queue_ids(self) -> List[str]:
        return [r.queue_id for r in self.results if r.queue_id]
