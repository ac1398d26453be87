"""
События жизненного цикла обработки документа.

Формат хранения аудита вне проекта: здесь только то, ЧТО публикуется.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class OcrEventType(str, Enum):
    OCR_QUEUED = "OCR_QUEUED"
    OCR_PROCESSING_STARTED = "OCR_PROCESSING_STARTED"
    OCR_PROCESSING_COMPLETED = "OCR_PROCESSING_COMPLETED"
    OCR_PROCESSING_FAILED = "OCR_PROCESSING_FAILED"
    OCR_ENGINE_FALLBACK = "OCR_ENGINE_FALLBACK"


@dataclass(frozen=True)
class OcrEvent:
    """
    Событие с контекстом документа.

    payload зависит от типа:
      COMPLETED: engine, confidence, needs_manual_review
      FAILED: error, terminal, next_retry_at
      ENGINE_FALLBACK: engine, status, confidence, error
    """
    event_type: OcrEventType
    document_ref: Optional[str]
    queue_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "document_ref": self.document_ref,
            "queue_id": self.queue_id,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }
