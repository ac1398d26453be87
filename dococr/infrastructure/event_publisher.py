"""
Публикаторы событий OCR.

LoguruEventPublisher пишет события в лог, InMemoryEventPublisher копит
их для тестов, CompositeEventPublisher раздаёт нескольким получателям.
Ошибка одного получателя не ломает обработку документа.
"""

import threading
from typing import Iterable, List, Optional

from loguru import logger

from ..domain.events import OcrEvent, OcrEventType
from ..domain.interfaces import IEventPublisher


class LoguruEventPublisher(IEventPublisher):
    """События как структурированные записи лога (logger.bind)."""

    def publish(self, event: OcrEvent) -> None:
        level = "WARNING" if event.event_type in (
            OcrEventType.OCR_PROCESSING_FAILED, OcrEventType.OCR_ENGINE_FALLBACK
        ) else "INFO"
        logger.bind(event=event.to_dict()).log(
            level,
            f"[Events] {event.event_type.value} document={event.document_ref} "
            f"queue_id={event.queue_id} {event.payload}"
        )


class InMemoryEventPublisher(IEventPublisher):
    """Копит события в памяти."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: List[OcrEvent] = []

    def publish(self, event: OcrEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[OcrEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: OcrEventType, document_ref: Optional[str] = None) -> List[OcrEvent]:
        return [
            e for e in self.events
            if e.event_type == event_type and (document_ref is None or e.document_ref == document_ref)
        ]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class CompositeEventPublisher(IEventPublisher):
    """Раздаёт событие всем получателям."""

    def __init__(self, publishers: Iterable[IEventPublisher]) -> None:
        self.publishers = list(publishers)

    def publish(self, event: OcrEvent) -> None:
        for publisher in self.publishers:
            try:
                publisher.publish(event)
            except Exception as e:
                logger.error(f"[Events] {type(publisher).__name__} не смог опубликовать {event.event_type.value}: {e}")
