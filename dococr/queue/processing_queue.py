"""
Очередь обработки документов.

ЦКП: элемент проходит QUEUED -> PROCESSING -> COMPLETED / FAILED / CANCELLED,
при этом на один document_ref не больше одного активного элемента.

Порядок выдачи: priority DESC, queued_at ASC (sequence как тай-брейк).
Порядок рекомендательный: воркеры с разной скоростью могут закончить
в другом порядке.

Все изменения состояния идут под одним threading.Condition:
enqueue/status/cancel не блокируются надолго, claim_next атомарен.
События публикуются после выхода из блокировки.
"""

import itertools
import threading
import time
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Union

from loguru import logger
from pydantic import ValidationError

from config.settings import (
    QUEUE_BATCH_LIMIT, QUEUE_DEFAULT_PROCESSING_TIME_MS, QUEUE_POLL_INTERVAL_SECONDS, QUEUE_ROLLING_WINDOW,
)
from contracts.extraction_dto import ExtractionResult
from contracts.queue_dto import (
    BatchEnqueueResult, BatchItemOutcome, ExtractionOptions, QueueItem, QueueItemView,
    QueuePriority, QueueStatus,
)
from ..domain.contracts import EnqueueRequest
from ..domain.events import OcrEvent, OcrEventType
from ..domain.exceptions import (
    AllEnginesFailedError, AlreadyQueuedError, BatchTooLargeError, InvalidStateError,
    QueueItemNotFoundError, is_recoverable,
)
from ..domain.interfaces import IEventPublisher
from .retry_policy import RetryPolicy


class ProcessingQueue:
    """Приоритетная очередь с повторами и отслеживанием статуса."""

    def __init__(
        self,
        publisher: Optional[IEventPublisher] = None,
        retry_policy: Optional[RetryPolicy] = None,
        batch_limit: int = QUEUE_BATCH_LIMIT,
        default_processing_time_ms: int = QUEUE_DEFAULT_PROCESSING_TIME_MS,
        rolling_window: int = QUEUE_ROLLING_WINDOW,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.publisher = publisher
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_limit = batch_limit
        self.default_processing_time_ms = default_processing_time_ms
        self.clock = clock

        self._cond = threading.Condition()
        self._items: Dict[str, QueueItem] = {}
        self._active: Dict[str, str] = {}               # document_ref -> queue_id
        self._by_document: Dict[str, List[str]] = {}    # document_ref -> queue_id в порядке создания
        self._sequence = itertools.count(1)
        self._durations: Deque[int] = deque(maxlen=rolling_window)

    # ------------------------------------------------------------------
    # Постановка
    # ------------------------------------------------------------------

    def enqueue(
        self,
        document_ref: str,
        priority: QueuePriority = QueuePriority.NORMAL,
        options: Optional[ExtractionOptions] = None
    ) -> str:
        """
        Ставит документ в очередь и сразу возвращает queue_id.

        Raises:
            AlreadyQueuedError: для документа уже есть QUEUED/PROCESSING элемент
        """
        if not document_ref or not document_ref.strip():
            raise ValueError("document_ref не может быть пустым")

        with self._cond:
            existing = self._active.get(document_ref)
            if existing is not None:
                raise AlreadyQueuedError(document_ref, existing)

            item = QueueItem(
                document_ref=document_ref,
                priority=priority,
                options=options or ExtractionOptions(),
                max_attempts=self.retry_policy.max_attempts,
                queued_at=self.clock(),
                sequence=next(self._sequence),
            )
            self._items[item.id] = item
            self._active[document_ref] = item.id
            self._by_document.setdefault(document_ref, []).append(item.id)
            event = self._event(OcrEventType.OCR_QUEUED, item, priority=priority.value)
            self._cond.notify_all()

        logger.info(f"[Queue] Поставлен {document_ref} (queue_id={item.id}, priority={priority.value})")
        self._publish([event])
        return item.id

    def enqueue_batch(self, requests: Sequence[Union[EnqueueRequest, Dict]]) -> BatchEnqueueResult:
        """
        Каждый документ ставится независимо: ошибка одного не мешает остальным.

        Raises:
            BatchTooLargeError: больше batch_limit запросов (ничего не ставится)
        """
        if len(requests) > self.batch_limit:
            raise BatchTooLargeError(len(requests), self.batch_limit)

        outcomes: List[BatchItemOutcome] = []
        for raw in requests:
            document_ref = raw.document_ref if isinstance(raw, EnqueueRequest) else str(raw.get("document_ref", ""))
            try:
                request = raw if isinstance(raw, EnqueueRequest) else EnqueueRequest(**raw)
                queue_id = self.enqueue(request.document_ref, request.priority, request.to_options())
                outcomes.append(BatchItemOutcome(document_ref=request.document_ref, status="QUEUED", queue_id=queue_id))
            except AlreadyQueuedError as e:
                outcomes.append(BatchItemOutcome(
                    document_ref=e.document_ref, status="SKIPPED", queue_id=e.queue_id, error="Уже в очереди"
                ))
            except (ValidationError, ValueError) as e:
                logger.warning(f"[Queue] Batch: невалидный запрос для '{document_ref}': {e}")
                outcomes.append(BatchItemOutcome(document_ref=document_ref, status="FAILED", error=str(e)))

        result = BatchEnqueueResult(batch_id=str(uuid.uuid4()), results=tuple(outcomes))
        logger.info(
            f"[Queue] Batch {result.batch_id}: {result.queued} поставлено, "
            f"{result.skipped} пропущено, {result.failed} ошибок из {result.total}"
        )
        return result

    # ------------------------------------------------------------------
    # Статус
    # ------------------------------------------------------------------

    def status(self, document_ref: str) -> QueueItemView:
        """Активный элемент документа, иначе последний."""
        with self._cond:
            queue_id = self._active.get(document_ref)
            if queue_id is None:
                ids = self._by_document.get(document_ref)
                if not ids:
                    raise QueueItemNotFoundError(
                        message=f"Нет элементов очереди для документа {document_ref}",
                        component="ProcessingQueue"
                    )
                queue_id = ids[-1]
            return self._view(self._items[queue_id])

    def get(self, queue_id: str) -> QueueItemView:
        with self._cond:
            return self._view(self._get(queue_id))

    def history(self, document_ref: str, limit: int = 20, offset: int = 0) -> List[QueueItemView]:
        """Все элементы документа, новые первыми."""
        with self._cond:
            ids = list(reversed(self._by_document.get(document_ref, [])))
            return [self._view(self._items[qid]) for qid in ids[offset:offset + limit]]

    def items(self, statuses: Optional[Iterable[QueueStatus]] = None) -> List[QueueItemView]:
        wanted = set(statuses) if statuses is not None else None
        with self._cond:
            return [
                self._view(item) for item in self._items.values()
                if wanted is None or item.status in wanted
            ]

    def pending_count(self) -> int:
        with self._cond:
            return len(self._active)

    # ------------------------------------------------------------------
    # Управление
    # ------------------------------------------------------------------

    def cancel(self, queue_id: str, reason: Optional[str] = None) -> QueueItemView:
        """
        Raises:
            InvalidStateError: элемент не в QUEUED (в том числе уже PROCESSING)
        """
        with self._cond:
            item = self._get(queue_id)
            if item.status != QueueStatus.QUEUED:
                raise InvalidStateError(queue_id, item.status.value, "cancel")

            item.status = QueueStatus.CANCELLED
            item.cancel_reason = reason
            item.completed_at = self.clock()
            item.next_retry_at = None
            self._release(item)
            self._cond.notify_all()
            view = self._view(item)

        logger.info(f"[Queue] Отменён {item.document_ref} (queue_id={queue_id}, reason={reason})")
        return view

    def force_retry(self, queue_id: str, alternate_engine: Optional[str] = None) -> QueueItemView:
        """
        Повторная постановка FAILED элемента со сбросом счётчика попыток.

        Raises:
            InvalidStateError: элемент не в FAILED
            AlreadyQueuedError: у документа уже есть другой активный элемент
        """
        with self._cond:
            item = self._get(queue_id)
            if item.status != QueueStatus.FAILED:
                raise InvalidStateError(queue_id, item.status.value, "force_retry")

            existing = self._active.get(item.document_ref)
            if existing is not None:
                raise AlreadyQueuedError(item.document_ref, existing)

            if alternate_engine:
                item.options = replace(item.options, preferred_engine=alternate_engine.strip().upper())

            item.status = QueueStatus.QUEUED
            item.attempt_count = 0
            item.next_retry_at = None
            item.started_at = None
            item.completed_at = None
            item.queued_at = self.clock()
            item.sequence = next(self._sequence)
            self._active[item.document_ref] = item.id
            event = self._event(OcrEventType.OCR_QUEUED, item, priority=item.priority.value, forced=True)
            self._cond.notify_all()
            view = self._view(item)

        logger.info(
            f"[Queue] Принудительный повтор {item.document_ref} (queue_id={queue_id}, "
            f"engine={item.preferred_engine})"
        )
        self._publish([event])
        return view

    # ------------------------------------------------------------------
    # Воркеры
    # ------------------------------------------------------------------

    def claim_next(self, timeout: Optional[float] = None) -> Optional[QueueItem]:
        """
        Атомарно берёт следующий готовый элемент и переводит в PROCESSING.

        Ждёт до timeout секунд (None = бесконечно, 0 = без ожидания).
        Возвращает копию элемента или None.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._cond:
            while True:
                item = self._next_eligible()
                if item is not None:
                    item.status = QueueStatus.PROCESSING
                    item.started_at = self.clock()
                    item.next_retry_at = None
                    event = self._event(
                        OcrEventType.OCR_PROCESSING_STARTED, item, attempt=item.attempt_count + 1
                    )
                    snapshot = item.snapshot()
                    break

                wait = QUEUE_POLL_INTERVAL_SECONDS
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = min(wait, remaining)
                self._cond.wait(wait)

        logger.debug(f"[Queue] Взят в работу {snapshot.document_ref} (queue_id={snapshot.id})")
        self._publish([event])
        return snapshot

    def mark_completed(self, queue_id: str, result: Optional[ExtractionResult] = None) -> QueueItemView:
        with self._cond:
            item = self._get(queue_id)
            if item.status != QueueStatus.PROCESSING:
                raise InvalidStateError(queue_id, item.status.value, "mark_completed")

            item.status = QueueStatus.COMPLETED
            item.completed_at = self.clock()
            item.last_error = None
            item.result_id = result.id if result is not None else None
            if item.started_at is not None:
                duration_ms = int((item.completed_at - item.started_at).total_seconds() * 1000)
                self._durations.append(max(duration_ms, 0))
            self._release(item)

            payload = {}
            if result is not None:
                payload = {
                    "engine": result.engine,
                    "confidence": result.overall_confidence,
                    "needs_manual_review": result.needs_manual_review,
                    "result_id": result.id,
                }
            event = self._event(OcrEventType.OCR_PROCESSING_COMPLETED, item, **payload)
            self._cond.notify_all()
            view = self._view(item)

        logger.info(f"[Queue] Завершён {item.document_ref} (queue_id={queue_id})")
        self._publish([event])
        return view

    def mark_failed(
        self,
        queue_id: str,
        error: Union[str, BaseException],
        recoverable: Optional[bool] = None
    ) -> QueueItemView:
        """
        Неудачная попытка: повтор с backoff или терминальный FAILED.

        recoverable=None -> определяется по типу исключения.
        """
        if recoverable is None:
            recoverable = is_recoverable(error) if isinstance(error, BaseException) else True
        message = error.summary() if isinstance(error, AllEnginesFailedError) else str(error)

        with self._cond:
            item = self._get(queue_id)
            if item.status != QueueStatus.PROCESSING:
                raise InvalidStateError(queue_id, item.status.value, "mark_failed")

            now = self.clock()
            item.attempt_count += 1
            item.last_error = message
            item.started_at = None

            terminal = not self.retry_policy.should_retry(item.attempt_count, item.max_attempts, recoverable)
            if terminal:
                item.status = QueueStatus.FAILED
                item.completed_at = now
                item.next_retry_at = None
                self._release(item)
            else:
                item.status = QueueStatus.QUEUED
                item.next_retry_at = self.retry_policy.next_retry_at(now, item.attempt_count)

            event = self._event(
                OcrEventType.OCR_PROCESSING_FAILED, item,
                error=message,
                terminal=terminal,
                attempt_count=item.attempt_count,
                next_retry_at=item.next_retry_at.isoformat() if item.next_retry_at else None,
            )
            self._cond.notify_all()
            view = self._view(item)

        if terminal:
            logger.error(
                f"[Queue] FAILED {item.document_ref} после {item.attempt_count} попыток: {message}"
            )
        else:
            logger.warning(
                f"[Queue] Повтор {item.document_ref} в {item.next_retry_at:%H:%M:%S} "
                f"(попытка {item.attempt_count}/{item.max_attempts}): {message}"
            )
        self._publish([event])
        return view

    def wait_until_settled(self, timeout: Optional[float] = None) -> bool:
        """Ждёт, пока не останется QUEUED/PROCESSING элементов."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._active:
                wait = QUEUE_POLL_INTERVAL_SECONDS
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                    wait = min(wait, remaining)
                self._cond.wait(wait)
            return True

    def average_processing_time_ms(self) -> int:
        with self._cond:
            return self._average_ms()

    # ------------------------------------------------------------------
    # Внутреннее (вызывается под self._cond)
    # ------------------------------------------------------------------

    def _get(self, queue_id: str) -> QueueItem:
        item = self._items.get(queue_id)
        if item is None:
            raise QueueItemNotFoundError(
                message=f"Элемент очереди не найден: {queue_id}",
                component="ProcessingQueue"
            )
        return item

    def _release(self, item: QueueItem) -> None:
        if self._active.get(item.document_ref) == item.id:
            del self._active[item.document_ref]

    @staticmethod
    def _order_key(item: QueueItem):
        return (-item.priority.rank, item.queued_at, item.sequence)

    def _queued_in_order(self) -> List[QueueItem]:
        queued = [self._items[qid] for qid in self._active.values()]
        return sorted((i for i in queued if i.status == QueueStatus.QUEUED), key=self._order_key)

    def _next_eligible(self) -> Optional[QueueItem]:
        now = self.clock()
        for item in self._queued_in_order():
            if item.next_retry_at is None or item.next_retry_at <= now:
                return item
        return None

    def _average_ms(self) -> int:
        if not self._durations:
            return self.default_processing_time_ms
        return int(sum(self._durations) / len(self._durations))

    def _view(self, item: QueueItem) -> QueueItemView:
        if item.status != QueueStatus.QUEUED:
            return QueueItemView(item=item.snapshot())
        ordered = self._queued_in_order()
        position = next(i for i, other in enumerate(ordered) if other.id == item.id)
        return QueueItemView(
            item=item.snapshot(),
            position=position,
            estimated_wait_ms=position * self._average_ms(),
        )

    def _event(self, event_type: OcrEventType, item: QueueItem, **payload) -> OcrEvent:
        return OcrEvent(
            event_type=event_type,
            document_ref=item.document_ref,
            queue_id=item.id,
            payload=payload,
            timestamp=self.clock(),
        )

    def _publish(self, events: List[OcrEvent]) -> None:
        if self.publisher is None:
            return
        for event in events:
            # Состояние уже зафиксировано, сбой доставки его не откатывает
            try:
                self.publisher.publish(event)
            except Exception:
                logger.exception(f"[Queue] Не удалось опубликовать {event.event_type.value} для {event.document_ref}")
