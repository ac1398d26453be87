import threading

import pytest

from contracts.queue_dto import ExtractionOptions, QueuePriority, QueueStatus
from dococr.domain.contracts import EnqueueRequest
from dococr.domain.events import OcrEventType
from dococr.domain.exceptions import (
    AllEnginesFailedError, AlreadyQueuedError, BatchTooLargeError, InvalidStateError,
    QueueItemNotFoundError, TerminalFailureError,
)
from dococr.queue.processing_queue import ProcessingQueue


def test_enqueue_returns_id_and_queued_status(queue, publisher):
    """Тест: enqueue сразу возвращает id, элемент в QUEUED на позиции 0."""
    queue_id = queue.enqueue("doc-1")

    view = queue.status("doc-1")
    assert view.id == queue_id
    assert view.status == QueueStatus.QUEUED
    assert view.position == 0
    assert view.attempt_count == 0
    assert len(publisher.of_type(OcrEventType.OCR_QUEUED, "doc-1")) == 1


def test_duplicate_active_document_rejected(queue):
    """Тест: второй активный элемент для того же документа запрещён."""
    first = queue.enqueue("doc-1")

    with pytest.raises(AlreadyQueuedError) as exc_info:
        queue.enqueue("doc-1", QueuePriority.URGENT)

    assert exc_info.value.queue_id == first
    assert len(queue.history("doc-1")) == 1


def test_document_can_be_requeued_after_completion(queue):
    queue.enqueue("doc-1")
    item = queue.claim_next(timeout=0)
    queue.mark_completed(item.id)

    second = queue.enqueue("doc-1")

    assert second != item.id
    assert queue.status("doc-1").id == second


def test_high_priority_goes_ahead_of_normal(queue):
    """Тест: HIGH после двух NORMAL получает позицию меньше обоих."""
    queue.enqueue("normal-1")
    queue.enqueue("normal-2")
    queue.enqueue("high-1", QueuePriority.HIGH)

    high = queue.status("high-1").position
    assert high < queue.status("normal-1").position
    assert high < queue.status("normal-2").position

    # Проверка: порядок выдачи воркерам совпадает с позициями
    claimed = [queue.claim_next(timeout=0).document_ref for _ in range(3)]
    assert claimed == ["high-1", "normal-1", "normal-2"]


def test_same_priority_is_fifo(queue, clock):
    for i in range(4):
        queue.enqueue(f"doc-{i}", QueuePriority.LOW)
        clock.advance(1)

    claimed = [queue.claim_next(timeout=0).document_ref for _ in range(4)]
    assert claimed == ["doc-0", "doc-1", "doc-2", "doc-3"]


def test_estimated_wait_uses_default_before_any_completion(publisher, clock):
    queue = ProcessingQueue(publisher=publisher, default_processing_time_ms=1000, clock=clock)
    for ref in ("a", "b", "c"):
        queue.enqueue(ref)

    assert queue.status("a").estimated_wait_ms == 0
    assert queue.status("c").estimated_wait_ms == 2000


def test_estimated_wait_uses_rolling_average(queue, clock):
    """Тест: оценка ожидания = позиция * среднее время обработки."""
    queue.enqueue("first")
    queue.enqueue("second")
    queue.enqueue("third")

    item = queue.claim_next(timeout=0)
    clock.advance(4)
    queue.mark_completed(item.id)

    assert queue.average_processing_time_ms() == 4000
    assert queue.status("third").position == 1
    assert queue.status("third").estimated_wait_ms == 4000


def test_status_of_unknown_document_raises(queue):
    with pytest.raises(QueueItemNotFoundError):
        queue.status("missing")
    with pytest.raises(QueueItemNotFoundError):
        queue.get("no-such-id")


def test_cancel_processing_item_is_rejected(queue):
    """Тест: отмена PROCESSING -> InvalidStateError, элемент не меняется."""
    queue.enqueue("doc-1")
    item = queue.claim_next(timeout=0)

    with pytest.raises(InvalidStateError):
        queue.cancel(item.id)

    view = queue.get(item.id)
    assert view.status == QueueStatus.PROCESSING
    assert view.cancel_reason is None
    assert view.completed_at is None


def test_cancel_queued_item_releases_document(queue, clock):
    queue_id = queue.enqueue("doc-1")

    view = queue.cancel(queue_id, reason="дубликат загрузки")

    assert view.status == QueueStatus.CANCELLED
    assert view.cancel_reason == "дубликат загрузки"
    assert view.completed_at == clock()
    assert view.position is None
    # Проверка: документ снова можно поставить
    assert queue.enqueue("doc-1") != queue_id
    # Проверка: отменённый элемент не выдаётся воркеру второй раз
    assert queue.claim_next(timeout=0).id != queue_id


def test_recoverable_failure_schedules_retry_with_backoff(queue, clock):
    queue.enqueue("doc-1")
    item = queue.claim_next(timeout=0)

    view = queue.mark_failed(item.id, RuntimeError("provider 503"))

    assert view.status == QueueStatus.QUEUED
    assert view.attempt_count == 1
    assert view.last_error == "provider 503"
    assert (view.next_retry_at - clock()).total_seconds() == 10

    # Проверка: до наступления next_retry_at элемент не выдаётся
    assert queue.claim_next(timeout=0) is None
    clock.advance(10)
    assert queue.claim_next(timeout=0).id == item.id


def test_backoff_is_non_decreasing(queue, clock):
    """Тест: задержки повторов не уменьшаются от попытки к попытке."""
    queue.enqueue("doc-1")
    delays = []
    for _ in range(2):
        clock.advance(3600)
        item = queue.claim_next(timeout=0)
        view = queue.mark_failed(item.id, "timeout")
        delays.append((view.next_retry_at - clock()).total_seconds())

    assert delays == sorted(delays)
    assert delays == [10, 20]


def test_exhausted_attempts_fail_terminally(queue, clock, publisher):
    queue.enqueue("doc-1")
    for _ in range(3):
        clock.advance(3600)
        item = queue.claim_next(timeout=0)
        view = queue.mark_failed(item.id, "boom")

    assert view.status == QueueStatus.FAILED
    assert view.attempt_count == 3
    assert view.last_error == "boom"
    assert view.next_retry_at is None

    # Проверка: автоматически больше не выдаётся
    clock.advance(3600)
    assert queue.claim_next(timeout=0) is None

    failed_events = publisher.of_type(OcrEventType.OCR_PROCESSING_FAILED, "doc-1")
    assert [e.payload["terminal"] for e in failed_events] == [False, False, True]


def test_non_recoverable_failure_is_terminal_immediately(queue):
    queue.enqueue("doc-1")
    item = queue.claim_next(timeout=0)

    view = queue.mark_failed(item.id, TerminalFailureError("битый PDF"))

    assert view.status == QueueStatus.FAILED
    assert view.attempt_count == 1


def test_all_engines_failed_summary_becomes_last_error(queue):
    queue.enqueue("doc-1")
    item = queue.claim_next(timeout=0)

    view = queue.mark_failed(item.id, AllEnginesFailedError([]))

    assert view.last_error.startswith("All engines failed")


def test_mark_completed_requires_processing(queue):
    queue_id = queue.enqueue("doc-1")
    with pytest.raises(InvalidStateError):
        queue.mark_completed(queue_id)


def test_force_retry_resets_attempts_and_switches_engine(queue, publisher):
    queue.enqueue("doc-1", options=ExtractionOptions(preferred_engine="GOOGLE_VISION"))
    item = queue.claim_next(timeout=0)
    queue.mark_failed(item.id, "fatal", recoverable=False)

    view = queue.force_retry(item.id, alternate_engine="tesseract")

    assert view.status == QueueStatus.QUEUED
    assert view.attempt_count == 0
    assert view.next_retry_at is None
    assert view.preferred_engine == "TESSERACT"
    assert len(publisher.of_type(OcrEventType.OCR_QUEUED, "doc-1")) == 2


def test_force_retry_only_for_failed(queue):
    queue_id = queue.enqueue("doc-1")
    with pytest.raises(InvalidStateError):
        queue.force_retry(queue_id)


def test_force_retry_rejected_when_document_active_again(queue):
    queue.enqueue("doc-1")
    item = queue.claim_next(timeout=0)
    queue.mark_failed(item.id, "fatal", recoverable=False)
    queue.enqueue("doc-1")

    with pytest.raises(AlreadyQueuedError):
        queue.force_retry(item.id)


def test_history_newest_first_with_paging(queue, clock):
    ids = []
    for _ in range(3):
        ids.append(queue.enqueue("doc-1"))
        item = queue.claim_next(timeout=0)
        queue.mark_completed(item.id)
        clock.advance(1)

    history = queue.history("doc-1")
    assert [v.id for v in history] == list(reversed(ids))
    assert [v.id for v in queue.history("doc-1", limit=1, offset=1)] == [ids[1]]
    assert queue.history("unknown") == []


def test_batch_over_limit_enqueues_nothing(queue):
    requests = [EnqueueRequest(document_ref=f"doc-{i}") for i in range(101)]

    with pytest.raises(BatchTooLargeError):
        queue.enqueue_batch(requests)

    assert queue.pending_count() == 0


def test_batch_items_enqueued_independently(queue):
    """Тест: ошибка одного документа batch не мешает остальным."""
    queue.enqueue("already")

    result = queue.enqueue_batch([
        {"document_ref": "new-1", "priority": "HIGH", "language_hints": ["PL", "pl"]},
        {"document_ref": "already"},
        {"document_ref": "   "},
        {"document_ref": "bad-lang", "language_hints": ["polski!"]},
        EnqueueRequest(document_ref="new-2", enable_table_detection=True),
    ])

    assert result.total == 5
    assert result.queued == 2
    assert result.skipped == 1
    assert result.failed == 2
    assert [r.status for r in result.results] == ["QUEUED", "SKIPPED", "FAILED", "FAILED", "QUEUED"]

    view = queue.status("new-1")
    assert view.priority == QueuePriority.HIGH
    assert view.language_hints == ("pl",)
    assert queue.status("new-2").options.enable_table_detection is True


def test_concurrent_enqueue_admits_single_item(queue):
    """Тест: при одновременной постановке активным остаётся один элемент."""
    barrier = threading.Barrier(16)
    accepted, rejected = [], []

    def worker():
        barrier.wait()
        try:
            accepted.append(queue.enqueue("same-doc"))
        except AlreadyQueuedError:
            rejected.append(1)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(accepted) == 1
    assert len(rejected) == 15


def test_concurrent_claims_never_share_an_item(queue):
    for i in range(40):
        queue.enqueue(f"doc-{i}")

    claimed = []
    lock = threading.Lock()

    def worker():
        while True:
            item = queue.claim_next(timeout=0)
            if item is None:
                return
            with lock:
                claimed.append(item.id)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(claimed) == 40
    assert len(set(claimed)) == 40


def test_wait_until_settled_times_out_with_pending_items(queue):
    queue.enqueue("doc-1")
    assert queue.wait_until_settled(timeout=0.05) is False

    item = queue.claim_next(timeout=0)
    queue.mark_completed(item.id)
    assert queue.wait_until_settled(timeout=0.05) is True
