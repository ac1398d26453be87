import pytest

from contracts.queue_dto import QueueStatus
from dococr.application.document_processor import DocumentProcessor
from dococr.application.orchestrator import ExtractionOrchestrator
from dococr.domain.events import OcrEventType
from dococr.domain.exceptions import EngineCallError, EngineTimeoutError
from dococr.domain.interfaces import IEventPublisher
from dococr.infrastructure.event_publisher import InMemoryEventPublisher
from dococr.infrastructure.file_manager import InMemoryDocumentStorage
from dococr.queue.processing_queue import ProcessingQueue
from dococr.queue.retry_policy import RetryPolicy
from dococr.queue.worker_pool import WorkerPool

from conftest import FakeEngineAdapter, make_registry


def _pool(queue, storage, result_store, *adapters, publisher=None, size=1):
    orchestrator = ExtractionOrchestrator(make_registry(*adapters), publisher=publisher)
    processor = DocumentProcessor(storage=storage, orchestrator=orchestrator, result_store=result_store)
    return WorkerPool(queue, processor, size=size, poll_interval=0.05)


@pytest.fixture
def fast_retry_queue(publisher, clock):
    """Очередь без задержки повторов: retry сразу готов к выдаче."""
    return ProcessingQueue(
        publisher=publisher,
        retry_policy=RetryPolicy(base_delay_seconds=0, max_attempts=3),
        clock=clock,
    )


def test_all_engines_failing_exhausts_attempts(fast_retry_queue, storage, result_store, publisher):
    """Тест: три движка падают -> 3 попытки -> FAILED с last_error."""
    adapters = [
        FakeEngineAdapter("GOOGLE_VISION", error=EngineTimeoutError("GOOGLE_VISION", 60)),
        FakeEngineAdapter("AZURE_COGNITIVE", error=EngineCallError("AZURE_COGNITIVE", "HTTP 500")),
        FakeEngineAdapter("TESSERACT", error=EngineCallError("TESSERACT", "binary missing")),
    ]
    pool = _pool(fast_retry_queue, storage, result_store, *adapters, publisher=publisher)
    fast_retry_queue.enqueue("invoice.png")

    views = [pool.run_once() for _ in range(3)]

    assert [v.status for v in views] == [QueueStatus.QUEUED, QueueStatus.QUEUED, QueueStatus.FAILED]
    final = fast_retry_queue.status("invoice.png")
    assert final.attempt_count == 3
    assert final.last_error is not None
    for engine in ("GOOGLE_VISION=TIMEOUT", "AZURE_COGNITIVE=FAILED", "TESSERACT=FAILED"):
        assert engine in final.last_error

    # Проверка: лог попыток каждого запуска сохранён
    assert len(result_store.failed_runs) == 3
    assert [a.engine for a in result_store.failed_runs[0]["attempts"]] == [
        "GOOGLE_VISION", "AZURE_COGNITIVE", "TESSERACT"
    ]
    assert pool.run_once() is None


def test_missing_document_fails_without_retry(fast_retry_queue, result_store):
    pool = _pool(fast_retry_queue, InMemoryDocumentStorage(), result_store, FakeEngineAdapter("TESSERACT"))
    fast_retry_queue.enqueue("missing.png")

    view = pool.run_once()

    assert view.status == QueueStatus.FAILED
    assert view.attempt_count == 1
    assert "не найден" in view.last_error


def test_success_marks_completed_with_result_id(queue, storage, result_store, publisher):
    pool = _pool(queue, storage, result_store, FakeEngineAdapter("GOOGLE_VISION", confidence=0.93))
    queue.enqueue("invoice.png")

    view = pool.run_once()

    assert view.status == QueueStatus.COMPLETED
    assert view.result_id == result_store.results[0].id
    completed = publisher.of_type(OcrEventType.OCR_PROCESSING_COMPLETED, "invoice.png")
    assert completed[0].payload["engine"] == "GOOGLE_VISION"
    assert completed[0].payload["confidence"] == pytest.approx(0.93)


def test_threaded_pool_drains_queue(queue, result_store):
    storage = InMemoryDocumentStorage({f"doc-{i}.png": b"bytes" for i in range(12)})
    pool = _pool(queue, storage, result_store, FakeEngineAdapter("TESSERACT", confidence=0.8), size=4)
    for i in range(12):
        queue.enqueue(f"doc-{i}.png")

    pool.start()
    try:
        assert pool.wait_for_completion(timeout=10) is True
    finally:
        pool.stop(timeout=5)

    assert all(v.status == QueueStatus.COMPLETED for v in queue.items())
    assert len(result_store.results) == 12
    assert not pool.running


def test_pool_size_must_be_positive(queue, storage, result_store):
    with pytest.raises(ValueError):
        _pool(queue, storage, result_store, FakeEngineAdapter("TESSERACT"), size=0)


class FlakyPublisher(IEventPublisher):
    """Падает на первом OCR_PROCESSING_STARTED, остальные события копит."""

    def __init__(self):
        self.delivered = InMemoryEventPublisher()
        self.failed = False

    def publish(self, event):
        if event.event_type == OcrEventType.OCR_PROCESSING_STARTED and not self.failed:
            self.failed = True
            raise RuntimeError("event bus down")
        self.delivered.publish(event)


class ClaimFailsOnceQueue(ProcessingQueue):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.claim_failures = 0

    def claim_next(self, timeout=None):
        if self.claim_failures == 0:
            self.claim_failures += 1
            raise RuntimeError("lock poisoned")
        return super().claim_next(timeout)


def test_publisher_failure_does_not_stall_pool(clock, result_store):
    """Тест: сбой доставки события не убивает воркер и не оставляет документ в PROCESSING."""
    publisher = FlakyPublisher()
    queue = ProcessingQueue(publisher=publisher, retry_policy=RetryPolicy(base_delay_seconds=0), clock=clock)
    storage = InMemoryDocumentStorage({"a.png": b"bytes", "b.png": b"bytes"})
    pool = _pool(queue, storage, result_store, FakeEngineAdapter("TESSERACT", confidence=0.8), size=1)
    queue.enqueue("a.png")
    queue.enqueue("b.png")

    pool.start()
    try:
        assert pool.wait_for_completion(timeout=10) is True
    finally:
        pool.stop(timeout=5)

    # Проверка: оба документа обработаны, состояние очереди не откатилось
    assert publisher.failed is True
    assert [queue.status(ref).status for ref in ("a.png", "b.png")] == [QueueStatus.COMPLETED] * 2
    completed = publisher.delivered.of_type(OcrEventType.OCR_PROCESSING_COMPLETED)
    assert sorted(e.document_ref for e in completed) == ["a.png", "b.png"]


def test_run_once_survives_failing_publisher(clock, storage, result_store):
    publisher = FlakyPublisher()
    queue = ProcessingQueue(publisher=publisher, clock=clock)
    pool = _pool(queue, storage, result_store, FakeEngineAdapter("GOOGLE_VISION", confidence=0.9))
    queue.enqueue("invoice.png")

    view = pool.run_once()

    assert view.status == QueueStatus.COMPLETED


def test_worker_survives_unexpected_loop_error(publisher, clock, storage, result_store):
    """Тест: исключение вне processor.process логируется, воркер продолжает работу."""
    queue = ClaimFailsOnceQueue(publisher=publisher, clock=clock)
    pool = _pool(queue, storage, result_store, FakeEngineAdapter("TESSERACT", confidence=0.8), size=1)
    queue.enqueue("invoice.png")

    pool.start()
    try:
        assert pool.wait_for_completion(timeout=10) is True
        assert pool.running
    finally:
        pool.stop(timeout=5)

    assert queue.claim_failures == 1
    assert queue.status("invoice.png").status == QueueStatus.COMPLETED
