"""
Пул воркеров очереди.

Каждый воркер: claim_next -> processor.process -> mark_completed / mark_failed.
Один документ на воркер, без параллелизма внутри документа.
Размер пула: единственная точка backpressure.
"""

import threading
from typing import List, Optional

from loguru import logger

from config.settings import QUEUE_POLL_INTERVAL_SECONDS, QUEUE_WORKER_COUNT
from contracts.queue_dto import QueueItem, QueueItemView
from ..domain.interfaces import IDocumentProcessor
from .processing_queue import ProcessingQueue


class WorkerPool:
    """Фиксированный набор потоков-воркеров."""

    def __init__(
        self,
        queue: ProcessingQueue,
        processor: IDocumentProcessor,
        size: int = QUEUE_WORKER_COUNT,
        poll_interval: float = QUEUE_POLL_INTERVAL_SECONDS
    ):
        if size < 1:
            raise ValueError(f"Размер пула должен быть >= 1: {size}")
        self.queue = queue
        self.processor = processor
        self.size = size
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self.running:
            logger.warning("[WorkerPool] Уже запущен")
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._loop, name=f"dococr-worker-{i + 1}", daemon=True)
            for i in range(self.size)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"[WorkerPool] Запущено {self.size} воркеров")

    def stop(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Воркеры дорабатывают текущий документ и выходят."""
        self._stop.set()
        if wait:
            for thread in self._threads:
                thread.join(timeout)
        logger.info("[WorkerPool] Остановлен")

    def wait_for_completion(self, timeout: Optional[float] = None) -> bool:
        """Синхронное ожидание: True, если очередь опустела за timeout."""
        return self.queue.wait_until_settled(timeout)

    def run_once(self, timeout: float = 0) -> Optional[QueueItemView]:
        """Обрабатывает один элемент в текущем потоке. None если брать нечего."""
        item = self.queue.claim_next(timeout=timeout)
        if item is None:
            return None
        return self._handle(item)

    def _loop(self) -> None:
        name = threading.current_thread().name
        logger.debug(f"[WorkerPool] {name} стартовал")
        while not self._stop.is_set():
            try:
                item = self.queue.claim_next(timeout=self.poll_interval)
                if item is None:
                    continue
                self._handle(item)
            except Exception:
                logger.exception(f"[WorkerPool] {name}: необработанная ошибка, воркер продолжает работу")
        logger.debug(f"[WorkerPool] {name} завершён")

    def _handle(self, item: QueueItem) -> QueueItemView:
        try:
            result = self.processor.process(item)
        except Exception as e:
            # Неизвестные исключения считаются восстановимыми (is_recoverable)
            return self.queue.mark_failed(item.id, e)
        return self.queue.mark_completed(item.id, result)
