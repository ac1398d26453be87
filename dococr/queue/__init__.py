"""
Очередь обработки: приоритеты, повторы с backoff, пул воркеров.
"""

from .retry_policy import RetryPolicy
from .processing_queue import ProcessingQueue
from .worker_pool import WorkerPool

__all__ = [
    "RetryPolicy",
    "ProcessingQueue",
    "WorkerPool",
]
