"""
Исключения проекта dococr.

Флаг recoverable решает судьбу элемента очереди:
- True: повтор с экспоненциальным backoff (пока есть попытки)
- False: сразу терминальный FAILED

Ошибки вызывающей стороны (AlreadyQueued, InvalidState, ...) очередь
никогда не повторяет: они возвращаются вызывающему.
"""

from typing import Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from contracts.extraction_dto import EngineAttempt


class ExtractionError(Exception):
    """Базовое исключение проекта."""

    recoverable: bool = True

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.component = component
        self.original_error = original_error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"Extraction Error: {self.message}"
        if self.component:
            msg += f" (Component: {self.component})"
        if self.original_error:
            msg += f" [Original: {type(self.original_error).__name__}: {str(self.original_error)}]"
        return msg


# =============================================================================
# ОЧЕРЕДЬ (ошибки вызывающей стороны)
# =============================================================================

class QueueError(ExtractionError):
    """Ошибка управления очередью."""
    recoverable = False


class AlreadyQueuedError(QueueError):
    """Для документа уже есть элемент в QUEUED/PROCESSING."""

    def __init__(self, document_ref: str, queue_id: Optional[str] = None):
        self.document_ref = document_ref
        self.queue_id = queue_id
        super().__init__(
            message=f"Документ уже в очереди: {document_ref} (queue_id={queue_id})",
            component="ProcessingQueue"
        )


class InvalidStateError(QueueError):
    """Операция недопустима в текущем статусе элемента."""

    def __init__(self, queue_id: str, status: str, operation: str):
        self.queue_id = queue_id
        self.status = status
        self.operation = operation
        super().__init__(
            message=f"Операция '{operation}' недопустима для {queue_id} в статусе {status}",
            component="ProcessingQueue"
        )


class QueueItemNotFoundError(QueueError):
    """Элемент очереди не найден."""
    pass


class BatchTooLargeError(QueueError):
    """Batch превышает лимит."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            message=f"Batch из {size} документов превышает лимит {limit}",
            component="ProcessingQueue"
        )


# =============================================================================
# ДВИЖКИ
# =============================================================================

class EngineError(ExtractionError):
    """Ошибка одного движка. Оркестратор превращает её в EngineAttempt."""

    def __init__(
        self,
        engine: str,
        message: str,
        original_error: Optional[Exception] = None
    ):
        self.engine = engine
        super().__init__(message=message, component=engine, original_error=original_error)


class EngineTimeoutError(EngineError):
    """Движок не ответил за timeout_seconds."""

    def __init__(self, engine: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(engine, f"Таймаут {timeout_seconds:g}s")


class EngineCallError(EngineError):
    """Провайдер вернул ошибку или упал."""
    pass


class AllEnginesFailedError(ExtractionError):
    """
    Ни один движок не дал пригодного результата.

    Несёт полный лог попыток: last_error в очереди строится из него.
    """

    def __init__(self, attempts: Sequence["EngineAttempt"]):
        self.attempts = list(attempts)
        super().__init__(message=self.summary(), component="ExtractionOrchestrator")

    def summary(self) -> str:
        if not self.attempts:
            return "All engines failed: нет зарегистрированных движков"
        parts = []
        for attempt in self.attempts:
            detail = attempt.error_message or "нет результата"
            parts.append(f"{attempt.engine}={attempt.status.value} ({detail})")
        return "All engines failed: " + "; ".join(parts)


# =============================================================================
# ДОКУМЕНТЫ, ИЗОБРАЖЕНИЯ, ХРАНИЛИЩЕ
# =============================================================================

class DocumentNotFoundError(ExtractionError):
    """Документ отсутствует в хранилище. Повтор не поможет."""
    recoverable = False


class ImageProcessingError(ExtractionError):
    """Ошибка обработки изображения."""
    pass


class ResultStoreError(ExtractionError):
    """Ошибка записи/чтения результата."""
    pass


class ExtractionConfigurationError(ExtractionError):
    """Ошибка конфигурации (движки, пороги, пути)."""
    recoverable = False


class NormalizationConfigError(ExtractionConfigurationError):
    """Таблица исправлений локали невалидна (например, ломает идемпотентность)."""
    pass


class TerminalFailureError(ExtractionError):
    """Явно терминальная ошибка обработки: элемент сразу уходит в FAILED."""
    recoverable = False


def is_recoverable(error: BaseException) -> bool:
    """Неизвестные исключения считаются восстановимыми."""
    if isinstance(error, ExtractionError):
        return error.recoverable
    return True
