"""
Domain слой dococr.

Содержит интерфейсы, исключения, события и валидационные контракты.
"""

from .interfaces import (
    IEngineAdapter,
    IImageEnhancer,
    IDocumentStorage,
    IResultStore,
    IEventPublisher,
    IDocumentProcessor,
)

from .exceptions import (
    ExtractionError,
    QueueError,
    AlreadyQueuedError,
    InvalidStateError,
    QueueItemNotFoundError,
    BatchTooLargeError,
    EngineError,
    EngineTimeoutError,
    EngineCallError,
    AllEnginesFailedError,
    DocumentNotFoundError,
    ImageProcessingError,
    ResultStoreError,
    ExtractionConfigurationError,
    NormalizationConfigError,
    TerminalFailureError,
    is_recoverable,
)

from .events import OcrEvent, OcrEventType

from .contracts import (
    ImageQualityMetrics,
    EngineSettings,
    EnqueueRequest,
    LocaleNormalizationConfig,
    ContractValidationError,
)

__all__ = [
    # Интерфейсы
    "IEngineAdapter",
    "IImageEnhancer",
    "IDocumentStorage",
    "IResultStore",
    "IEventPublisher",
    "IDocumentProcessor",

    # Исключения
    "ExtractionError",
    "QueueError",
    "AlreadyQueuedError",
    "InvalidStateError",
    "QueueItemNotFoundError",
    "BatchTooLargeError",
    "EngineError",
    "EngineTimeoutError",
    "EngineCallError",
    "AllEnginesFailedError",
    "DocumentNotFoundError",
    "ImageProcessingError",
    "ResultStoreError",
    "ExtractionConfigurationError",
    "NormalizationConfigError",
    "TerminalFailureError",
    "is_recoverable",

    # События
    "OcrEvent",
    "OcrEventType",

    # Контракты
    "ImageQualityMetrics",
    "EngineSettings",
    "EnqueueRequest",
    "LocaleNormalizationConfig",
    "ContractValidationError",
]
