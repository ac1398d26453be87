"""
Infrastructure слой dococr.

Адаптеры движков, реестр, хранилища документов/результатов, публикаторы событий.
"""

from .engine_registry import EngineRegistry
from .file_manager import (
    FileSystemDocumentStorage,
    InMemoryDocumentStorage,
    JsonResultStore,
    InMemoryResultStore,
)
from .event_publisher import (
    LoguruEventPublisher,
    InMemoryEventPublisher,
    CompositeEventPublisher,
)

__all__ = [
    "EngineRegistry",
    "FileSystemDocumentStorage",
    "InMemoryDocumentStorage",
    "JsonResultStore",
    "InMemoryResultStore",
    "LoguruEventPublisher",
    "InMemoryEventPublisher",
    "CompositeEventPublisher",
]
