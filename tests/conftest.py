"""
Общие фикстуры: фейковые движки, управляемые часы, очередь.

Реальные провайдеры в тестах не вызываются.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import pytest

from contracts.extraction_dto import (
    BoundingBox, RawEngineResult, RawFormField, RawPage, RawTable, TextBlock,
)
from contracts.queue_dto import ExtractionOptions
from dococr.domain.interfaces import IEngineAdapter
from dococr.infrastructure.engine_registry import EngineRegistry
from dococr.infrastructure.event_publisher import InMemoryEventPublisher
from dococr.infrastructure.file_manager import InMemoryDocumentStorage, InMemoryResultStore
from dococr.post_ocr.locale_config import LocaleConfigLoader
from dococr.queue.processing_queue import ProcessingQueue
from dococr.queue.retry_policy import RetryPolicy


class FakeClock:
    """Часы, которые двигаются только вручную."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeEngineAdapter(IEngineAdapter):
    """Движок с заданной уверенностью или ошибкой."""

    def __init__(
        self,
        engine_id: str,
        confidence: float = 0.9,
        error: Optional[Exception] = None,
        text: str = "Faktura VAT nr 12/2026",
        pages: int = 1,
        tables: Optional[List[RawTable]] = None,
        form_fields: Optional[List[RawFormField]] = None
    ):
        self._engine_id = engine_id
        self.confidence = confidence
        self.error = error
        self.text = text
        self.pages = pages
        self.tables = tables or []
        self.form_fields = form_fields or []
        self.calls: List[Sequence[str]] = []

    @property
    def engine_id(self) -> str:
        return self._engine_id

    @property
    def engine_version(self) -> str:
        return "fake-1.0"

    @property
    def supports_tables(self) -> bool:
        return bool(self.tables)

    @property
    def supports_forms(self) -> bool:
        return bool(self.form_fields)

    def extract(self, image_bytes, language_hints=(), options: Optional[ExtractionOptions] = None) -> RawEngineResult:
        self.calls.append(tuple(language_hints))
        if self.error is not None:
            raise self.error
        pages = [
            RawPage(
                page_number=i + 1,
                width=1000,
                height=2000,
                text=self.text,
                blocks=[TextBlock(self.text, self.confidence, BoundingBox(100, 200, 500, 40), "LINE")],
                confidence=self.confidence,
            )
            for i in range(self.pages)
        ]
        return RawEngineResult(
            engine=self._engine_id,
            engine_version=self.engine_version,
            pages=pages,
            tables=list(self.tables),
            form_fields=list(self.form_fields),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def publisher():
    return InMemoryEventPublisher()


@pytest.fixture
def queue(publisher, clock):
    """Очередь с backoff 5 с и 3 попытками."""
    return ProcessingQueue(
        publisher=publisher,
        retry_policy=RetryPolicy(base_delay_seconds=5, max_attempts=3),
        clock=clock,
    )


@pytest.fixture
def locale_loader():
    return LocaleConfigLoader()


@pytest.fixture
def storage():
    return InMemoryDocumentStorage({"invoice.png": b"fake-image-bytes"})


@pytest.fixture
def result_store():
    return InMemoryResultStore()


def make_registry(*adapters: IEngineAdapter) -> EngineRegistry:
    return EngineRegistry(adapters, default_order=["GOOGLE_VISION", "AZURE_COGNITIVE", "TESSERACT"])
