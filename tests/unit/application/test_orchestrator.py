from datetime import datetime

import pytest

from contracts.extraction_dto import AttemptStatus, RawFormField, RawTable, RawTableCell, BoundingBox
from contracts.queue_dto import ExtractionOptions
from dococr.application.orchestrator import ExtractionOrchestrator
from dococr.domain.events import OcrEventType
from dococr.domain.interfaces import IEventPublisher
from dococr.domain.exceptions import (
    AllEnginesFailedError, EngineCallError, EngineTimeoutError, ExtractionConfigurationError,
)

from conftest import FakeEngineAdapter, make_registry


@pytest.fixture
def engines():
    return {
        "A": FakeEngineAdapter("GOOGLE_VISION", confidence=0.45),
        "B": FakeEngineAdapter("AZURE_COGNITIVE", confidence=0.82),
        "C": FakeEngineAdapter("TESSERACT", confidence=0.99),
    }


def test_cascade_stops_at_first_accepted_engine(engines, publisher):
    """Тест: A=0.45, B=0.82 -> выбран B, C не вызывается."""
    orchestrator = ExtractionOrchestrator(make_registry(*engines.values()), publisher=publisher)

    result, attempts = orchestrator.run(b"img", ["pl"], document_ref="doc-1")

    assert result.engine == "AZURE_COGNITIVE"
    assert result.overall_confidence == pytest.approx(0.82)
    assert result.needs_manual_review is False
    assert result.review_reason is None
    assert [(a.engine, a.status) for a in attempts] == [
        ("GOOGLE_VISION", AttemptStatus.FALLBACK),
        ("AZURE_COGNITIVE", AttemptStatus.SUCCESS),
    ]
    assert engines["C"].calls == []

    fallbacks = publisher.of_type(OcrEventType.OCR_ENGINE_FALLBACK, "doc-1")
    assert [e.payload["engine"] for e in fallbacks] == ["GOOGLE_VISION"]


def test_accepted_but_below_review_threshold_is_flagged():
    """Тест: 0.70 -> принят, но нужна ручная проверка."""
    orchestrator = ExtractionOrchestrator(make_registry(FakeEngineAdapter("GOOGLE_VISION", confidence=0.70)))

    result, attempts = orchestrator.run(b"img")

    assert attempts[0].status == AttemptStatus.SUCCESS
    assert result.needs_manual_review is True
    assert result.review_reason
    assert "0.70" in result.review_reason


def test_attempt_order_strictly_increasing(engines):
    engines["B"].confidence = 0.3
    orchestrator = ExtractionOrchestrator(make_registry(*engines.values()))

    _, attempts = orchestrator.run(b"img")

    assert [a.order for a in attempts] == [1, 2, 3]
    assert [a.engine for a in attempts] == ["GOOGLE_VISION", "AZURE_COGNITIVE", "TESSERACT"]


def test_best_of_attempts_when_none_accepted():
    adapters = [
        FakeEngineAdapter("GOOGLE_VISION", confidence=0.31),
        FakeEngineAdapter("AZURE_COGNITIVE", confidence=0.52),
        FakeEngineAdapter("TESSERACT", confidence=0.40),
    ]
    orchestrator = ExtractionOrchestrator(make_registry(*adapters))

    result, attempts = orchestrator.run(b"img")

    assert result.engine == "AZURE_COGNITIVE"
    assert all(a.status == AttemptStatus.FALLBACK for a in attempts)
    assert result.needs_manual_review is True


def test_preferred_engine_goes_first(engines):
    orchestrator = ExtractionOrchestrator(make_registry(*engines.values()))

    result, attempts = orchestrator.run(b"img", preferred_engine="TESSERACT")

    assert result.engine == "TESSERACT"
    assert len(attempts) == 1
    assert engines["A"].calls == []


def test_unknown_preferred_engine_ignored(engines):
    orchestrator = ExtractionOrchestrator(make_registry(*engines.values()))

    _, attempts = orchestrator.run(b"img", preferred_engine="ABBYY")

    assert attempts[0].engine == "GOOGLE_VISION"


def test_failures_and_timeouts_are_recorded_not_raised(publisher):
    adapters = [
        FakeEngineAdapter("GOOGLE_VISION", error=EngineTimeoutError("GOOGLE_VISION", 60)),
        FakeEngineAdapter("AZURE_COGNITIVE", error=EngineCallError("AZURE_COGNITIVE", "HTTP 429")),
        FakeEngineAdapter("TESSERACT", confidence=0.66),
    ]
    orchestrator = ExtractionOrchestrator(make_registry(*adapters), publisher=publisher)

    result, attempts = orchestrator.run(b"img", document_ref="doc-1")

    assert result.engine == "TESSERACT"
    assert [a.status for a in attempts] == [AttemptStatus.TIMEOUT, AttemptStatus.FAILED, AttemptStatus.SUCCESS]
    assert attempts[0].confidence is None
    assert "HTTP 429" in attempts[1].error_message
    assert len(publisher.of_type(OcrEventType.OCR_ENGINE_FALLBACK)) == 2


def test_all_engines_failed_carries_attempt_log():
    adapters = [
        FakeEngineAdapter("GOOGLE_VISION", error=EngineTimeoutError("GOOGLE_VISION", 60)),
        FakeEngineAdapter("TESSERACT", error=RuntimeError("segfault")),
    ]
    orchestrator = ExtractionOrchestrator(make_registry(*adapters))

    with pytest.raises(AllEnginesFailedError) as exc_info:
        orchestrator.run(b"img")

    error = exc_info.value
    assert [a.engine for a in error.attempts] == ["GOOGLE_VISION", "TESSERACT"]
    assert error.summary().startswith("All engines failed: GOOGLE_VISION=TIMEOUT")
    assert "TESSERACT=FAILED (segfault)" in error.summary()
    assert error.recoverable is True


def test_empty_registry_fails():
    with pytest.raises(AllEnginesFailedError):
        ExtractionOrchestrator(make_registry()).run(b"img")


def test_result_invariants_and_normalization(clock):
    adapter = FakeEngineAdapter("GOOGLE_VISION", confidence=0.9, pages=3, text="Faktupa  nr 7  z dnia 05.03.2026")
    orchestrator = ExtractionOrchestrator(make_registry(adapter), clock=clock)

    result, attempts = orchestrator.run(b"img", ["pl"], document_ref="doc-1")

    assert result.page_count == 3 == attempts[0].page_count
    assert result.created_at == clock()
    assert result.language == "pl"
    assert result.full_text_normalized.startswith("Faktura nr 7 z dnia 05.03.2026")
    assert [d.value for d in result.detected_patterns.dates] == ["2026-03-05"] * 3
    # Проверка: координаты блоков в долях страницы
    box = result.page_results[0].blocks[0].bounding_box
    assert box.x == pytest.approx(0.1)
    assert box.y == pytest.approx(0.1)
    assert box.width == pytest.approx(0.5)
    assert box.height == pytest.approx(0.02)


def test_tables_and_forms_only_when_requested():
    table = RawTable(page_number=1, cells=[
        RawTableCell(0, 0, "Nazwa", 0.9, is_header=True),
        RawTableCell(1, 0, "Usługa", 0.8),
    ])
    field = RawFormField(page_number=1, label="NIP", value="1234563218", label_box=BoundingBox(0, 0, 100, 20))
    adapter = FakeEngineAdapter("AZURE_COGNITIVE", tables=[table], form_fields=[field])
    orchestrator = ExtractionOrchestrator(make_registry(adapter))

    plain, _ = orchestrator.run(b"img")
    assert plain.detected_tables == ()
    assert plain.detected_form_fields == ()

    options = ExtractionOptions(enable_table_detection=True, enable_form_detection=True)
    structured, _ = orchestrator.run(b"img", options=options)
    assert structured.detected_tables[0].has_header_row is True
    assert structured.detected_form_fields[0].value == "1234563218"
    assert structured.detected_form_fields[0].label_box.width == pytest.approx(0.1)


@pytest.mark.parametrize("accept, review", [(1.5, 0.75), (0.6, -0.1)])
def test_thresholds_validated(accept, review):
    with pytest.raises(ExtractionConfigurationError):
        ExtractionOrchestrator(make_registry(), acceptance_threshold=accept, review_threshold=review)


def test_thresholds_are_configurable():
    orchestrator = ExtractionOrchestrator(
        make_registry(
            FakeEngineAdapter("GOOGLE_VISION", confidence=0.82),
            FakeEngineAdapter("TESSERACT", confidence=0.95),
        ),
        acceptance_threshold=0.9,
        review_threshold=0.9,
    )

    result, attempts = orchestrator.run(b"img")

    assert result.engine == "TESSERACT"
    assert [a.status for a in attempts] == [AttemptStatus.FALLBACK, AttemptStatus.SUCCESS]
    assert isinstance(attempts[0].started_at, datetime)


def test_no_fallback_event_after_last_engine(publisher):
    """Тест: после последнего движка переходить некуда, OCR_ENGINE_FALLBACK не публикуется."""
    adapters = [
        FakeEngineAdapter("GOOGLE_VISION", error=EngineCallError("GOOGLE_VISION", "HTTP 503")),
        FakeEngineAdapter("TESSERACT", error=EngineCallError("TESSERACT", "binary missing")),
    ]
    orchestrator = ExtractionOrchestrator(make_registry(*adapters), publisher=publisher)

    with pytest.raises(AllEnginesFailedError):
        orchestrator.run(b"img", document_ref="doc-1")

    fallbacks = publisher.of_type(OcrEventType.OCR_ENGINE_FALLBACK, "doc-1")
    assert [e.payload["engine"] for e in fallbacks] == ["GOOGLE_VISION"]


def test_low_confidence_last_engine_emits_no_fallback(publisher):
    adapters = [
        FakeEngineAdapter("GOOGLE_VISION", confidence=0.31),
        FakeEngineAdapter("TESSERACT", confidence=0.40),
    ]
    orchestrator = ExtractionOrchestrator(make_registry(*adapters), publisher=publisher)

    result, attempts = orchestrator.run(b"img", document_ref="doc-1")

    assert result.engine == "TESSERACT"
    assert attempts[-1].status == AttemptStatus.FALLBACK
    assert len(publisher.of_type(OcrEventType.OCR_ENGINE_FALLBACK)) == 1


class BrokenPublisher(IEventPublisher):
    def publish(self, event):
        raise ConnectionError("broker down")


def test_broken_publisher_does_not_break_cascade():
    adapters = [
        FakeEngineAdapter("GOOGLE_VISION", confidence=0.2),
        FakeEngineAdapter("TESSERACT", confidence=0.9),
    ]
    orchestrator = ExtractionOrchestrator(make_registry(*adapters), publisher=BrokenPublisher())

    result, attempts = orchestrator.run(b"img")

    assert result.engine == "TESSERACT"
    assert len(attempts) == 2


@pytest.mark.parametrize("hints", [(), ("auto",), ("AUTO", "")])
def test_locale_detected_without_hints(hints):
    """Тест: без подсказок (или с "auto") локаль определяется по тексту движка."""
    adapter = FakeEngineAdapter("GOOGLE_VISION", text="Rechnung Nr. 5\nGesamtbetrag: 10,00 EUR\nGebuhren fur Versand")
    orchestrator = ExtractionOrchestrator(make_registry(adapter))

    result, _ = orchestrator.run(b"img", hints)

    assert result.language == "de_DE"
    # Проверка: "auto" не уходит в движок как код языка
    assert adapter.calls == [()]
    # Проверка: нормализация по немецкой таблице
    assert "Gebühren für Versand" in result.full_text_normalized


def test_explicit_hint_beats_detection():
    adapter = FakeEngineAdapter("GOOGLE_VISION", text="Dodavatel: ACME\nCastka k uhrade: 1 200 CZK")
    orchestrator = ExtractionOrchestrator(make_registry(adapter))

    detected, _ = orchestrator.run(b"img")
    hinted, _ = orchestrator.run(b"img", ["en"])

    assert detected.language == "cs_CZ"
    assert "Částka k úhradě: 1 200 CZK" in detected.full_text_normalized
    assert hinted.language == "en"
    assert "Castka k uhrade" in hinted.full_text_normalized
