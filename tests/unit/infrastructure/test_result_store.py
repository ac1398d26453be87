import json

import pytest

from contracts.extraction_dto import EnhancementRecord, RawTable, RawTableCell
from contracts.queue_dto import ExtractionOptions
from dococr.application.orchestrator import ExtractionOrchestrator
from dococr.domain.exceptions import DocumentNotFoundError, ResultStoreError
from dococr.infrastructure.file_manager import (
    FileSystemDocumentStorage, InMemoryResultStore, JsonResultStore, result_from_dict, safe_name,
)

from conftest import FakeEngineAdapter, make_registry


@pytest.fixture
def orchestrator(clock):
    table = RawTable(page_number=1, cells=[
        RawTableCell(0, 0, "Nazwa", 0.9, is_header=True),
        RawTableCell(1, 0, "Usługa", 0.7),
    ])
    adapter = FakeEngineAdapter(
        "AZURE_COGNITIVE",
        text="Faktura z dnia 05.03.2026\nRazem: 1 234,56 zł\nNIP 123-456-32-18",
        tables=[table],
    )
    return ExtractionOrchestrator(make_registry(adapter), clock=clock)


def _run(orchestrator, ref="faktury/2026/03 invoice.png"):
    options = ExtractionOptions(enable_table_detection=True)
    return orchestrator.run(b"img", ["pl"], options=options, document_ref=ref)


@pytest.mark.parametrize("ref, expected", [
    ("faktury/2026/03 invoice.png", "faktury_2026_03_invoice.png"),
    ("../../etc/passwd", "etc_passwd"),
    ("...", "document"),
])
def test_safe_name(ref, expected):
    assert safe_name(ref) == expected


def test_json_round_trip(tmp_path, orchestrator):
    """Тест: сохранённый результат читается обратно без потерь."""
    store = JsonResultStore(tmp_path)
    result, attempts = _run(orchestrator)
    record = EnhancementRecord(operations=("normalize_contrast", "grayscale"))

    result_id = store.save_result(result, attempts, [record])

    assert result_id == result.id
    loaded = store.latest(result.document_ref)
    assert loaded == result
    assert loaded.detected_patterns.amounts[0].unit == "PLN"
    assert loaded.detected_tables[0].rows[1][0].text == "Usługa"

    files = list((tmp_path / "faktury_2026_03_invoice.png").glob("*.json"))
    payload = json.loads(files[0].read_text(encoding="utf-8"))
    assert payload["attempts"][0]["status"] == "SUCCESS"
    assert payload["enhancements"][0]["operations"] == ["normalize_contrast", "grayscale"]
    assert payload["result"]["page_count"] == 1


def test_history_newest_first(tmp_path, orchestrator, clock):
    store = JsonResultStore(tmp_path)
    first, attempts = _run(orchestrator)
    store.save_result(first, attempts)
    clock.advance(60)
    second, attempts = _run(orchestrator)
    store.save_result(second, attempts)

    history = store.history(first.document_ref)

    assert [r.id for r in history] == [second.id, first.id]
    assert store.latest(first.document_ref).id == second.id


def test_existing_file_never_overwritten(tmp_path, orchestrator):
    store = JsonResultStore(tmp_path)
    result, attempts = _run(orchestrator)
    store.save_result(result, attempts)

    with pytest.raises(ResultStoreError):
        store.save_result(result, attempts)

    assert len(store.history(result.document_ref)) == 1


def test_failures_kept_separately(tmp_path, orchestrator):
    store = JsonResultStore(tmp_path)
    _, attempts = _run(orchestrator)

    store.save_failure("scan.png", attempts, "All engines failed: TESSERACT=FAILED (x)")

    assert store.history("scan.png") == []
    assert store.latest("scan.png") is None
    failure = store.failures("scan.png")[0]
    assert failure["error"].startswith("All engines failed")
    assert failure["attempts"][0]["engine"] == "AZURE_COGNITIVE"


def test_corrupted_json_raises(tmp_path):
    directory = tmp_path / "scan.png"
    directory.mkdir()
    (directory / "broken.json").write_text("{", encoding="utf-8")

    with pytest.raises(ResultStoreError):
        JsonResultStore(tmp_path).history("scan.png")


def test_result_from_dict_ignores_derived_fields(orchestrator):
    result, _ = _run(orchestrator)
    data = json.loads(json.dumps(result.to_dict(), ensure_ascii=False))

    assert data["word_count"] == result.word_count
    assert result_from_dict(data) == result


def test_in_memory_store_history(orchestrator, clock):
    store = InMemoryResultStore()
    first, attempts = _run(orchestrator, "a.png")
    store.save_result(first, attempts)
    second, attempts = _run(orchestrator, "a.png")
    store.save_result(second, attempts)

    assert store.latest("a.png") is second
    assert store.history("b.png") == []


def test_file_system_storage(tmp_path):
    (tmp_path / "scan.png").write_bytes(b"png")
    storage = FileSystemDocumentStorage(tmp_path)

    assert storage.exists("scan.png")
    assert storage.read("scan.png") == b"png"
    assert storage.read(str(tmp_path / "scan.png")) == b"png"
    with pytest.raises(DocumentNotFoundError):
        storage.read("missing.png")
