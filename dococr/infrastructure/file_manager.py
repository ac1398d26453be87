"""
Хранилища: исходные документы и результаты извлечения.

JsonResultStore пишет один JSON на запуск в RESULTS_DIR/<document_ref>/
и никогда не перезаписывает существующие файлы: повторный запуск
создаёт новый результат, история сохраняется.
"""

import json
import re
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from config.settings import DOCUMENTS_DIR, RESULTS_DIR
from contracts.extraction_dto import (
    BoundingBox, DetectedPatterns, DetectedTable, EngineAttempt, EnhancementRecord,
    ExtractionResult, FormField, PageResult, PatternMatch, TableCell, TextBlock,
)
from ..domain.interfaces import IDocumentStorage, IResultStore
from ..domain.exceptions import DocumentNotFoundError, ExtractionError, ResultStoreError

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_DERIVED_FIELDS = ("page_count", "word_count", "character_count")


def safe_name(document_ref: str) -> str:
    """document_ref -> имя директории (без '/', '..' и пробелов)."""
    name = _UNSAFE_CHARS.sub("_", document_ref).strip("._")
    return name or "document"


# ============================================================================
# ДОКУМЕНТЫ
# ============================================================================

class FileSystemDocumentStorage(IDocumentStorage):
    """
    Документы на диске.

    document_ref: путь: абсолютный или относительно base_dir.
    """

    def __init__(self, base_dir: Path = DOCUMENTS_DIR) -> None:
        self.base_dir = Path(base_dir)

    def _resolve(self, document_ref: str) -> Path:
        path = Path(document_ref)
        return path if path.is_absolute() else self.base_dir / path

    def exists(self, document_ref: str) -> bool:
        return self._resolve(document_ref).is_file()

    def read(self, document_ref: str) -> bytes:
        path = self._resolve(document_ref)
        if not path.is_file():
            raise DocumentNotFoundError(
                message=f"Документ не найден: {path}",
                component="FileSystemDocumentStorage"
            )
        try:
            return path.read_bytes()
        except OSError as e:
            raise ExtractionError(
                message=f"Не удалось прочитать документ: {path}",
                component="FileSystemDocumentStorage",
                original_error=e
            )


class InMemoryDocumentStorage(IDocumentStorage):
    """Документы в памяти (тесты, встраивание)."""

    def __init__(self, documents: Optional[Dict[str, bytes]] = None) -> None:
        self._documents: Dict[str, bytes] = dict(documents or {})

    def put(self, document_ref: str, content: bytes) -> None:
        self._documents[document_ref] = content

    def exists(self, document_ref: str) -> bool:
        return document_ref in self._documents

    def read(self, document_ref: str) -> bytes:
        if document_ref not in self._documents:
            raise DocumentNotFoundError(
                message=f"Документ не найден: {document_ref}",
                component="InMemoryDocumentStorage"
            )
        return self._documents[document_ref]


# ============================================================================
# РЕЗУЛЬТАТЫ
# ============================================================================

class JsonResultStore(IResultStore):
    """Один JSON файл на запуск, история по времени создания."""

    def __init__(self, results_dir: Path = RESULTS_DIR) -> None:
        self.results_dir = Path(results_dir)
        self._lock = threading.Lock()

    def save_result(
        self,
        result: ExtractionResult,
        attempts: Sequence[EngineAttempt],
        enhancement_records: Sequence[EnhancementRecord] = ()
    ) -> str:
        payload = {
            "kind": "result",
            "result": result.to_dict(),
            "attempts": [a.to_dict() for a in attempts],
            "enhancements": [r.to_dict() for r in enhancement_records],
        }
        stamp = result.created_at.strftime("%Y%m%dT%H%M%S%f")
        path = self._document_dir(result.document_ref) / f"{stamp}_{result.id}.json"
        self._write_json(payload, path)
        logger.info(f"[ResultStore] Результат сохранён: {path}")
        return result.id

    def save_failure(
        self,
        document_ref: str,
        attempts: Sequence[EngineAttempt],
        error: str
    ) -> None:
        now = datetime.now()
        payload = {
            "kind": "failure",
            "document_ref": document_ref,
            "error": error,
            "attempts": [a.to_dict() for a in attempts],
            "created_at": now.isoformat(),
        }
        path = self._document_dir(document_ref) / f"{now.strftime('%Y%m%dT%H%M%S%f')}_failure_{uuid.uuid4().hex[:8]}.json"
        self._write_json(payload, path)
        logger.debug(f"[ResultStore] Лог неудачного запуска сохранён: {path}")

    def latest(self, document_ref: str) -> Optional[ExtractionResult]:
        results = self.history(document_ref)
        return results[0] if results else None

    def history(self, document_ref: str) -> List[ExtractionResult]:
        results = [
            result_from_dict(payload["result"])
            for payload in self._load_payloads(document_ref)
            if payload.get("kind") == "result"
        ]
        results.sort(key=lambda r: r.created_at, reverse=True)
        return results

    def failures(self, document_ref: str) -> List[Dict[str, Any]]:
        """Логи неудачных запусков, новые первыми."""
        failures = [p for p in self._load_payloads(document_ref) if p.get("kind") == "failure"]
        failures.sort(key=lambda p: p["created_at"], reverse=True)
        return failures

    def _document_dir(self, document_ref: str) -> Path:
        return self.results_dir / safe_name(document_ref)

    def _load_payloads(self, document_ref: str) -> List[Dict[str, Any]]:
        directory = self._document_dir(document_ref)
        if not directory.is_dir():
            return []
        payloads = []
        for path in sorted(directory.glob("*.json")):
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    payloads.append(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                raise ResultStoreError(
                    message=f"Не удалось загрузить JSON файл: {path}",
                    component="JsonResultStore",
                    original_error=e
                )
        return payloads

    def _write_json(self, data: Dict[str, Any], file_path: Path) -> None:
        """Пишет JSON; существующий файл не перезаписывается (режим 'x')."""
        try:
            with self._lock:
                file_path.parent.mkdir(parents=True, exist_ok=True)
                with open(file_path, 'x', encoding='utf-8') as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
        except (IOError, OSError, TypeError) as e:
            raise ResultStoreError(
                message=f"Не удалось сохранить JSON файл: {file_path}",
                component="JsonResultStore",
                original_error=e
            )


class InMemoryResultStore(IResultStore):
    """Результаты в памяти (тесты, встраивание)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.results: List[ExtractionResult] = []
        self.attempts: Dict[str, List[EngineAttempt]] = {}
        self.enhancements: Dict[str, List[EnhancementRecord]] = {}
        self.failed_runs: List[Dict[str, Any]] = []

    def save_result(
        self,
        result: ExtractionResult,
        attempts: Sequence[EngineAttempt],
        enhancement_records: Sequence[EnhancementRecord] = ()
    ) -> str:
        with self._lock:
            self.results.append(result)
            self.attempts[result.id] = list(attempts)
            self.enhancements[result.id] = list(enhancement_records)
        return result.id

    def save_failure(
        self,
        document_ref: str,
        attempts: Sequence[EngineAttempt],
        error: str
    ) -> None:
        with self._lock:
            self.failed_runs.append({
                "document_ref": document_ref,
                "error": error,
                "attempts": list(attempts),
            })

    def latest(self, document_ref: str) -> Optional[ExtractionResult]:
        results = self.history(document_ref)
        return results[0] if results else None

    def history(self, document_ref: str) -> List[ExtractionResult]:
        with self._lock:
            matching = [r for r in self.results if r.document_ref == document_ref]
        return list(reversed(matching))


# ============================================================================
# ДЕСЕРИАЛИЗАЦИЯ
# ============================================================================

def _box(data: Optional[Dict[str, Any]]) -> Optional[BoundingBox]:
    return BoundingBox(**data) if data else None


def _block(data: Dict[str, Any]) -> TextBlock:
    return TextBlock(
        text=data["text"],
        confidence=data["confidence"],
        bounding_box=_box(data.get("bounding_box")),
        block_type=data.get("block_type", "TEXT"),
    )


def _cell(data: Dict[str, Any]) -> TableCell:
    return TableCell(**{**data, "bounding_box": _box(data.get("bounding_box"))})


def _matches(items: List[Dict[str, Any]]) -> tuple:
    return tuple(PatternMatch(**m) for m in items)


def result_from_dict(data: Dict[str, Any]) -> ExtractionResult:
    """Обратное преобразование ExtractionResult.to_dict()."""
    data = {k: v for k, v in data.items() if k not in _DERIVED_FIELDS}
    patterns = data.get("detected_patterns") or {}

    return ExtractionResult(
        id=data["id"],
        document_ref=data["document_ref"],
        engine=data["engine"],
        engine_version=data["engine_version"],
        full_text=data["full_text"],
        full_text_normalized=data["full_text_normalized"],
        page_results=tuple(
            PageResult(
                page_number=p["page_number"],
                text=p["text"],
                confidence=p["confidence"],
                width=p.get("width", 0.0),
                height=p.get("height", 0.0),
                blocks=tuple(_block(b) for b in p.get("blocks", [])),
            )
            for p in data["page_results"]
        ),
        overall_confidence=data["overall_confidence"],
        needs_manual_review=data["needs_manual_review"],
        review_reason=data.get("review_reason"),
        detected_tables=tuple(
            DetectedTable(
                page_number=t["page_number"],
                row_count=t["row_count"],
                column_count=t["column_count"],
                rows=tuple(tuple(_cell(c) for c in row) for row in t["rows"]),
                has_header_row=t["has_header_row"],
                confidence=t["confidence"],
            )
            for t in data.get("detected_tables", [])
        ),
        detected_form_fields=tuple(
            FormField(**{
                **f,
                "label_box": _box(f.get("label_box")),
                "value_box": _box(f.get("value_box")),
            })
            for f in data.get("detected_form_fields", [])
        ),
        detected_patterns=DetectedPatterns(
            dates=_matches(patterns.get("dates", [])),
            amounts=_matches(patterns.get("amounts", [])),
            identifiers=_matches(patterns.get("identifiers", [])),
        ),
        enhancements_applied=tuple(data.get("enhancements_applied", [])),
        language=data.get("language"),
        processing_time_ms=data.get("processing_time_ms", 0),
        created_at=datetime.fromisoformat(data["created_at"]),
    )
