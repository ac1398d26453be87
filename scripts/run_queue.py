#!/usr/bin/env python3
"""
Точка входа: поставить документы в очередь и обработать их пулом воркеров.

Использование:
    # Один документ
    python scripts/run_queue.py data/documents/invoice.png

    # Директория, высокий приоритет, польский язык, таблицы
    python scripts/run_queue.py data/documents/ --priority HIGH --lang pl --tables

    # Предпочтительный движок и повтор терминально упавших
    python scripts/run_queue.py scan.tif --engine TESSERACT --retry-failed

Очередь живёт в процессе: скрипт ждёт, пока все поставленные
документы не будут обработаны, и печатает итоговую таблицу.
"""

import argparse
import sys
from pathlib import Path
from typing import List

from loguru import logger
from pydantic import ValidationError

from config.settings import LOG_LEVEL, QUEUE_BATCH_LIMIT, QUEUE_WORKER_COUNT, SUPPORTED_DOCUMENT_FORMATS, validate_config
from contracts.queue_dto import QueuePriority, QueueStatus
from dococr.application import DocOcrComponentFactory
from dococr.domain.contracts import ContractValidationError, EnqueueRequest
from dococr.domain.exceptions import ExtractionError


def collect_documents(paths: List[str]) -> List[Path]:
    """Файлы как есть, директории обходятся по SUPPORTED_DOCUMENT_FORMATS."""
    documents = []
    for raw in paths:
        path = Path(raw).resolve()
        if path.is_dir():
            documents.extend(sorted(
                p for p in path.iterdir()
                if p.is_file() and p.suffix.lower() in SUPPORTED_DOCUMENT_FORMATS
            ))
        elif path.is_file():
            documents.append(path)
        else:
            print(f"  [WARN] Не найден: {raw}")
    return documents


def print_summary(service, document_refs: List[str]) -> int:
    """Печатает таблицу статусов, возвращает число FAILED."""
    print("\n" + "=" * 100)
    print(f"  {'STATUS':<11} {'ENGINE':<16} {'CONF':>6} {'REVIEW':<7} {'ATT':>3}  DOCUMENT / ERROR")
    print("=" * 100)

    failed = 0
    for ref in document_refs:
        view = service.queue.status(ref)
        result = service.result_store.latest(ref) if view.status == QueueStatus.COMPLETED else None
        engine = result.engine if result else "-"
        confidence = f"{result.overall_confidence:.2f}" if result else "-"
        review = ("yes" if result.needs_manual_review else "no") if result else "-"
        print(
            f"  {view.status.value:<11} {engine:<16} {confidence:>6} {review:<7} "
            f"{view.attempt_count:>3}  {Path(ref).name}"
        )
        if view.last_error and view.status != QueueStatus.COMPLETED:
            print(f"  {'':<47}{view.last_error}")
        if view.status == QueueStatus.FAILED:
            failed += 1

    print("=" * 100)
    return failed


def build_requests(documents: List[Path], args: argparse.Namespace) -> List[EnqueueRequest]:
    """
    EnqueueRequest на каждый документ из аргументов CLI.

    Raises:
        ContractValidationError: аргументы не проходят контракт (код языка и т.п.)
    """
    try:
        return [
            EnqueueRequest(
                document_ref=str(path),
                priority=args.priority,
                preferred_engine=args.engine,
                language_hints=args.lang,
                enable_table_detection=args.tables,
                enable_form_detection=args.forms,
                enable_enhancement=not args.no_enhance,
                deskew=args.deskew,
            )
            for path in documents
        ]
    except ValidationError as e:
        raise ContractValidationError.from_pydantic("CLI", "EnqueueRequest", e)


def main():
    """Главная функция запуска очереди."""
    parser = argparse.ArgumentParser(description="dococr: очередь извлечения текста из документов")
    parser.add_argument("paths", nargs="+", help="Файлы или директории с документами")
    parser.add_argument(
        "--priority", default=QueuePriority.NORMAL.value,
        choices=[p.value for p in QueuePriority], help="Приоритет (по умолчанию NORMAL)"
    )
    parser.add_argument("--engine", help="Предпочтительный движок (GOOGLE_VISION, AZURE_COGNITIVE, TESSERACT)")
    parser.add_argument("--lang", action="append", default=[], help="Языковая подсказка (можно несколько, auto = определить по тексту)")
    parser.add_argument("--tables", action="store_true", help="Извлекать таблицы")
    parser.add_argument("--forms", action="store_true", help="Извлекать поля форм")
    parser.add_argument("--no-enhance", action="store_true", help="Без enhancement")
    parser.add_argument("--deskew", action="store_true", help="Выравнивать наклон")
    parser.add_argument("--workers", type=int, default=QUEUE_WORKER_COUNT, help="Размер пула воркеров")
    parser.add_argument("--retry-failed", action="store_true", help="Один принудительный повтор для FAILED")
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Уровень логирования")
    args = parser.parse_args()

    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=args.log_level.upper()
    )

    try:
        validate_config()
    except ValueError as e:
        print(f"\n[ERROR] {e}")
        sys.exit(1)

    documents = collect_documents(args.paths)
    if not documents:
        print("[ERROR] Нет документов для обработки")
        sys.exit(1)
    if len(documents) > QUEUE_BATCH_LIMIT:
        print(f"[ERROR] Слишком много документов: {len(documents)} > {QUEUE_BATCH_LIMIT}")
        sys.exit(1)

    try:
        requests = build_requests(documents, args)
    except ContractValidationError as e:
        logger.error(f"[CLI] {e}")
        sys.exit(1)

    try:
        service = DocOcrComponentFactory.create_default_service(workers=args.workers)
    except ExtractionError as e:
        print(f"\n[ERROR] {e}")
        sys.exit(1)

    batch = service.queue.enqueue_batch(requests)
    print(f"\n[OK] Поставлено: {batch.queued}, пропущено: {batch.skipped}, ошибок: {batch.failed}")

    document_refs = [r.document_ref for r in batch.results if r.queue_id]

    service.pool.start()
    try:
        service.pool.wait_for_completion()

        if args.retry_failed:
            retried = 0
            for ref in document_refs:
                view = service.queue.status(ref)
                if view.status == QueueStatus.FAILED:
                    service.queue.force_retry(view.id, alternate_engine=args.engine)
                    retried += 1
            if retried:
                print(f"[OK] Повторно поставлено: {retried}")
                service.pool.wait_for_completion()
    except KeyboardInterrupt:
        print("\n[WARN] Прервано пользователем")
    finally:
        service.pool.stop(wait=False)

    failed = print_summary(service, document_refs)
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
