"""
Адаптер Azure AI Document Intelligence (модель prebuilt-layout).

Единственный движок с таблицами и формами (key/value pairs).
Координаты Azure: polygon [x1, y1, x2, y2, ...] в единицах страницы
(пиксели для изображений, дюймы для PDF).
"""

import io
from typing import Any, Dict, List, Optional, Sequence

from azure.ai.documentintelligence import DocumentIntelligenceClient
from azure.ai.documentintelligence.models import DocumentAnalysisFeature
from azure.core.credentials import AzureKeyCredential
from loguru import logger

from config.settings import (
    AZURE_DOCUMENT_ENDPOINT, AZURE_DOCUMENT_KEY, AZURE_DOCUMENT_MODEL, ENGINE_TIMEOUT_SECONDS,
)
from contracts.extraction_dto import (
    BoundingBox, OcrEngine, RawEngineResult, RawFormField, RawPage,
    RawTable, RawTableCell, TextBlock,
)
from contracts.queue_dto import ExtractionOptions
from ...domain.exceptions import ExtractionConfigurationError
from .base import BaseEngineAdapter

HEADER_KINDS = {"columnHeader"}


class AzureDocumentAdapter(BaseEngineAdapter):
    """Обёртка над DocumentIntelligenceClient.begin_analyze_document."""

    ENGINE_ID = OcrEngine.AZURE_COGNITIVE.value

    def __init__(
        self,
        client: Optional[Any] = None,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        model_id: str = AZURE_DOCUMENT_MODEL,
        timeout_seconds: float = ENGINE_TIMEOUT_SECONDS,
        supports_tables: bool = True,
        supports_forms: bool = True
    ) -> None:
        super().__init__(
            timeout_seconds=timeout_seconds,
            supports_tables=supports_tables,
            supports_forms=supports_forms,
        )
        self.model_id = model_id
        self.client = client if client is not None else self._create_client(endpoint, api_key)
        logger.info(f"[AzureDocument] Адаптер инициализирован (model={model_id})")

    @property
    def engine_version(self) -> str:
        return f"document-intelligence/{self.model_id}"

    @staticmethod
    def _create_client(endpoint: Optional[str], api_key: Optional[str]) -> Any:
        endpoint = endpoint or AZURE_DOCUMENT_ENDPOINT
        api_key = api_key or AZURE_DOCUMENT_KEY
        if not endpoint or not api_key:
            raise ExtractionConfigurationError(
                message="Azure endpoint/api_key не указаны (AZURE_DOCUMENT_ENDPOINT, AZURE_DOCUMENT_KEY)",
                component="AzureDocumentAdapter"
            )
        return DocumentIntelligenceClient(endpoint=endpoint, credential=AzureKeyCredential(api_key))

    def _call_provider(
        self,
        image_bytes: bytes,
        language_hints: List[str],
        options: ExtractionOptions
    ) -> RawEngineResult:
        kwargs: Dict[str, Any] = {"content_type": "application/octet-stream"}
        if options.enable_form_detection and self.supports_forms:
            kwargs["features"] = [DocumentAnalysisFeature.KEY_VALUE_PAIRS]
        if language_hints:
            kwargs["locale"] = language_hints[0].replace("_", "-")

        poller = self.client.begin_analyze_document(self.model_id, body=io.BytesIO(image_bytes), **kwargs)
        result = poller.result()
        return self._parse_result(result)

    def _parse_result(self, result: Any) -> RawEngineResult:
        pages: List[RawPage] = []
        page_confidence: Dict[int, float] = {}

        for page in result.pages or []:
            words = page.words or []
            blocks = [
                TextBlock(
                    text=word.content,
                    confidence=float(word.confidence),
                    bounding_box=_polygon_to_box(word.polygon),
                    block_type="WORD",
                )
                for word in words
            ]
            confidence = sum(b.confidence for b in blocks) / len(blocks) if blocks else None
            if confidence is not None:
                page_confidence[page.page_number] = confidence

            lines = [line.content for line in (page.lines or [])]
            pages.append(RawPage(
                page_number=page.page_number,
                width=float(page.width or 0.0),
                height=float(page.height or 0.0),
                text="\n".join(lines) if lines else " ".join(b.text for b in blocks),
                blocks=blocks,
                confidence=confidence,
            ))

        tables = [self._parse_table(table, page_confidence) for table in (result.tables or [])]
        fields = [self._parse_key_value(pair) for pair in (getattr(result, "key_value_pairs", None) or [])]

        logger.debug(f"[AzureDocument] Страниц: {len(pages)}, таблиц: {len(tables)}, полей: {len(fields)}")

        return RawEngineResult(
            engine=self.ENGINE_ID,
            engine_version=self.engine_version,
            pages=pages,
            tables=tables,
            form_fields=fields,
            full_text=result.content or "",
        )

    @staticmethod
    def _parse_table(table: Any, page_confidence: Dict[int, float]) -> RawTable:
        page_number = _first_page(table.bounding_regions)
        # У ячеек Azure нет confidence: берём уверенность слов страницы
        confidence = page_confidence.get(page_number, 1.0)
        cells = [
            RawTableCell(
                row_index=cell.row_index,
                column_index=cell.column_index,
                text=cell.content or "",
                confidence=confidence,
                bounding_box=_region_box(cell.bounding_regions),
                is_header=(cell.kind in HEADER_KINDS),
                row_span=cell.row_span or 1,
                column_span=cell.column_span or 1,
            )
            for cell in table.cells
        ]
        return RawTable(
            page_number=page_number,
            cells=cells,
            row_count=table.row_count,
            column_count=table.column_count,
        )

    @staticmethod
    def _parse_key_value(pair: Any) -> RawFormField:
        confidence = float(pair.confidence) if pair.confidence is not None else 1.0
        value = pair.value
        return RawFormField(
            page_number=_first_page(pair.key.bounding_regions),
            label=pair.key.content,
            value=value.content if value is not None else None,
            label_confidence=confidence,
            value_confidence=confidence if value is not None else None,
            label_box=_region_box(pair.key.bounding_regions),
            value_box=_region_box(value.bounding_regions) if value is not None else None,
        )


def _first_page(regions: Optional[Sequence[Any]]) -> int:
    if not regions:
        return 1
    return regions[0].page_number


def _region_box(regions: Optional[Sequence[Any]]) -> Optional[BoundingBox]:
    if not regions:
        return None
    return _polygon_to_box(regions[0].polygon)


def _polygon_to_box(polygon: Optional[Sequence[float]]) -> Optional[BoundingBox]:
    """[x1, y1, x2, y2, ...] -> описывающий прямоугольник."""
    if not polygon or len(polygon) < 4:
        return None
    xs = polygon[0::2]
    ys = polygon[1::2]
    return BoundingBox(
        x=float(min(xs)),
        y=float(min(ys)),
        width=float(max(xs) - min(xs)),
        height=float(max(ys) - min(ys)),
    )
