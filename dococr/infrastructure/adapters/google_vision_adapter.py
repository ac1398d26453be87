"""
Адаптер Google Cloud Vision (DOCUMENT_TEXT_DETECTION).

Возвращает RawEngineResult: страницы с блоками и уверенностью.
Таблиц и форм движок не отдаёт: списки всегда пустые.
"""

from pathlib import Path
from typing import Any, List, Optional

from google.cloud import vision
from loguru import logger

from config.settings import ENGINE_TIMEOUT_SECONDS, GOOGLE_APPLICATION_CREDENTIALS
from contracts.extraction_dto import BoundingBox, OcrEngine, RawEngineResult, RawPage, TextBlock
from contracts.queue_dto import ExtractionOptions
from ...domain.exceptions import EngineCallError, ExtractionConfigurationError
from .base import BaseEngineAdapter


class GoogleVisionAdapter(BaseEngineAdapter):
    """
    Обёртка над vision.ImageAnnotatorClient.

    Клиент передаётся в конструктор (фабрика или тест). Если не передан,
    создаётся из файла сервисного аккаунта.
    """

    ENGINE_ID = OcrEngine.GOOGLE_VISION.value

    def __init__(
        self,
        client: Optional[Any] = None,
        credentials_path: Optional[str] = None,
        timeout_seconds: float = ENGINE_TIMEOUT_SECONDS
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, supports_tables=False, supports_forms=False)
        self.client = client if client is not None else self._create_client(credentials_path)
        logger.info("[GoogleVision] Адаптер инициализирован")

    @property
    def engine_version(self) -> str:
        return f"vision-{getattr(vision, '__version__', 'v1')}"

    @staticmethod
    def _create_client(credentials_path: Optional[str]) -> Any:
        creds_path = credentials_path or GOOGLE_APPLICATION_CREDENTIALS
        try:
            if creds_path and Path(creds_path).exists():
                return vision.ImageAnnotatorClient.from_service_account_file(str(creds_path))
            logger.warning(
                f"[GoogleVision] Credentials файл не найден ({creds_path}), "
                f"используем Application Default Credentials"
            )
            return vision.ImageAnnotatorClient()
        except Exception as e:
            raise ExtractionConfigurationError(
                message="Не удалось создать клиент Google Vision",
                component="GoogleVisionAdapter",
                original_error=e
            )

    def _call_provider(
        self,
        image_bytes: bytes,
        language_hints: List[str],
        options: ExtractionOptions
    ) -> RawEngineResult:
        image = vision.Image(content=image_bytes)
        kwargs = {}
        if language_hints:
            # Vision понимает ISO-639-1 и BCP-47 ("pl", "pl-PL")
            kwargs["image_context"] = vision.ImageContext(
                language_hints=[hint.replace("_", "-") for hint in language_hints]
            )

        response = self.client.document_text_detection(image=image, **kwargs)

        if response.error.message:
            raise EngineCallError(self.ENGINE_ID, f"Google Vision API error: {response.error.message}")

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> RawEngineResult:
        """
        Парсит full_text_annotation в RawEngineResult.

        Блок = абзацы через перевод строки, слова через пробел.
        """
        annotation = response.full_text_annotation
        pages: List[RawPage] = []

        for page_number, page in enumerate(annotation.pages, start=1):
            blocks: List[TextBlock] = []
            for block in page.blocks:
                paragraphs = []
                for paragraph in block.paragraphs:
                    words = ["".join(symbol.text for symbol in word.symbols) for word in paragraph.words]
                    paragraphs.append(" ".join(words))
                text = "\n".join(p for p in paragraphs if p)
                if not text:
                    continue
                blocks.append(TextBlock(
                    text=text,
                    confidence=max(0.0, min(1.0, float(block.confidence))),  # Гарантируем [0, 1]
                    bounding_box=self._get_bounding_box(block.bounding_box),
                    block_type="BLOCK",
                ))

            page_confidence = float(page.confidence) if page.confidence else None
            pages.append(RawPage(
                page_number=page_number,
                width=float(page.width),
                height=float(page.height),
                text="\n".join(b.text for b in blocks),
                blocks=blocks,
                confidence=page_confidence,
            ))

        logger.debug(f"[GoogleVision] Страниц: {len(pages)}, блоков: {sum(len(p.blocks) for p in pages)}")

        return RawEngineResult(
            engine=self.ENGINE_ID,
            engine_version=self.engine_version,
            pages=pages,
            full_text=annotation.text or "",
        )

    @staticmethod
    def _get_bounding_box(bounding_poly: Any) -> Optional[BoundingBox]:
        """Преобразует bounding_poly в простой bbox (пиксели)."""
        vertices = bounding_poly.vertices
        xs = [v.x for v in vertices if v.x is not None]
        ys = [v.y for v in vertices if v.y is not None]
        if not xs or not ys:
            return None

        x_min = max(0, min(xs))
        y_min = max(0, min(ys))
        return BoundingBox(
            x=float(x_min),
            y=float(y_min),
            width=float(max(1, max(xs) - x_min)),
            height=float(max(1, max(ys) - y_min)),
        )
