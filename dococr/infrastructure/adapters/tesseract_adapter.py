"""
Адаптер локального Tesseract (последний в каскаде по умолчанию).

Каждый кадр изображения: отдельная страница (многостраничный TIFF).
Уверенность слова: conf / 100, слова с conf = -1 пропускаются.
"""

import io
from typing import Dict, List, Optional, Tuple

import pytesseract
from loguru import logger
from PIL import Image, ImageSequence

from config.settings import ENGINE_TIMEOUT_SECONDS, TESSERACT_CMD
from contracts.extraction_dto import BoundingBox, OcrEngine, RawEngineResult, RawPage, TextBlock
from contracts.queue_dto import ExtractionOptions
from .base import BaseEngineAdapter

# ISO-639-1 -> код traineddata Tesseract
TESSERACT_LANGUAGES = {
    "pl": "pol",
    "en": "eng",
    "de": "deu",
    "cs": "ces",
    "sk": "slk",
    "fr": "fra",
    "es": "spa",
    "it": "ita",
    "pt": "por",
    "nl": "nld",
    "uk": "ukr",
    "ru": "rus",
}
DEFAULT_TESSERACT_LANGUAGE = "eng"


class TesseractAdapter(BaseEngineAdapter):
    """Обёртка над pytesseract.image_to_data."""

    ENGINE_ID = OcrEngine.TESSERACT.value

    def __init__(
        self,
        executable: Optional[str] = TESSERACT_CMD,
        timeout_seconds: float = ENGINE_TIMEOUT_SECONDS
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, supports_tables=False, supports_forms=False)
        if executable:
            pytesseract.pytesseract.tesseract_cmd = executable
        self._version: Optional[str] = None
        logger.info(f"[Tesseract] Адаптер инициализирован (cmd={executable})")

    @property
    def engine_version(self) -> str:
        if self._version is None:
            try:
                self._version = f"tesseract-{pytesseract.get_tesseract_version()}"
            except (pytesseract.TesseractNotFoundError, OSError) as e:
                logger.warning(f"[Tesseract] Не удалось определить версию: {e}")
                self._version = "tesseract-unknown"
        return self._version

    @staticmethod
    def to_tesseract_languages(language_hints: List[str]) -> str:
        """['pl', 'en_gb'] -> 'pol+eng'. Неизвестные коды пропускаются."""
        codes: List[str] = []
        for hint in language_hints:
            code = TESSERACT_LANGUAGES.get(hint.split("_")[0].lower())
            if code and code not in codes:
                codes.append(code)
        return "+".join(codes) or DEFAULT_TESSERACT_LANGUAGE

    def _call_provider(
        self,
        image_bytes: bytes,
        language_hints: List[str],
        options: ExtractionOptions
    ) -> RawEngineResult:
        lang = self.to_tesseract_languages(language_hints)
        pages: List[RawPage] = []

        with Image.open(io.BytesIO(image_bytes)) as document:
            for page_number, frame in enumerate(ImageSequence.Iterator(document), start=1):
                rgb = frame.convert("RGB")
                data = pytesseract.image_to_data(rgb, lang=lang, output_type=pytesseract.Output.DICT)
                pages.append(self._parse_page(page_number, rgb.size, data))

        logger.debug(f"[Tesseract] lang={lang}, страниц: {len(pages)}")

        return RawEngineResult(
            engine=self.ENGINE_ID,
            engine_version=self.engine_version,
            pages=pages,
        )

    @staticmethod
    def _parse_page(page_number: int, size: Tuple[int, int], data: Dict[str, List]) -> RawPage:
        blocks: List[TextBlock] = []
        lines: Dict[Tuple[int, int, int], List[str]] = {}

        for i, raw_text in enumerate(data["text"]):
            text = str(raw_text).strip()
            confidence = float(data["conf"][i])
            if not text or confidence < 0:
                continue

            blocks.append(TextBlock(
                text=text,
                confidence=min(1.0, confidence / 100.0),
                bounding_box=BoundingBox(
                    x=float(data["left"][i]),
                    y=float(data["top"][i]),
                    width=float(data["width"][i]),
                    height=float(data["height"][i]),
                ),
                block_type="WORD",
            ))
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(text)

        width, height = size
        return RawPage(
            page_number=page_number,
            width=float(width),
            height=float(height),
            text="\n".join(" ".join(words) for words in lines.values()),
            blocks=blocks,
        )
