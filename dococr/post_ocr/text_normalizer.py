"""
Нормализатор текста: локальные исправления OCR + канонизация пробелов.

Шаги одного прохода:
1. Unicode NFC
2. char_map локали (одиночные символы, str.translate)
3. word_repairs локали (только целые слова)
4. Канонизация пробелов

ЦКП: normalize(normalize(x)) == normalize(x).
Таблицы, которые могли бы это нарушить, отклоняет загрузчик.
Проход повторяется до неподвижной точки: композиция NFC на стыке
замены может дать ещё один ключ.

Уверенность распознавания нормализатор не трогает.
"""

import re
import threading
import unicodedata
from dataclasses import dataclass
from typing import Dict, Optional, Pattern

from loguru import logger

from ..domain.contracts import LocaleNormalizationConfig
from .locale_config import LocaleConfigLoader

MAX_PASSES = 4

_HORIZONTAL_WHITESPACE = re.compile(r"[\t\f\v\u00a0\u1680\u2000-\u200a\u202f\u205f\u3000]")
_SPACE_RUNS = re.compile(r" {2,}")
_TRAILING_SPACES = re.compile(r" +$", re.MULTILINE)
_BLANK_LINE_RUNS = re.compile(r"\n{3,}")


def canonicalize_whitespace(text: str) -> str:
    """
    NBSP и табы -> пробел, серии пробелов -> один, без хвостовых пробелов,
    не больше одной пустой строки подряд, без пустых строк по краям.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HORIZONTAL_WHITESPACE.sub(" ", text)
    text = _SPACE_RUNS.sub(" ", text)
    text = _TRAILING_SPACES.sub("", text)
    text = _BLANK_LINE_RUNS.sub("\n\n", text)
    return text.strip("\n")


@dataclass(frozen=True)
class _CompiledTables:
    translation: Dict[int, str]
    word_pattern: Optional[Pattern[str]]
    word_repairs: Dict[str, str]


class TextNormalizer:
    """Локализованная нормализация текста."""

    def __init__(self, loader: Optional[LocaleConfigLoader] = None) -> None:
        self.loader = loader or LocaleConfigLoader()
        self._compiled: Dict[str, _CompiledTables] = {}
        self._lock = threading.Lock()

    def normalize(self, raw_text: str, locale: Optional[str] = None) -> str:
        if not raw_text:
            return ""

        config = self.loader.load(locale)
        tables = self._tables(config)

        text = raw_text
        for _ in range(MAX_PASSES):
            normalized = self._single_pass(text, tables)
            if normalized == text:
                return normalized
            text = normalized

        logger.warning(f"[TextNormalizer] Нет неподвижной точки за {MAX_PASSES} прохода (locale={config.locale})")
        return text

    @staticmethod
    def _single_pass(text: str, tables: _CompiledTables) -> str:
        text = unicodedata.normalize("NFC", text)
        text = text.translate(tables.translation)
        if tables.word_pattern is not None:
            text = tables.word_pattern.sub(lambda m: tables.word_repairs[m.group(0)], text)
        return canonicalize_whitespace(text)

    def _tables(self, config: LocaleNormalizationConfig) -> _CompiledTables:
        with self._lock:
            tables = self._compiled.get(config.locale)
            if tables is None:
                word_pattern = None
                if config.word_repairs:
                    keys = sorted(config.word_repairs, key=len, reverse=True)
                    word_pattern = re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keys) + r")\b")
                tables = _CompiledTables(
                    translation=str.maketrans(dict(config.char_map)),
                    word_pattern=word_pattern,
                    word_repairs=dict(config.word_repairs),
                )
                self._compiled[config.locale] = tables
        return tables
