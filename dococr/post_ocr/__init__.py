"""
Post-OCR слой: нормализация текста, доменные паттерны, таблицы и формы.
"""

from .locale_config import LocaleConfigLoader
from .locale_detector import LocaleDetector
from .text_normalizer import TextNormalizer
from .pattern_extractor import PatternExtractor
from .structure import StructureReconciler

__all__ = [
    "LocaleConfigLoader",
    "LocaleDetector",
    "TextNormalizer",
    "PatternExtractor",
    "StructureReconciler",
]
