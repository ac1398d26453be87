"""
Детектор локали по распознанному тексту.

Нужен, когда у документа нет языковой подсказки (или подсказка "auto").

Стратегии:
1. Валюта (самый надёжный признак)
2. Ключевые слова счёта (faktura, rechnung, celkem, invoice)
3. Дефолтная локаль из настроек
"""

import re
from typing import Dict, List, Optional, Tuple

from loguru import logger

from config.settings import DEFAULT_LOCALE
from .locale_config import LocaleConfigLoader, split_locale

# Символ/код валюты -> локали, которые им платят (первая = по умолчанию)
CURRENCY_LOCALES: List[Tuple[str, List[str]]] = [
    ("zł", ["pl_PL"]),
    ("pln", ["pl_PL"]),
    ("kč", ["cs_CZ"]),
    ("czk", ["cs_CZ"]),
    ("£", ["en_GB"]),
    ("gbp", ["en_GB"]),
    ("€", ["de_DE", "en_GB"]),
    ("eur", ["de_DE", "en_GB"]),
    ("$", ["en_US"]),
    ("usd", ["en_US"]),
]

# Ключевые слова счёта; общие для нескольких языков (faktura) засчитываются всем
LOCALE_KEYWORDS: Dict[str, List[str]] = {
    "pl_PL": [
        "faktura", "razem", "suma", "nip", "regon", "sprzedawca", "nabywca",
        "do zapłaty", "płatności", "wartość", "brutto", "netto",
    ],
    "cs_CZ": [
        "faktura", "celkem", "částka", "k úhradě", "dodavatel", "odběratel",
        "dph", "ičo", "splatnosti", "vystavení",
    ],
    "de_DE": [
        "rechnung", "gesamtbetrag", "summe", "zu zahlen", "betrag", "mwst",
        "ust-idnr", "steuernummer", "endbetrag",
    ],
    "en_GB": [
        "invoice", "total", "amount due", "subtotal", "bill to", "due date",
    ],
}


class LocaleDetector:
    """
    Определяет локаль документа по тексту.

    Результат: код локали (pl_PL, cs_CZ, de_DE, en_GB, en_US), который
    понимает LocaleConfigLoader.
    """

    def __init__(self, config_loader: Optional[LocaleConfigLoader] = None, default_locale: str = DEFAULT_LOCALE):
        self.config_loader = config_loader or LocaleConfigLoader()
        self.default_locale = default_locale

    def detect(self, text: str) -> str:
        lowered = (text or "").lower()
        logger.debug("[LocaleDetector] Анализ текста для определения локали")

        locale = self._detect_by_currency(lowered)
        if locale:
            logger.info(f"[LocaleDetector] Локаль определена по валюте: {locale}")
            return locale

        locale = self._detect_by_keywords(lowered, candidates=list(LOCALE_KEYWORDS))
        if locale:
            logger.info(f"[LocaleDetector] Локаль определена по ключевым словам: {locale}")
            return locale

        logger.warning(
            f"[LocaleDetector] Не удалось определить локаль автоматически. "
            f"Используем дефолтную: {self.default_locale}"
        )
        return self._fallback_locale()

    def _detect_by_currency(self, text: str) -> Optional[str]:
        """
        Первый найденный символ валюты.

        Валюта нескольких стран (€) уточняется ключевыми словами,
        без совпадений берётся первая локаль из списка.
        """
        for symbol, locales in CURRENCY_LOCALES:
            if not _contains_token(text, symbol):
                continue
            if len(locales) == 1:
                return locales[0]
            return self._detect_by_keywords(text, candidates=locales) or locales[0]
        return None

    @staticmethod
    def _detect_by_keywords(text: str, candidates: List[str]) -> Optional[str]:
        """Локаль с наибольшим числом ключевых слов; ничья -> None."""
        scores = {
            locale: sum(1 for keyword in LOCALE_KEYWORDS.get(locale, []) if _contains_token(text, keyword))
            for locale in candidates
        }
        best = max(scores.values(), default=0)
        if best == 0:
            return None
        leaders = [locale for locale, score in scores.items() if score == best]
        if len(leaders) > 1:
            logger.debug(f"[LocaleDetector] Ничья по ключевым словам: {leaders}")
            return None
        return leaders[0]

    def _fallback_locale(self) -> str:
        """Дефолтная локаль, если для её языка есть таблица, иначе первая доступная."""
        available = self.config_loader.available()
        chain = split_locale(self.default_locale)
        if chain and chain[0] in available:
            return self.default_locale
        if available:
            logger.error(
                f"[LocaleDetector] Нет конфигурации для {self.default_locale}. "
                f"Используем первую доступную: {available[0]}"
            )
            return available[0]
        logger.error("[LocaleDetector] Нет ни одной конфигурации локали, только base")
        return self.default_locale


def _contains_token(text: str, token: str) -> bool:
    """Буквенные токены ищутся целым словом (pln, nip), символы (€, $) как есть."""
    if not any(ch.isalnum() for ch in token):
        return token in text
    return re.search(rf"(?<!\w){re.escape(token)}(?!\w)", text) is not None
