"""
Извлечение доменных паттернов из нормализованного текста.

- Даты: форматы локали (DD.MM.YYYY, ...) + ISO, результат в ISO
- Суммы: символ/код валюты локали + разделители -> Decimal строка
- Идентификаторы: IBAN (mod-97), NIP (взвешенная сумма), REGON (9 цифр),
  e-mail, телефон в международном формате

Все найденные значения проходят проверку (валидная дата, контрольная сумма),
поэтому случайные числа в тексте не попадают в результат.
"""

import re
import threading
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Pattern, Tuple

from loguru import logger

from contracts.extraction_dto import DetectedPatterns, PatternMatch
from ..domain.contracts import LocaleNormalizationConfig
from .locale_config import LocaleConfigLoader

NIP_WEIGHTS = (6, 5, 7, 2, 3, 4, 5, 6, 7)
REGON_WEIGHTS = (8, 9, 2, 3, 4, 5, 6, 7)

IBAN_PATTERN = re.compile(r"(?<![A-Za-z0-9])([A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){2,7}(?: ?[A-Z0-9]{1,4})?)(?![A-Za-z0-9])")
NRB_PATTERN = re.compile(r"(?<![\w-])(\d{2}(?: ?\d{4}){6})(?![\w-])")
NIP_PATTERN = re.compile(
    r"(?<![\w-])(?:PL ?)?(\d{3}-\d{3}-\d{2}-\d{2}|\d{3}-\d{2}-\d{2}-\d{3}|\d{10})(?![\w-])"
)
REGON_PATTERN = re.compile(r"(?<![\w-])(\d{9})(?![\w-])")
EMAIL_PATTERN = re.compile(r"(?<![\w.+-])([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})(?![\w-])")
PHONE_PATTERN = re.compile(r"(?<![\w+])(\+\d{1,3}(?:[ -]?\d{2,4}){2,4})(?![\w-])")


# ============================================================================
# КОНТРОЛЬНЫЕ СУММЫ
# ============================================================================

def iban_is_valid(iban: str) -> bool:
    """ISO 13616: перенос первых 4 символов в конец, буквы -> числа, mod 97 == 1."""
    compact = iban.replace(" ", "").upper()
    if not 15 <= len(compact) <= 34 or not re.fullmatch(r"[A-Z]{2}\d{2}[A-Z0-9]+", compact):
        return False
    rearranged = compact[4:] + compact[:4]
    digits = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(digits) % 97 == 1


def nip_is_valid(nip: str) -> bool:
    digits = re.sub(r"\D", "", nip)
    if len(digits) != 10:
        return False
    checksum = sum(int(d) * w for d, w in zip(digits, NIP_WEIGHTS)) % 11
    return checksum != 10 and checksum == int(digits[9])


def regon_is_valid(regon: str) -> bool:
    digits = re.sub(r"\D", "", regon)
    if len(digits) != 9:
        return False
    checksum = sum(int(d) * w for d, w in zip(digits, REGON_WEIGHTS)) % 11
    if checksum == 10:
        checksum = 0
    return checksum == int(digits[8])


# ============================================================================
# ПОСТРОЕНИЕ ПАТТЕРНОВ ИЗ КОНФИГА ЛОКАЛИ
# ============================================================================

_DATE_TOKENS = (
    ("YYYY", r"(?P<year>\d{4})"),
    ("YY", r"(?P<year2>\d{2})"),
    ("MM", r"(?P<month>\d{1,2})"),
    ("DD", r"(?P<day>\d{1,2})"),
)


def build_date_pattern(fmt: str) -> Pattern[str]:
    """
    "DD.MM.YYYY" -> (?<!\\d)(?P<day>\\d{1,2})\\.(?P<month>\\d{1,2})\\.(?P<year>\\d{4})(?!\\d)
    """
    pattern = ""
    i = 0
    while i < len(fmt):
        for token, regex in _DATE_TOKENS:
            if fmt.startswith(token, i):
                pattern += regex
                i += len(token)
                break
        else:
            pattern += re.escape(fmt[i])
            i += 1
    return re.compile(r"(?<!\d)" + pattern + r"(?!\d)")


def build_amount_pattern(config: LocaleNormalizationConfig) -> Optional[Pattern[str]]:
    if not config.currency_symbols:
        return None

    decimal = re.escape(config.decimal_separator)
    thousands = "".join(
        re.escape(sep) for sep in config.thousands_separators if sep != config.decimal_separator
    )
    if thousands:
        number = rf"\d{{1,3}}(?:[{thousands}]\d{{3}})+(?:{decimal}\d{{1,2}})?|\d+(?:{decimal}\d{{1,2}})?"
    else:
        number = rf"\d+(?:{decimal}\d{{1,2}})?"

    symbols = sorted(config.currency_symbols, key=len, reverse=True)
    currency = "|".join(re.escape(s) for s in symbols)

    return re.compile(
        rf"(?<![\w.,])(?:(?P<cur_before>{currency}) ?(?P<num_before>{number})"
        rf"|(?P<num_after>{number}) ?(?P<cur_after>{currency}))(?![\w])"
    )


class _LocalePatterns:
    def __init__(self, config: LocaleNormalizationConfig) -> None:
        self.config = config
        self.dates = [build_date_pattern(fmt) for fmt in config.date_formats]
        self.amount = build_amount_pattern(config)
        self.polish_accounts = config.locale.split("_")[0] == "pl"


class PatternExtractor:
    """Извлекает даты, суммы и идентификаторы с учётом локали."""

    def __init__(self, loader: Optional[LocaleConfigLoader] = None) -> None:
        self.loader = loader or LocaleConfigLoader()
        self._patterns: Dict[str, _LocalePatterns] = {}
        self._lock = threading.Lock()

    def extract(self, text: str, locale: Optional[str] = None) -> DetectedPatterns:
        if not text:
            return DetectedPatterns()

        patterns = self._for_locale(self.loader.load(locale))
        result = DetectedPatterns(
            dates=tuple(self._extract_dates(text, patterns)),
            amounts=tuple(self._extract_amounts(text, patterns)),
            identifiers=tuple(self._extract_identifiers(text, patterns)),
        )
        logger.debug(
            f"[PatternExtractor] locale={patterns.config.locale}: {len(result.dates)} дат, "
            f"{len(result.amounts)} сумм, {len(result.identifiers)} идентификаторов"
        )
        return result

    def _for_locale(self, config: LocaleNormalizationConfig) -> _LocalePatterns:
        with self._lock:
            patterns = self._patterns.get(config.locale)
            if patterns is None:
                patterns = _LocalePatterns(config)
                self._patterns[config.locale] = patterns
        return patterns

    # ------------------------------------------------------------------ даты

    def _extract_dates(self, text: str, patterns: _LocalePatterns) -> List[PatternMatch]:
        candidates: List[Tuple[int, int, PatternMatch]] = []
        for regex in patterns.dates:
            for m in regex.finditer(text):
                parsed = self._parse_date(m)
                if parsed is None:
                    logger.trace(f"[PatternExtractor] Невалидная дата: {m.group(0)}")
                    continue
                candidates.append((m.start(), m.end(), PatternMatch(
                    kind="date", value=parsed.isoformat(), raw=m.group(0), start=m.start()
                )))
        return _without_overlaps(candidates)

    @staticmethod
    def _parse_date(match: "re.Match[str]") -> Optional[date]:
        groups = match.groupdict()
        try:
            if groups.get("year") is not None:
                year = int(groups["year"])
            else:
                year = 2000 + int(groups["year2"])
            return date(year, int(groups["month"]), int(groups["day"]))
        except (TypeError, ValueError):
            return None

    # ------------------------------------------------------------------ суммы

    def _extract_amounts(self, text: str, patterns: _LocalePatterns) -> List[PatternMatch]:
        if patterns.amount is None:
            return []

        config = patterns.config
        amounts = []
        for m in patterns.amount.finditer(text):
            number = m.group("num_before") or m.group("num_after")
            symbol = m.group("cur_before") or m.group("cur_after")
            for sep in config.thousands_separators:
                if sep != config.decimal_separator:
                    number = number.replace(sep, "")
            number = number.replace(config.decimal_separator, ".")
            try:
                value = Decimal(number).quantize(Decimal("0.01"))
            except InvalidOperation:
                continue
            amounts.append(PatternMatch(
                kind="amount",
                value=str(value),
                raw=m.group(0),
                start=m.start(),
                unit=config.currency_symbols.get(symbol),
            ))
        return amounts

    # ------------------------------------------------------------------ идентификаторы

    def _extract_identifiers(self, text: str, patterns: _LocalePatterns) -> List[PatternMatch]:
        candidates: List[Tuple[int, int, PatternMatch]] = []

        for m in IBAN_PATTERN.finditer(text):
            if iban_is_valid(m.group(1)):
                candidates.append(_match("iban", m, m.group(1).replace(" ", "")))

        if patterns.polish_accounts:
            for m in NRB_PATTERN.finditer(text):
                iban = "PL" + m.group(1).replace(" ", "")
                if iban_is_valid(iban):
                    candidates.append(_match("iban", m, iban))

        for m in NIP_PATTERN.finditer(text):
            if nip_is_valid(m.group(1)):
                candidates.append(_match("nip", m, re.sub(r"\D", "", m.group(1))))

        for m in REGON_PATTERN.finditer(text):
            if regon_is_valid(m.group(1)):
                candidates.append(_match("regon", m, m.group(1)))

        for m in EMAIL_PATTERN.finditer(text):
            candidates.append(_match("email", m, m.group(1).lower()))

        for m in PHONE_PATTERN.finditer(text):
            candidates.append(_match("phone", m, "+" + re.sub(r"\D", "", m.group(1))))

        return _without_overlaps(candidates)


def _match(kind: str, m: "re.Match[str]", value: str) -> Tuple[int, int, PatternMatch]:
    return m.start(), m.end(), PatternMatch(kind=kind, value=value, raw=m.group(0), start=m.start())


def _without_overlaps(candidates: List[Tuple[int, int, PatternMatch]]) -> List[PatternMatch]:
    """По позиции; при пересечении побеждает найденный раньше (порядок проверок)."""
    accepted: List[Tuple[int, int, PatternMatch]] = []
    for start, end, match in candidates:
        if any(start < a_end and a_start < end for a_start, a_end, _ in accepted):
            continue
        accepted.append((start, end, match))
    accepted.sort(key=lambda item: item[0])
    return [match for _, _, match in accepted]
