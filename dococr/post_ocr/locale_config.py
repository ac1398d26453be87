"""
Загрузчик конфигураций нормализации локалей.

ЦКП: валидированный LocaleNormalizationConfig для кода локали.

Разрешение: base.yaml -> xx.yaml -> xx_YY.yaml (более точный слой
перекрывает общий). Отсутствующие слои пропускаются, неизвестная
локаль получает base.

Наследование $extends (из base.yaml):
- списки: элемент "$extends: key" или {"$extends": key} раскрывается в список base[key]
- словари: ключ "$extends" (ключ или список ключей) подмешивает словари base[key]
  по порядку, остальные ключи перекрывают
"""

import copy
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger
from pydantic import ValidationError

from config.settings import DEFAULT_LOCALE, LOCALES_DIR
from ..domain.contracts import LocaleNormalizationConfig, ContractValidationError
from ..domain.exceptions import NormalizationConfigError

EXTENDS_KEY = "$extends"
COMMON_PREFIX = "common_"


def split_locale(locale: Optional[str]) -> List[str]:
    """
    'pl-PL' / 'pl_pl' / 'PL' -> ['pl', 'pl_PL'] / ['pl'].

    Цепочка от общего к точному.
    """
    if not locale:
        return []
    parts = locale.strip().replace("-", "_").split("_")
    language = parts[0].lower()
    if not language:
        return []
    chain = [language]
    if len(parts) > 1 and parts[1]:
        chain.append(f"{language}_{parts[1].upper()}")
    return chain


class LocaleConfigLoader:
    """Загружает и кеширует конфиги локалей."""

    def __init__(self, locales_dir: Optional[Path] = None, default_locale: str = DEFAULT_LOCALE) -> None:
        if locales_dir is None:
            locales_dir = Path(LOCALES_DIR) if LOCALES_DIR else Path(__file__).parent / "locales"
        self.locales_dir = Path(locales_dir)
        self.default_locale = default_locale
        self._cache: Dict[str, LocaleNormalizationConfig] = {}
        self._lock = threading.Lock()

    def load(self, locale: Optional[str] = None) -> LocaleNormalizationConfig:
        """
        Raises:
            NormalizationConfigError: YAML невалиден или таблица ломает идемпотентность
        """
        chain = split_locale(locale or self.default_locale)
        cache_key = chain[-1] if chain else "base"

        with self._lock:
            if cache_key in self._cache:
                return self._cache[cache_key]

        config = self._build(chain)

        with self._lock:
            self._cache[cache_key] = config

        logger.debug(
            f"[LocaleConfig] {cache_key} -> {config.locale}: "
            f"{len(config.char_map)} char_map, {len(config.word_repairs)} word_repairs, "
            f"{len(config.date_formats)} date_formats"
        )
        return config

    def available(self) -> List[str]:
        """Коды локалей, для которых есть YAML (без base)."""
        if not self.locales_dir.is_dir():
            return []
        return sorted(p.stem for p in self.locales_dir.glob("*.yaml") if p.stem != "base")

    def _build(self, chain: List[str]) -> LocaleNormalizationConfig:
        base_config = self._read_yaml(self.locales_dir / "base.yaml")
        if not base_config:
            logger.warning(f"[LocaleConfig] base.yaml не найден или пуст: {self.locales_dir}")

        merged: Dict[str, Any] = {
            key: self._resolve_extends(value, base_config)
            for key, value in base_config.items()
            if not key.startswith(COMMON_PREFIX)
        }
        merged.setdefault("locale", "base")

        for code in chain:
            layer = self._read_yaml(self.locales_dir / f"{code}.yaml")
            if not layer:
                continue
            for key, value in layer.items():
                merged[key] = self._resolve_extends(value, base_config)
            merged["locale"] = layer.get("locale", code)

        try:
            return LocaleNormalizationConfig(**merged)
        except ValidationError as e:
            contract_error = ContractValidationError.from_pydantic(
                "Normalization", "LocaleNormalizationConfig", e
            )
            raise NormalizationConfigError(
                message=f"Конфиг локали {merged.get('locale')} невалиден: {contract_error}",
                component="LocaleConfigLoader",
                original_error=e
            )

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise NormalizationConfigError(
                message=f"Ошибка разбора YAML: {path}",
                component="LocaleConfigLoader",
                original_error=e
            )
        if not isinstance(data, dict):
            raise NormalizationConfigError(
                message=f"Ожидался словарь верхнего уровня: {path}",
                component="LocaleConfigLoader"
            )
        return data

    @staticmethod
    def _resolve_extends(value: Any, base_config: Dict[str, Any]) -> Any:
        """Раскрывает $extends в списках и словарях (один уровень)."""
        if isinstance(value, list):
            result = []
            for item in value:
                extended_key = None
                if isinstance(item, str) and item.startswith(f"{EXTENDS_KEY}:"):
                    extended_key = item.split(":", 1)[1].strip()
                elif isinstance(item, dict) and EXTENDS_KEY in item:
                    extended_key = item[EXTENDS_KEY]

                if extended_key is None:
                    result.append(item)
                    continue

                extended = base_config.get(extended_key)
                if not isinstance(extended, list):
                    logger.warning(f"[LocaleConfig] Список '{extended_key}' для $extends не найден в base.yaml")
                    continue
                for ext_item in copy.deepcopy(extended):
                    if ext_item not in result:
                        result.append(ext_item)
            return result

        if isinstance(value, dict) and EXTENDS_KEY in value:
            extended_keys = value[EXTENDS_KEY]
            if isinstance(extended_keys, str):
                extended_keys = [extended_keys]
            result_map: Dict[str, Any] = {}
            for extended_key in extended_keys:
                extended = base_config.get(extended_key)
                if not isinstance(extended, dict):
                    logger.warning(f"[LocaleConfig] Словарь '{extended_key}' для $extends не найден в base.yaml")
                    continue
                result_map.update(copy.deepcopy(extended))
            result_map.update({k: v for k, v in value.items() if k != EXTENDS_KEY})
            return result_map

        return value
