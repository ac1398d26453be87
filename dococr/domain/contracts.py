"""
Валидационные контракты (Pydantic v2) на границах проекта.

Каждый контракт гарантирует:
  1. Правильный тип данных
  2. Значения в допустимых диапазонах (без NaN/Inf)
  3. Обязательные поля

Без контрактов в систему могут попасть:
  - contrast_ratio = NaN из пустого изображения
  - language_hints = ["PL", "pl", " pl "] (дубликаты)
  - таблица исправлений, которая меняет текст при повторном прогоне

Нарушение контракта превращается в ContractValidationError.
"""

import math
import re
import unicodedata
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from config.settings import AUTO_LOCALE
from contracts.extraction_dto import QualityMeasurement
from contracts.queue_dto import (
    EnhancementOptions, ExtractionOptions, QueuePriority,
)


# ============================================================================
# ENHANCEMENT: метрики качества
# ============================================================================

class ImageQualityMetrics(BaseModel):
    """
    Метрики качества изображения, нормализованные в [0, 1].

    noise_level: среднее std по каналам / 100
    contrast_ratio: (max - min) / 255
    brightness: среднее / 255
    sharpness: дисперсия Лапласиана / 1000
    """

    model_config = ConfigDict(frozen=True)

    noise_level: float = Field(..., ge=0, le=1)
    contrast_ratio: float = Field(..., ge=0, le=1)
    brightness: float = Field(..., ge=0, le=1)
    sharpness: float = Field(..., ge=0, le=1)

    @field_validator('noise_level', 'contrast_ratio', 'brightness', 'sharpness', mode='before')
    @classmethod
    def no_special_floats(cls, v: Any) -> Any:
        """Не допускаются NaN или Inf значения."""
        if isinstance(v, float):
            if math.isnan(v):
                raise ValueError("Значение не может быть NaN")
            if math.isinf(v):
                raise ValueError("Значение не может быть Inf")
        return v

    def to_measurement(self) -> QualityMeasurement:
        return QualityMeasurement(
            noise_level=self.noise_level,
            contrast_ratio=self.contrast_ratio,
            brightness=self.brightness,
            sharpness=self.sharpness,
        )


# ============================================================================
# ДВИЖКИ: конфигурация
# ============================================================================

class EngineSettings(BaseModel):
    """Конфигурация одного движка (из config.settings.ENGINES или YAML)."""

    model_config = ConfigDict(frozen=True)

    engine_id: str = Field(..., min_length=1)
    enabled: bool = True
    timeout_seconds: float = Field(60.0, gt=0, le=600)
    supports_tables: bool = False
    supports_forms: bool = False
    credentials_path: Optional[str] = None
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None
    executable: Optional[str] = None

    @field_validator('engine_id')
    @classmethod
    def engine_id_upper(cls, v: str) -> str:
        return v.strip().upper()


# ============================================================================
# ОЧЕРЕДЬ: запрос на постановку
# ============================================================================

_LANGUAGE_HINT = re.compile(r"^[a-z]{2,3}(_[a-z]{2})?$")


class EnqueueRequest(BaseModel):
    """Входной контракт enqueue / enqueue_batch."""

    model_config = ConfigDict(frozen=True)

    document_ref: str = Field(..., min_length=1)
    priority: QueuePriority = QueuePriority.NORMAL
    preferred_engine: Optional[str] = None
    language_hints: List[str] = Field(default_factory=list)
    enable_table_detection: bool = False
    enable_form_detection: bool = False
    enable_enhancement: bool = True
    deskew: bool = False
    remove_noise: bool = False
    binarize: bool = False

    @field_validator('document_ref')
    @classmethod
    def document_ref_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("document_ref не может быть пустым")
        return v

    @field_validator('preferred_engine')
    @classmethod
    def engine_upper(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip().upper()

    @field_validator('language_hints')
    @classmethod
    def hints_normalized(cls, v: List[str]) -> List[str]:
        """Нижний регистр, '-' -> '_', без дубликатов (порядок сохраняется), без "auto"."""
        result: List[str] = []
        for hint in v:
            code = hint.strip().lower().replace("-", "_")
            if not code or code == AUTO_LOCALE:
                continue
            if not _LANGUAGE_HINT.match(code):
                raise ValueError(f"Некорректный код языка: '{hint}'")
            if code not in result:
                result.append(code)
        return result

    def to_options(self) -> ExtractionOptions:
        return ExtractionOptions(
            preferred_engine=self.preferred_engine,
            language_hints=tuple(self.language_hints),
            enable_table_detection=self.enable_table_detection,
            enable_form_detection=self.enable_form_detection,
            enable_enhancement=self.enable_enhancement,
            enhancement=EnhancementOptions(
                deskew=self.deskew,
                remove_noise=self.remove_noise,
                binarize=self.binarize,
            ),
        )


# ============================================================================
# НОРМАЛИЗАЦИЯ: таблицы исправлений локали
# ============================================================================

_WORD_KEY = re.compile(r"^\w+$")


class LocaleNormalizationConfig(BaseModel):
    """
    Таблицы исправлений и форматы одной локали.

    Гарантия: normalize(normalize(x)) == normalize(x).
    Поэтому замена не может содержать ни один исходный ключ,
    а char_map работает только с одиночными символами.
    """

    model_config = ConfigDict(frozen=True)

    locale: str = Field(..., min_length=1)
    char_map: Dict[str, str] = Field(default_factory=dict)
    word_repairs: Dict[str, str] = Field(default_factory=dict)
    date_formats: List[str] = Field(default_factory=list)
    currency_symbols: Dict[str, str] = Field(default_factory=dict)   # символ -> ISO код
    decimal_separator: str = Field(",", min_length=1, max_length=1)
    thousands_separators: List[str] = Field(default_factory=lambda: [" ", "."])
    phone_prefix: Optional[str] = None

    @field_validator('char_map')
    @classmethod
    def char_map_keys_single(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key in v:
            if len(key) != 1:
                raise ValueError(f"Ключ char_map должен быть одним символом: '{key}'")
            if key.isspace():
                raise ValueError("Пробельные символы обрабатываются канонизацией, не char_map")
        return v

    @field_validator('word_repairs')
    @classmethod
    def word_keys_are_words(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key in v:
            if not _WORD_KEY.match(key):
                raise ValueError(f"Ключ word_repairs должен быть одним словом: '{key}'")
        return v

    @model_validator(mode='after')
    def tables_idempotent(self) -> "LocaleNormalizationConfig":
        replacements = list(self.char_map.values()) + list(self.word_repairs.values())

        for value in replacements:
            if value and unicodedata.normalize("NFC", value) != value:
                raise ValueError(f"Замена не в форме NFC: '{value}'")
            if value and unicodedata.combining(value[0]):
                raise ValueError(f"Замена начинается с комбинируемого символа: '{value}'")

        for key in self.char_map:
            for value in replacements:
                if key in value:
                    raise ValueError(
                        f"Замена '{value}' содержит ключ char_map '{key}': "
                        f"повторная нормализация изменит текст"
                    )

        for key in self.word_repairs:
            for value in self.word_repairs.values():
                if key in value:
                    raise ValueError(
                        f"Замена '{value}' содержит ключ word_repairs '{key}': "
                        f"повторная нормализация изменит текст"
                    )
        return self


# ============================================================================
# ERRORS & DIAGNOSTICS
# ============================================================================

class ContractValidationError(Exception):
    """Exception для нарушения контрактов (используется вместо Pydantic ValidationError)."""

    def __init__(self, stage_name: str, contract_name: str, errors: Union[List[Dict[str, Any]], List[Any]]) -> None:
        self.stage_name = stage_name
        self.contract_name = contract_name
        self.errors = errors

        error_messages = []
        for err in errors:
            if isinstance(err, dict):
                loc = err.get('loc', [])
                location = ".".join(str(part) for part in loc) if loc else 'unknown'
                err_type = err.get('type', 'unknown')
                msg = err.get('msg', 'unknown error')
                error_messages.append(f"  {location} ({err_type}): {msg}")
            else:
                error_messages.append(f"  {str(err)}")

        message = (
            f"Contract violation in {stage_name} ({contract_name}):\n"
            + "\n".join(error_messages)
        )
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, stage_name: str, contract_name: str, error: ValidationError) -> "ContractValidationError":
        return cls(stage_name, contract_name, error.errors())
