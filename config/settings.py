"""
Настройки проекта dococr.

Все значения можно переопределить через переменные окружения.
Пороги confidence это калибровочные данные, а не инварианты:
меняйте их здесь, а не в коде оркестратора.
"""

import os
from pathlib import Path

# =============================================================================
# ПУТИ ПРОЕКТА
# =============================================================================
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DOCOCR_DATA_DIR", str(PROJECT_ROOT / "data")))
DOCUMENTS_DIR = DATA_DIR / "documents"
RESULTS_DIR = DATA_DIR / "results"

# Поддерживаемые форматы документов (для CLI при обходе директорий)
SUPPORTED_DOCUMENT_FORMATS = [".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tiff", ".tif", ".pdf"]

# =============================================================================
# ЛОГИРОВАНИЕ
# =============================================================================
LOG_LEVEL = os.getenv("DOCOCR_LOG_LEVEL", "INFO")

# =============================================================================
# ОЧЕРЕДЬ ОБРАБОТКИ
# =============================================================================
# Размер пула воркеров: единственная точка backpressure
QUEUE_WORKER_COUNT = int(os.getenv("DOCOCR_WORKER_COUNT", "5"))

# Максимум попыток на один документ
QUEUE_MAX_ATTEMPTS = int(os.getenv("DOCOCR_MAX_ATTEMPTS", "3"))

# Базовая задержка экспоненциального backoff: base * 2^attempt
QUEUE_RETRY_BASE_DELAY_SECONDS = float(os.getenv("DOCOCR_RETRY_BASE_DELAY", "5"))

# Максимальный размер batch-запроса
QUEUE_BATCH_LIMIT = 100

# Оценка времени обработки, пока нет статистики (мс)
QUEUE_DEFAULT_PROCESSING_TIME_MS = 30000

# Сколько последних обработок учитывать в скользящем среднем
QUEUE_ROLLING_WINDOW = 50

# Как долго воркер ждёт новую задачу перед повторной проверкой (сек)
QUEUE_POLL_INTERVAL_SECONDS = 1.0

# =============================================================================
# ОРКЕСТРАЦИЯ ДВИЖКОВ
# =============================================================================
# Порог принятия: при достижении каскад останавливается
ACCEPTANCE_THRESHOLD = float(os.getenv("DOCOCR_ACCEPTANCE_THRESHOLD", "0.6"))

# Порог ручной проверки (строже порога принятия)
REVIEW_THRESHOLD = float(os.getenv("DOCOCR_REVIEW_THRESHOLD", "0.75"))

# Порядок каскада по умолчанию
DEFAULT_ENGINE_ORDER = ["GOOGLE_VISION", "AZURE_COGNITIVE", "TESSERACT"]

# Таймаут вызова движка по умолчанию (сек)
ENGINE_TIMEOUT_SECONDS = float(os.getenv("DOCOCR_ENGINE_TIMEOUT", "60"))

# =============================================================================
# GOOGLE CLOUD VISION API
# =============================================================================
# Путь к JSON-файлу с ключом сервисного аккаунта
GOOGLE_APPLICATION_CREDENTIALS = os.getenv(
    "GOOGLE_APPLICATION_CREDENTIALS",
    str(PROJECT_ROOT / "config" / "google_credentials.json")
)

# =============================================================================
# AZURE AI DOCUMENT INTELLIGENCE
# =============================================================================
AZURE_DOCUMENT_ENDPOINT = os.getenv("AZURE_DOCUMENT_ENDPOINT", "")
AZURE_DOCUMENT_KEY = os.getenv("AZURE_DOCUMENT_KEY", "")
AZURE_DOCUMENT_MODEL = os.getenv("AZURE_DOCUMENT_MODEL", "prebuilt-layout")

# =============================================================================
# TESSERACT (локальный fallback)
# =============================================================================
TESSERACT_CMD = os.getenv("TESSERACT_CMD", "tesseract")

# =============================================================================
# КОНФИГУРАЦИЯ ДВИЖКОВ
# =============================================================================
# Валидируется через EngineSettings (dococr.domain.contracts).
# Файл DOCOCR_ENGINES_FILE (YAML) переопределяет эти значения.
ENGINES = {
    "GOOGLE_VISION": {
        "enabled": os.getenv("DOCOCR_GOOGLE_ENABLED", "1") == "1",
        "credentials_path": GOOGLE_APPLICATION_CREDENTIALS,
        "timeout_seconds": ENGINE_TIMEOUT_SECONDS,
        "supports_tables": False,
        "supports_forms": False,
    },
    "AZURE_COGNITIVE": {
        "enabled": bool(AZURE_DOCUMENT_ENDPOINT),
        "endpoint": AZURE_DOCUMENT_ENDPOINT,
        "api_key": AZURE_DOCUMENT_KEY,
        "model": AZURE_DOCUMENT_MODEL,
        "timeout_seconds": ENGINE_TIMEOUT_SECONDS,
        "supports_tables": True,
        "supports_forms": True,
    },
    "TESSERACT": {
        "enabled": True,
        "executable": TESSERACT_CMD,
        "timeout_seconds": ENGINE_TIMEOUT_SECONDS,
        "supports_tables": False,
        "supports_forms": False,
    },
}

ENGINES_FILE = os.getenv("DOCOCR_ENGINES_FILE", "")

# =============================================================================
# НАСТРОЙКИ ENHANCEMENT
# =============================================================================
# CLAHE (нормализация контраста по яркостному каналу)
CLAHE_CLIP_LIMIT = 2.0
CLAHE_TILE_SIZE = 8

# Non-local means (опциональный remove_noise)
DENOISE_STRENGTH = 10
DENOISE_TEMPLATE_SIZE = 7
DENOISE_SEARCH_SIZE = 21

# Deskew: углы меньше порога не исправляем (градусы)
DESKEW_MIN_ANGLE = 0.5
DESKEW_MAX_ANGLE = 45.0

# Масштаб метрик: std / NOISE_SCALE, laplacian var / SHARPNESS_SCALE
NOISE_SCALE = 100.0
SHARPNESS_SCALE = 1000.0

# Формат результата (без потерь)
ENHANCEMENT_OUTPUT_FORMAT = ".png"

# =============================================================================
# НАСТРОЙКИ НОРМАЛИЗАЦИИ
# =============================================================================
# Дефолтная локаль, если у документа нет языковых подсказок
DEFAULT_LOCALE = "pl_PL"

# Подсказка "auto" (или пустая): локаль определяется по распознанному тексту
AUTO_LOCALE = "auto"

# Директория с YAML-таблицами исправлений (None = встроенные)
LOCALES_DIR = os.getenv("DOCOCR_LOCALES_DIR") or None


# =============================================================================
# ПРОВЕРКА КОНФИГУРАЦИИ
# =============================================================================
def validate_config():
    """Проверяет корректность конфигурации."""
    errors = []

    if not 0.0 <= ACCEPTANCE_THRESHOLD <= 1.0:
        errors.append(f"ACCEPTANCE_THRESHOLD вне [0, 1]: {ACCEPTANCE_THRESHOLD}")

    if not 0.0 <= REVIEW_THRESHOLD <= 1.0:
        errors.append(f"REVIEW_THRESHOLD вне [0, 1]: {REVIEW_THRESHOLD}")

    if QUEUE_WORKER_COUNT < 1:
        errors.append(f"QUEUE_WORKER_COUNT должен быть >= 1: {QUEUE_WORKER_COUNT}")

    if QUEUE_MAX_ATTEMPTS < 1:
        errors.append(f"QUEUE_MAX_ATTEMPTS должен быть >= 1: {QUEUE_MAX_ATTEMPTS}")

    if not any(cfg.get("enabled") for cfg in ENGINES.values()):
        errors.append("Не включён ни один OCR движок (ENGINES)")

    unknown = [name for name in DEFAULT_ENGINE_ORDER if name not in ENGINES]
    if unknown:
        errors.append(f"DEFAULT_ENGINE_ORDER содержит неизвестные движки: {unknown}")

    if errors:
        raise ValueError("\n".join(errors))

    # Создаём директории если не существуют
    DOCUMENTS_DIR.mkdir(parents=True, exist_ok=True)
    RESULTS_DIR.mkdir(parents=True, exist_ok=True)

    return True
