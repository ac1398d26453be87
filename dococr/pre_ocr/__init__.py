"""Pre-OCR: enhancement изображений перед извлечением текста."""

from .pipeline import EnhancementPipeline
from .metrics import compute_quality_metrics

__all__ = [
    "EnhancementPipeline",
    "compute_quality_metrics",
]
