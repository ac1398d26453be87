"""Адаптеры движков извлечения текста."""

from .base import BaseEngineAdapter
from .google_vision_adapter import GoogleVisionAdapter
from .azure_document_adapter import AzureDocumentAdapter
from .tesseract_adapter import TesseractAdapter

__all__ = [
    "BaseEngineAdapter",
    "GoogleVisionAdapter",
    "AzureDocumentAdapter",
    "TesseractAdapter",
]
