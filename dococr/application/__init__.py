"""
Application слой dococr: оркестратор, обработчик документа, фабрика.
"""

from .orchestrator import ExtractionOrchestrator
from .document_processor import DocumentProcessor
from .factory import DocOcrComponentFactory, DocOcrService

__all__ = [
    "ExtractionOrchestrator",
    "DocumentProcessor",
    "DocOcrComponentFactory",
    "DocOcrService",
]
