"""
dococr: мульти-движковое извлечение текста из документов.

Очередь с приоритетами и retry -> enhancement -> каскад движков
(Google Vision, Azure Document Intelligence, Tesseract) -> нормализация.

Точка сборки: dococr.application.factory.DocOcrComponentFactory
"""

__version__ = "0.1.0"
