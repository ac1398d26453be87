"""
Сборка таблиц и полей форм из ответа движка.

ЦКП: DetectedTable / FormField с координатами в долях страницы (0..1).

- Сетка таблицы row-major, размер = max(индекс + span) по ячейкам
  и заявленному провайдером размеру
- Пропущенные ячейки: пустой текст, confidence 0
- has_header_row только если провайдер пометил заголовок в строке 0
- Поле формы без значения сохраняется с value=None
"""

from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from contracts.extraction_dto import (
    BoundingBox, DetectedTable, FormField, RawFormField, RawPage, RawTable, TableCell,
)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize_box(box: Optional[BoundingBox], page_width: float, page_height: float) -> Optional[BoundingBox]:
    """Единицы провайдера -> доли страницы. None если размеры страницы неизвестны."""
    if box is None or page_width <= 0 or page_height <= 0:
        return None

    x = _clamp(box.x / page_width)
    y = _clamp(box.y / page_height)
    right = _clamp((box.x + box.width) / page_width)
    bottom = _clamp((box.y + box.height) / page_height)
    return BoundingBox(x=x, y=y, width=right - x, height=bottom - y)


class StructureReconciler:
    """Приводит таблицы и формы разных движков к общему виду."""

    def reconcile_tables(self, raw_tables: Iterable[RawTable], pages: Iterable[RawPage]) -> List[DetectedTable]:
        dims = self._page_dims(pages)
        tables = []
        for raw in raw_tables:
            table = self._reconcile_table(raw, dims)
            if table is not None:
                tables.append(table)
        return tables

    def reconcile_form_fields(self, raw_fields: Iterable[RawFormField], pages: Iterable[RawPage]) -> List[FormField]:
        dims = self._page_dims(pages)
        fields = []
        for raw in raw_fields:
            label = (raw.label or "").strip()
            if not label:
                logger.debug(f"[Structure] Поле без метки пропущено (страница {raw.page_number})")
                continue

            value = raw.value.strip() if raw.value is not None else None
            if value == "":
                value = None

            width, height = dims.get(raw.page_number, (0.0, 0.0))
            fields.append(FormField(
                page_number=raw.page_number,
                label=label,
                value=value,
                label_confidence=raw.label_confidence,
                value_confidence=raw.value_confidence if value is not None else None,
                label_box=normalize_box(raw.label_box, width, height),
                value_box=normalize_box(raw.value_box, width, height) if value is not None else None,
            ))
        return fields

    @staticmethod
    def _page_dims(pages: Iterable[RawPage]) -> Dict[int, Tuple[float, float]]:
        return {p.page_number: (p.width, p.height) for p in pages}

    def _reconcile_table(self, raw: RawTable, dims: Dict[int, Tuple[float, float]]) -> Optional[DetectedTable]:
        if not raw.cells:
            logger.debug(f"[Structure] Пустая таблица пропущена (страница {raw.page_number})")
            return None

        row_count = max([raw.row_count] + [c.row_index + max(c.row_span, 1) for c in raw.cells])
        column_count = max([raw.column_count] + [c.column_index + max(c.column_span, 1) for c in raw.cells])
        width, height = dims.get(raw.page_number, (0.0, 0.0))

        grid: List[List[Optional[TableCell]]] = [[None] * column_count for _ in range(row_count)]
        for cell in raw.cells:
            if grid[cell.row_index][cell.column_index] is not None:
                logger.warning(
                    f"[Structure] Дубликат ячейки ({cell.row_index}, {cell.column_index}) "
                    f"на странице {raw.page_number}, оставлена первая"
                )
                continue
            grid[cell.row_index][cell.column_index] = TableCell(
                row=cell.row_index,
                column=cell.column_index,
                text=cell.text.strip(),
                confidence=cell.confidence,
                bounding_box=normalize_box(cell.bounding_box, width, height),
                is_header=cell.is_header,
                row_span=max(cell.row_span, 1),
                column_span=max(cell.column_span, 1),
            )

        real_cells = [c for row in grid for c in row if c is not None]
        confidence = sum(c.confidence for c in real_cells) / len(real_cells)

        rows = tuple(
            tuple(
                cell if cell is not None else TableCell(row=r, column=c, text="", confidence=0.0)
                for c, cell in enumerate(row)
            )
            for r, row in enumerate(grid)
        )

        return DetectedTable(
            page_number=raw.page_number,
            row_count=row_count,
            column_count=column_count,
            rows=rows,
            has_header_row=any(cell.is_header for cell in rows[0]),
            confidence=confidence,
        )
