from __future__ import annotations

import logging
from pathlib import Path
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException

from novapos.domain.errors import ValidationError
from novapos.domain.models import Product

log = logging.getLogger(__name__)

TEMPLATE_HEADERS = [
    "CODIGO",
    "NOMBRE",
    "CATEGORIA",
    "COSTO_COMPRA",
    "PRECIO_VENTA",
    "STOCK_ACTUAL",
    "STOCK_MINIMO",
    "ACTIVO",
]
TEMPLATE_EXAMPLE = ["P1001", "Ejemplo Producto", "General", 1.50, 2.00, 50, 5, "SI"]

DEFAULT_CATEGORY = "General"
DEFAULT_MIN_STOCK = 5


def _text(value) -> str:
    return str(value).strip() if value is not None else ""


def _number(value, default: float = 0.0) -> float:
    """Numeric cell or ``default`` when blank, zero or not a number."""
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    return n if n else default


def _active(value) -> bool:
    if value is True:
        return True
    return _text(value).upper() in ("SI", "YES")


def _row_to_product(row: tuple) -> Product | None:
    cells = list(row) + [None] * (len(TEMPLATE_HEADERS) - len(row))
    product_id = _text(cells[0])
    name = _text(cells[1])
    if not product_id or not name:
        return None
    return Product(
        id=product_id,
        name=name,
        category=_text(cells[2]) or DEFAULT_CATEGORY,
        cost_usd=_number(cells[3]),
        price_usd=_number(cells[4]),
        stock=int(_number(cells[5])),
        min_stock=int(_number(cells[6], DEFAULT_MIN_STOCK)),
        active=_active(cells[7]),
    )


class ExcelService:
    def __init__(self, store):
        self.store = store

    def import_products_excel(self, path: str | Path) -> tuple[int, int]:
        """
        Batch product upsert from the first sheet of a workbook.
        Columns are read by position, header row skipped:
          CODIGO | NOMBRE | CATEGORIA | COSTO_COMPRA | PRECIO_VENTA | STOCK_ACTUAL | STOCK_MINIMO | ACTIVO
        Returns (imported, rejected). Rows without code or name are rejected.
        """
        try:
            wb = load_workbook(path, read_only=True, data_only=True)
        except (InvalidFileException, BadZipFile, OSError, KeyError) as e:
            raise ValidationError(f"Could not read Excel file: {e}") from e

        try:
            ws = wb.worksheets[0]
            products: list[Product] = []
            rejected = 0
            for row_no, row in enumerate(ws.iter_rows(min_row=2, values_only=True), start=2):
                if all(v is None or _text(v) == "" for v in row):
                    continue
                product = _row_to_product(row)
                if product is None:
                    log.warning("Excel import rejected row %s: missing code or name", row_no)
                    rejected += 1
                    continue
                products.append(product)
        finally:
            wb.close()

        if not products and not rejected:
            raise ValidationError("The file is empty.")

        imported = self.store.import_products(products) if products else 0
        log.info("excel_import path=%s imported=%s rejected=%s", path, imported, rejected)
        return imported, rejected

    def write_import_template(self, path: str | Path) -> None:
        wb = Workbook()
        ws = wb.active
        ws.title = "Plantilla Inventario"
        ws.append(TEMPLATE_HEADERS)
        for c in ws[1]:
            c.font = Font(bold=True)
        ws.append(TEMPLATE_EXAMPLE)
        for col, width in zip("ABCDEFGH", (12, 30, 16, 14, 14, 14, 14, 10)):
            ws.column_dimensions[col].width = width
        ws.freeze_panes = "A2"
        wb.save(path)
