"""Product catalog keyed by barcode."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from ..models import Provenance, ResolvedProduct, provenance_to_wire
from .schema import ensure_schema


class CatalogDB:
    """Manages the barcode_product table."""

    def __init__(self, db_path: str | Path = "~/.config/goodfood/scanner.db") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = ensure_schema(self._db_path)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def get(self, code: str) -> ResolvedProduct | None:
        """Look up a catalog product by barcode.

        Returns:
            The product with provenance ``catalog``, or None if unknown.
        """
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM barcode_product WHERE barcode = ?",
            (code,),
        ).fetchone()
        return _row_to_product(row) if row else None

    def get_row(self, code: str) -> dict | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM barcode_product WHERE barcode = ?",
            (code,),
        ).fetchone()
        return dict(row) if row else None

    def increment_scan(self, code: str) -> None:
        conn = self._get_conn()
        conn.execute(
            "UPDATE barcode_product SET scan_count = scan_count + 1 WHERE barcode = ?",
            (code,),
        )
        conn.commit()

    def upsert(self, product: ResolvedProduct, *, created_by: str | None = None) -> str:
        """Insert a new product or update the existing row for its barcode.

        Returns:
            "created" or "updated".
        """
        if not product.code:
            raise ValueError("product has no barcode")
        conn = self._get_conn()
        exists = conn.execute(
            "SELECT 1 FROM barcode_product WHERE barcode = ?", (product.code,)
        ).fetchone()
        source = provenance_to_wire(product.provenance)
        if exists:
            conn.execute(
                """UPDATE barcode_product
                   SET name = ?, brand = ?, image_url = ?,
                       serving_size = COALESCE(?, serving_size),
                       serving_unit = COALESCE(?, serving_unit),
                       calories = ?, protein = ?, carbs = ?, fat = ?,
                       sodium = ?, sugar = ?, fiber = ?, source = ?,
                       scan_count = scan_count + 1,
                       updated_at = datetime('now')
                   WHERE barcode = ?""",
                (
                    product.name,
                    product.brand,
                    product.image_url,
                    product.serving_size,
                    product.serving_unit,
                    product.calories,
                    product.protein,
                    product.carbs,
                    product.fat,
                    product.sodium,
                    product.sugar,
                    product.fiber,
                    source,
                    product.code,
                ),
            )
            action = "updated"
        else:
            conn.execute(
                """INSERT INTO barcode_product
                   (barcode, name, brand, image_url, serving_size, serving_unit,
                    calories, protein, carbs, fat, sodium, sugar, fiber,
                    source, created_by)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    product.code,
                    product.name,
                    product.brand,
                    product.image_url,
                    product.serving_size or 100,
                    product.serving_unit or "g",
                    product.calories,
                    product.protein,
                    product.carbs,
                    product.fat,
                    product.sodium,
                    product.sugar,
                    product.fiber,
                    source,
                    created_by,
                ),
            )
            action = "created"
        conn.commit()
        return action

    def get_all(self) -> list[ResolvedProduct]:
        """Return every catalog product, most scanned first."""
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM barcode_product ORDER BY scan_count DESC, barcode"
        ).fetchall()
        return [_row_to_product(r) for r in rows]


def _row_to_product(row: sqlite3.Row) -> ResolvedProduct:
    return ResolvedProduct(
        code=row["barcode"],
        name=row["name"],
        brand=row["brand"],
        image_url=row["image_url"],
        serving_size=row["serving_size"],
        serving_unit=row["serving_unit"],
        calories=row["calories"],
        protein=row["protein"],
        carbs=row["carbs"],
        fat=row["fat"],
        sodium=row["sodium"],
        sugar=row["sugar"],
        fiber=row["fiber"],
        provenance=Provenance.CATALOG,
    )
