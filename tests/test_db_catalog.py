"""Tests for the barcode product catalog."""

import pytest

from goodfood.scanner.db import CatalogDB
from goodfood.scanner.models import Provenance, ResolvedProduct


@pytest.fixture
def catalog(tmp_path):
    db = CatalogDB(tmp_path / "test.db")
    yield db
    db.close()


def _product(code="8850999320011", **overrides):
    fields = dict(
        code=code,
        name="Green tea",
        brand="Oishi",
        calories=90,
        protein=0,
        carbs=22,
        fat=0,
        sugar=21,
        serving_size=380,
        serving_unit="ml",
        provenance=Provenance.PUBLIC_DATABASE,
    )
    fields.update(overrides)
    return ResolvedProduct(**fields)


def test_get_unknown(catalog):
    assert catalog.get("00000000") is None


def test_upsert_creates(catalog):
    assert catalog.upsert(_product(), created_by="member-1") == "created"

    product = catalog.get("8850999320011")
    assert product.name == "Green tea"
    assert product.brand == "Oishi"
    assert product.serving_size == 380
    assert product.provenance is Provenance.CATALOG

    row = catalog.get_row("8850999320011")
    assert row["source"] == "openfoodfacts"
    assert row["created_by"] == "member-1"
    assert row["scan_count"] == 0


def test_upsert_updates_existing(catalog):
    catalog.upsert(_product())
    action = catalog.upsert(_product(name="Green tea (less sugar)", sugar=10))

    assert action == "updated"
    product = catalog.get("8850999320011")
    assert product.name == "Green tea (less sugar)"
    assert product.sugar == 10
    assert catalog.get_row("8850999320011")["scan_count"] == 1


def test_upsert_defaults_serving(catalog):
    catalog.upsert(_product(serving_size=None, serving_unit=None))
    product = catalog.get("8850999320011")
    assert product.serving_size == 100
    assert product.serving_unit == "g"


def test_upsert_ai_estimate(catalog):
    catalog.upsert(_product(provenance=Provenance.AI_ESTIMATE, confidence=82))
    assert catalog.get_row("8850999320011")["source"] == "ai_analysis"


def test_upsert_without_code(catalog):
    with pytest.raises(ValueError, match="barcode"):
        catalog.upsert(_product(code=""))


def test_increment_scan(catalog):
    catalog.upsert(_product())
    catalog.increment_scan("8850999320011")
    catalog.increment_scan("8850999320011")
    assert catalog.get_row("8850999320011")["scan_count"] == 2


def test_get_all_most_scanned_first(catalog):
    catalog.upsert(_product(code="11111111", name="A"))
    catalog.upsert(_product(code="22222222", name="B"))
    catalog.increment_scan("22222222")

    names = [p.name for p in catalog.get_all()]
    assert names == ["B", "A"]
