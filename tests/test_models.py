"""Tests for scanner data types."""

import math

import pytest

from goodfood.scanner.models import (
    UNKNOWN_PRODUCT_NAME,
    CapturedImage,
    MealEntry,
    Provenance,
    ResolvedProduct,
    default_estimate,
    normalize_code,
    provenance_from_wire,
    round_half_up,
)


def _product(**overrides):
    fields = dict(
        code="8850999320011",
        name="Soy milk",
        calories=120,
        protein=7,
        carbs=10,
        fat=5,
        provenance=Provenance.CATALOG,
    )
    fields.update(overrides)
    return ResolvedProduct(**fields)


class TestNormalizeCode:
    def test_accepts_eight_characters(self):
        assert normalize_code("12345678") == "12345678"

    def test_rejects_seven_characters(self):
        assert normalize_code("1234567") is None

    def test_trims_whitespace(self):
        assert normalize_code("  8850999320011\n") == "8850999320011"

    def test_whitespace_does_not_count(self):
        assert normalize_code("  1234567  ") is None

    def test_none(self):
        assert normalize_code(None) is None


class TestRoundHalfUp:
    def test_half_rounds_up(self):
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3

    def test_below_half(self):
        assert round_half_up(2.49) == 2


class TestResolvedProduct:
    def test_negative_nutrient_rejected(self):
        with pytest.raises(ValueError, match="calories"):
            _product(calories=-1)

    def test_missing_nutrient_rejected(self):
        with pytest.raises(ValueError, match="fat is required"):
            _product(fat=None)

    def test_negative_optional_rejected(self):
        with pytest.raises(ValueError, match="sodium"):
            _product(sodium=-5)

    @pytest.mark.parametrize("name", ["calories", "fat", "sodium", "fiber"])
    @pytest.mark.parametrize("value", [math.nan, math.inf])
    def test_non_finite_nutrient_rejected(self, name, value):
        with pytest.raises(ValueError, match=name):
            _product(**{name: value})

    def test_optional_nutrient_converted_to_float(self):
        product = _product(sugar="4")
        assert product.sugar == 4.0

    def test_ai_estimate_requires_confidence(self):
        with pytest.raises(ValueError, match="confidence"):
            _product(provenance=Provenance.AI_ESTIMATE)

    def test_confidence_range(self):
        with pytest.raises(ValueError, match="0-100"):
            _product(provenance=Provenance.AI_ESTIMATE, confidence=120)

    def test_copy_is_independent(self):
        original = _product()
        changed = original.copy(name="Oat milk")
        assert original.name == "Soy milk"
        assert changed.name == "Oat milk"

    def test_copy_revalidates(self):
        with pytest.raises(ValueError):
            _product().copy(protein=-2)

    def test_to_dict_uses_wire_names(self):
        data = _product(serving_size=200, serving_unit="ml").to_dict()
        assert data["barcode"] == "8850999320011"
        assert data["servingSize"] == 200
        assert data["servingUnit"] == "ml"
        assert data["source"] == "database"

    def test_from_dict_defaults_missing_nutrients(self):
        product = ResolvedProduct.from_dict({"name": "Crackers"}, code="12345678")
        assert product.calories == 0
        assert product.protein == 0
        assert product.code == "12345678"
        assert product.provenance is Provenance.CATALOG

    def test_from_dict_wire_source(self):
        product = ResolvedProduct.from_dict(
            {"barcode": "12345678", "name": "Chips", "source": "openfoodfacts"}
        )
        assert product.provenance is Provenance.PUBLIC_DATABASE
        assert product.code == "12345678"

    def test_from_dict_ai_without_confidence(self):
        product = ResolvedProduct.from_dict(
            {"name": "Snack"}, provenance=Provenance.AI_ESTIMATE
        )
        assert product.confidence == 0

    def test_from_dict_clamps_confidence(self):
        product = ResolvedProduct.from_dict(
            {"confidence": 150}, provenance=Provenance.AI_ESTIMATE
        )
        assert product.confidence == 100
        assert product.name == UNKNOWN_PRODUCT_NAME

    def test_from_dict_ignores_unparseable_numbers(self):
        product = ResolvedProduct.from_dict({"calories": "n/a", "sodium": "?"})
        assert product.calories == 0
        assert product.sodium is None

    def test_from_dict_ignores_non_finite_numbers(self):
        product = ResolvedProduct.from_dict({"calories": "Infinity", "sugar": "NaN"})
        assert product.calories == 0
        assert product.sugar is None


class TestProvenanceWire:
    @pytest.mark.parametrize(
        "source,expected",
        [
            ("database", Provenance.CATALOG),
            ("manual", Provenance.CATALOG),
            ("openfoodfacts", Provenance.PUBLIC_DATABASE),
            ("ai_analysis", Provenance.AI_ESTIMATE),
            ("something", None),
            (None, None),
        ],
    )
    def test_mapping(self, source, expected):
        assert provenance_from_wire(source) is expected


def test_default_estimate():
    product = default_estimate("12345678")
    assert product.provenance is Provenance.AI_ESTIMATE
    assert product.confidence == 0
    assert product.serving_size == 100
    assert product.serving_unit == "g"
    assert product.calories == 0


def test_captured_image_data_url():
    image = CapturedImage(data=b"\xff\xd8abc", mime_type="image/jpeg")
    assert image.to_data_url().startswith("data:image/jpeg;base64,")
    assert image.to_base64() == "/9hhYmM="


def test_meal_entry_to_dict():
    entry = MealEntry(
        name="Soy milk",
        calories=180,
        protein=11,
        carbs=15,
        fat=8,
        sodium=0,
        sugar=0,
        multiplier=1.5,
        serving_weight=300,
        source_note="Brand: Lactasoy",
    )
    data = entry.to_dict()
    assert data["weight"] == 300
    assert data["ingredients"] == "Brand: Lactasoy"
    assert data["imageUrl"] is None
