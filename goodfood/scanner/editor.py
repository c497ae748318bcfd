"""Confirmation and serving-quantity editing before a meal is logged."""

from __future__ import annotations

import math
from typing import Any

from .models import MealEntry, Provenance, ResolvedProduct, round_half_up
from .vision import LOW_CONFIDENCE_THRESHOLD, is_low_confidence

MIN_MULTIPLIER = 0.5
MULTIPLIER_STEP = 0.5

TOTAL_FIELDS = ("calories", "protein", "carbs", "fat", "sodium", "sugar")
_EDITABLE_FIELDS = {
    "name", "brand", "serving_size", "serving_unit",
    "calories", "protein", "carbs", "fat", "sodium", "sugar", "fiber",
}


class ConfirmationEditor:
    """Holds a mutable working copy of a product and the serving multiplier.

    Totals are computed per field as ``round(base * multiplier)``, rounding
    halves up.
    """

    def __init__(
        self,
        product: ResolvedProduct,
        multiplier: float = 1.0,
        low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD,
    ) -> None:
        self._product = product.copy()
        self._multiplier = 1.0
        self._threshold = low_confidence_threshold
        self.set_multiplier(multiplier)

    @property
    def product(self) -> ResolvedProduct:
        return self._product

    @property
    def multiplier(self) -> float:
        return self._multiplier

    def update(self, **fields: Any) -> ResolvedProduct:
        """Apply user corrections to the working copy.

        Raises:
            ValueError: unknown field or a value that breaks the product invariants.
        """
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"fields cannot be edited: {', '.join(sorted(unknown))}")
        self._product = self._product.copy(**fields)
        return self._product

    def set_multiplier(self, value: float) -> float:
        """Set the serving multiplier, snapped to 0.5 steps with a floor of 0.5."""
        value = float(value)
        if math.isnan(value) or math.isinf(value):
            raise ValueError(f"invalid multiplier: {value!r}")
        snapped = round(value / MULTIPLIER_STEP) * MULTIPLIER_STEP
        self._multiplier = max(MIN_MULTIPLIER, snapped)
        return self._multiplier

    def increment(self) -> float:
        return self.set_multiplier(self._multiplier + MULTIPLIER_STEP)

    def decrement(self) -> float:
        return self.set_multiplier(self._multiplier - MULTIPLIER_STEP)

    def totals(self) -> dict[str, int]:
        p = self._product
        return {
            name: round_half_up((getattr(p, name) or 0) * self._multiplier)
            for name in TOTAL_FIELDS
        }

    @property
    def low_confidence(self) -> bool:
        return is_low_confidence(self._product, self._threshold)

    @property
    def warning(self) -> str | None:
        if not self.low_confidence:
            return None
        return (
            f"Confidence {self._product.confidence:g}%: "
            f"please review the values and correct them if needed."
        )

    @property
    def needs_persist(self) -> bool:
        return self._product.provenance is not Provenance.CATALOG and bool(self._product.code)

    def finalize(self, image_url: str | None = None) -> MealEntry:
        """Build the record handed to the meal log."""
        p = self._product
        totals = self.totals()
        return MealEntry(
            name=p.name,
            calories=totals["calories"],
            protein=totals["protein"],
            carbs=totals["carbs"],
            fat=totals["fat"],
            sodium=totals["sodium"],
            sugar=totals["sugar"],
            multiplier=self._multiplier,
            serving_weight=p.serving_size * self._multiplier if p.serving_size else None,
            source_note=f"Brand: {p.brand}" if p.brand else None,
            image_url=p.image_url or image_url,
            provenance=p.provenance,
        )
