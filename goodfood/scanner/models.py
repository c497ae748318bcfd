"""Data types shared by the scanner pipeline."""

from __future__ import annotations

import base64
import dataclasses
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MIN_CODE_LENGTH = 8
UNKNOWN_PRODUCT_NAME = "Unknown product"


def normalize_code(raw: str | None) -> str | None:
    """Trim a decoded or typed code and return it if it is long enough.

    Returns:
        The trimmed code, or None when it has fewer than 8 characters.
    """
    if raw is None:
        return None
    code = raw.strip()
    if len(code) < MIN_CODE_LENGTH:
        return None
    return code


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (builtin round() is banker's)."""
    return int(math.floor(value + 0.5))


class Provenance(str, Enum):
    CATALOG = "catalog"
    PUBLIC_DATABASE = "public-database"
    AI_ESTIMATE = "ai-estimate"


# Source labels used by the product-data service on the wire
_WIRE_SOURCES: dict[str, Provenance] = {
    "database": Provenance.CATALOG,
    "catalog": Provenance.CATALOG,
    "manual": Provenance.CATALOG,
    "openfoodfacts": Provenance.PUBLIC_DATABASE,
    "public-database": Provenance.PUBLIC_DATABASE,
    "ai_analysis": Provenance.AI_ESTIMATE,
    "ai-estimate": Provenance.AI_ESTIMATE,
}

_PROVENANCE_TO_WIRE: dict[Provenance, str] = {
    Provenance.CATALOG: "database",
    Provenance.PUBLIC_DATABASE: "openfoodfacts",
    Provenance.AI_ESTIMATE: "ai_analysis",
}

_REQUIRED_NUTRIENTS = ("calories", "protein", "carbs", "fat")
_OPTIONAL_NUTRIENTS = ("sodium", "sugar", "fiber")


def provenance_to_wire(provenance: Provenance) -> str:
    return _PROVENANCE_TO_WIRE[provenance]


def provenance_from_wire(source: str | None) -> Provenance | None:
    if not source:
        return None
    return _WIRE_SOURCES.get(source)


def _number(value: Any, default: float | None = 0.0) -> float | None:
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _checked_amount(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number) or number < 0:
        raise ValueError(f"{name} must be a finite non-negative number, got {value!r}")
    return number


@dataclass
class ResolvedProduct:
    """Per-serving nutrition for one product code."""

    code: str
    name: str
    calories: float
    protein: float
    carbs: float
    fat: float
    provenance: Provenance
    brand: str | None = None
    image_url: str | None = None
    serving_size: float | None = None
    serving_unit: str | None = None
    sodium: float | None = None  # mg
    sugar: float | None = None
    fiber: float | None = None
    confidence: float | None = None  # 0-100, ai-estimate only

    def __post_init__(self) -> None:
        self.provenance = Provenance(self.provenance)
        for name in _REQUIRED_NUTRIENTS:
            if getattr(self, name) is None:
                raise ValueError(f"{name} is required")
            setattr(self, name, _checked_amount(name, getattr(self, name)))
        for name in _OPTIONAL_NUTRIENTS + ("serving_size",):
            if getattr(self, name) is not None:
                setattr(self, name, _checked_amount(name, getattr(self, name)))
        if self.provenance is Provenance.AI_ESTIMATE and self.confidence is None:
            raise ValueError("ai-estimate products must carry a confidence score")
        if self.confidence is not None and not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be within 0-100, got {self.confidence!r}")

    def copy(self, **changes: Any) -> ResolvedProduct:
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the product-data service's field names."""
        return {
            "barcode": self.code,
            "name": self.name,
            "brand": self.brand,
            "imageUrl": self.image_url,
            "servingSize": self.serving_size,
            "servingUnit": self.serving_unit,
            "calories": self.calories,
            "protein": self.protein,
            "carbs": self.carbs,
            "fat": self.fat,
            "sodium": self.sodium,
            "sugar": self.sugar,
            "fiber": self.fiber,
            "source": provenance_to_wire(self.provenance),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        code: str | None = None,
        provenance: Provenance | None = None,
    ) -> ResolvedProduct:
        """Build a product from a service payload.

        Missing required nutrients default to 0. ``provenance`` overrides the
        payload's ``source`` field.
        """
        prov = provenance or provenance_from_wire(data.get("source")) or Provenance.CATALOG
        confidence = _number(data.get("confidence"), None)
        if prov is Provenance.AI_ESTIMATE and confidence is None:
            confidence = 0.0
        if confidence is not None:
            confidence = min(100.0, max(0.0, confidence))
        return cls(
            code=code or str(data.get("barcode") or data.get("code") or ""),
            name=data.get("name") or UNKNOWN_PRODUCT_NAME,
            brand=data.get("brand") or None,
            image_url=data.get("imageUrl") or None,
            serving_size=_number(data.get("servingSize"), None),
            serving_unit=data.get("servingUnit") or None,
            calories=max(0.0, _number(data.get("calories"))),
            protein=max(0.0, _number(data.get("protein"))),
            carbs=max(0.0, _number(data.get("carbs"))),
            fat=max(0.0, _number(data.get("fat"))),
            sodium=_non_negative(_number(data.get("sodium"), None)),
            sugar=_non_negative(_number(data.get("sugar"), None)),
            fiber=_non_negative(_number(data.get("fiber"), None)),
            provenance=prov,
            confidence=confidence,
        )


def _non_negative(value: float | None) -> float | None:
    return None if value is None else max(0.0, value)


def default_estimate(code: str | None) -> ResolvedProduct:
    """Zero-valued ai-estimate used when label analysis fails."""
    return ResolvedProduct(
        code=code or "",
        name=UNKNOWN_PRODUCT_NAME,
        calories=0,
        protein=0,
        carbs=0,
        fat=0,
        sodium=0,
        sugar=0,
        serving_size=100,
        serving_unit="g",
        provenance=Provenance.AI_ESTIMATE,
        confidence=0,
    )


@dataclass
class CapturedImage:
    """An encoded still frame owned by the session that captured it."""

    data: bytes
    mime_type: str = "image/jpeg"

    def to_base64(self) -> str:
        return base64.standard_b64encode(self.data).decode()

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


@dataclass
class MealEntry:
    """Finalized record handed to the meal log."""

    name: str
    calories: int
    protein: int
    carbs: int
    fat: int
    sodium: int
    sugar: int
    multiplier: float
    serving_weight: float | None = None
    source_note: str | None = None
    image_url: str | None = None
    provenance: Provenance | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "calories": self.calories,
            "protein": self.protein,
            "carbs": self.carbs,
            "fat": self.fat,
            "sodium": self.sodium,
            "sugar": self.sugar,
            "weight": self.serving_weight,
            "multiplier": self.multiplier,
            "ingredients": self.source_note,
            "imageUrl": self.image_url,
            "source": provenance_to_wire(self.provenance) if self.provenance else None,
        }


# Outcomes of remote calls


@dataclass
class LookupHit:
    product: ResolvedProduct


@dataclass
class LookupMiss:
    reason: str = "not_found"  # not_found | error
    message: str = ""


@dataclass
class LimitReached:
    limit: int
    used: int
    kind: str = "lookup"  # lookup | analysis


@dataclass
class AnalysisSuccess:
    product: ResolvedProduct


@dataclass
class AnalysisFailed:
    message: str


LookupOutcome = LookupHit | LookupMiss | LimitReached
AnalysisOutcome = AnalysisSuccess | LimitReached | AnalysisFailed


@dataclass
class QuotaStatus:
    allowed: bool
    limit: int
    used: int
    remaining: float = field(default=math.inf)
