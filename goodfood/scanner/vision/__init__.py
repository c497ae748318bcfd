"""Label-photo analysis: backend base class, response parsing, and factory."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ..models import (
    AnalysisFailed,
    AnalysisOutcome,
    AnalysisSuccess,
    CapturedImage,
    LimitReached,
    Provenance,
    ResolvedProduct,
)

if TYPE_CHECKING:
    from ..config import ScannerConfig
    from ..db import UsageQuota

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 70

PROMPT = """\
You are a nutrition expert. The image is a photo of a product's nutrition
facts label. Read the values per serving from the label and reply with a
single JSON object only, no other text:

{
  "name": "product name as printed (Thai or English)",
  "brand": "brand, if visible",
  "servingSize": serving size as a number,
  "servingUnit": "unit such as g, ml, piece",
  "calories": kcal per serving (number),
  "protein": protein in grams (number),
  "carbs": carbohydrate in grams (number),
  "fat": fat in grams (number),
  "sodium": sodium in milligrams (number),
  "sugar": sugar in grams (number),
  "fiber": dietary fiber in grams (number, or null if not listed),
  "confidence": how reliable the reading is, 0-100 (number)
}

Use 0 or null for values you cannot see. Give a low confidence when the
photo is blurry or hard to read.
"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def build_prompt(code: str | None = None) -> str:
    if code:
        return f"{PROMPT}\nBarcode: {code}\n"
    return PROMPT


def parse_label_response(text: str, code: str | None = None) -> ResolvedProduct:
    """Parse the JSON object from a model response into an ai-estimate product.

    Raises:
        ValueError: no JSON object could be found or decoded.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)

    match = _JSON_OBJECT.search(cleaned)
    if not match:
        raise ValueError("no JSON object in analysis response")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("analysis response is not a JSON object")
    return ResolvedProduct.from_dict(
        data, code=code or "", provenance=Provenance.AI_ESTIMATE
    )


def is_low_confidence(product: ResolvedProduct, threshold: float = LOW_CONFIDENCE_THRESHOLD) -> bool:
    return (
        product.provenance is Provenance.AI_ESTIMATE
        and product.confidence is not None
        and product.confidence < threshold
    )


class LabelAnalyzer(ABC):
    """Abstract base for nutrition estimation from a label photo."""

    @abstractmethod
    async def analyze(
        self,
        image: CapturedImage,
        code: str | None = None,
        user_id: str | None = None,
    ) -> AnalysisSuccess | LimitReached:
        """Estimate per-serving nutrition from ``image``.

        Raises:
            Exception: the recognition service failed; callers translate it.
        """
        ...


class MeteredAnalyzer(LabelAnalyzer):
    """Applies the daily analysis quota to a backend that has none of its own."""

    def __init__(self, inner: LabelAnalyzer, quota: UsageQuota) -> None:
        self._inner = inner
        self._quota = quota

    async def analyze(
        self,
        image: CapturedImage,
        code: str | None = None,
        user_id: str | None = None,
    ) -> AnalysisSuccess | LimitReached:
        from ..db.usage import ANALYSIS

        status = self._quota.check(user_id, ANALYSIS)
        if not status.allowed:
            return LimitReached(limit=status.limit, used=status.used, kind=ANALYSIS)
        result = await self._inner.analyze(image, code, user_id)
        if isinstance(result, AnalysisSuccess):
            self._quota.record(user_id, ANALYSIS)
        return result


class LabelAnalysisClient:
    """Runs an analysis and translates every failure into ``AnalysisFailed``."""

    def __init__(self, analyzer: LabelAnalyzer) -> None:
        self._analyzer = analyzer

    async def analyze(
        self,
        image: CapturedImage,
        code: str | None = None,
        user_id: str | None = None,
    ) -> AnalysisOutcome:
        try:
            result = await self._analyzer.analyze(image, code, user_id)
        except Exception as e:
            logger.exception("label analysis failed")
            return AnalysisFailed(message=str(e) or type(e).__name__)

        if isinstance(result, AnalysisSuccess):
            logger.info(
                "analysis complete: %s (confidence %s%%)",
                result.product.name,
                result.product.confidence,
            )
        return result


def create_analyzer(config: ScannerConfig) -> LabelAnalyzer:
    """Create a label analyzer based on configuration."""
    backend_name = config.vision.backend

    match backend_name:
        case "http":
            from .http import HttpLabelAnalyzer

            return HttpLabelAnalyzer(
                base_url=config.service.base_url,
                timeout=config.service.timeout,
            )
        case "claude":
            from .claude import ClaudeLabelAnalyzer

            backend = ClaudeLabelAnalyzer(
                api_key=config.vision.claude.api_key,
                model=config.vision.claude.model,
            )
        case "gemini":
            from .gemini import GeminiLabelAnalyzer

            backend = GeminiLabelAnalyzer(
                api_key=config.vision.gemini.api_key,
                model=config.vision.gemini.model,
            )
        case _:
            raise ValueError(
                f"unknown vision backend: {backend_name!r} "
                f"(choose http, claude or gemini)"
            )

    from ..db import UsageQuota

    quota = UsageQuota(
        config.database.path,
        limits={
            "lookup": config.quota.lookup_limit,
            "analysis": config.quota.analysis_limit,
        },
        utc_offset_hours=config.quota.utc_offset_hours,
    )
    return MeteredAnalyzer(backend, quota)


__all__ = [
    "LOW_CONFIDENCE_THRESHOLD",
    "LabelAnalyzer",
    "LabelAnalysisClient",
    "MeteredAnalyzer",
    "create_analyzer",
    "is_low_confidence",
    "parse_label_response",
]
