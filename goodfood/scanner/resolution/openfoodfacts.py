"""Open Food Facts lookups for codes missing from the catalog."""

from __future__ import annotations

import logging
import math
import re
from typing import Any

import httpx

from ..errors import ServiceError
from ..models import UNKNOWN_PRODUCT_NAME, Provenance, ResolvedProduct

logger = logging.getLogger(__name__)

BASE_URL = "https://world.openfoodfacts.org/api/v2/product"

_SERVING_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(g|ml|ก\.?|มล\.?)?", re.IGNORECASE)
_UNIT_ALIASES = {"ก": "g", "มล": "ml"}


def parse_serving_size(serving_size: str | None) -> tuple[float, str]:
    """Parse a label such as "30 g" or "250ml" into (size, unit).

    Defaults to 100 g when the label is missing or unreadable.
    """
    if not serving_size:
        return 100.0, "g"
    match = _SERVING_RE.search(serving_size)
    if not match:
        return 100.0, "g"
    unit = (match.group(2) or "g").lower().replace(".", "")
    return float(match.group(1)), _UNIT_ALIASES.get(unit, unit)


def map_product(data: dict[str, Any], code: str) -> ResolvedProduct | None:
    """Map an Open Food Facts product to per-serving nutrition.

    Per-serving nutriments are preferred; otherwise per-100 g values are
    scaled by the serving size. Sodium is converted from g to mg.

    Returns:
        None when the entry has neither a name nor any macro data.
    """
    nutriments = data.get("nutriments") or {}
    size, unit = parse_serving_size(data.get("serving_size"))
    per_serving = nutriments.get("energy-kcal_serving") is not None

    def value(key: str) -> float:
        if per_serving:
            raw = nutriments.get(f"{key}_serving")
            factor = 1.0
        else:
            raw = nutriments.get(f"{key}_100g")
            factor = size / 100
        try:
            amount = float(raw or 0) * factor
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, amount) if math.isfinite(amount) else 0.0

    name = data.get("product_name") or ""
    calories = value("energy-kcal")
    protein = value("proteins")
    carbs = value("carbohydrates")
    if not name and calories <= 0 and protein <= 0 and carbs <= 0:
        return None

    return ResolvedProduct(
        code=code,
        name=name or UNKNOWN_PRODUCT_NAME,
        brand=data.get("brands") or None,
        image_url=data.get("image_url") or None,
        serving_size=size,
        serving_unit=unit,
        calories=calories,
        protein=protein,
        carbs=carbs,
        fat=value("fat"),
        sodium=value("sodium") * 1000,
        sugar=value("sugars"),
        fiber=value("fiber"),
        provenance=Provenance.PUBLIC_DATABASE,
    )


class OpenFoodFactsClient:
    """Fetches products from the public Open Food Facts database."""

    def __init__(
        self,
        base_url: str = BASE_URL,
        user_agent: str = "GoodFood Menu App/1.0",
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"User-Agent": user_agent}
        self._timeout = timeout
        self._client = client

    async def fetch(self, code: str) -> ResolvedProduct | None:
        """Return the product for ``code``, or None if it is unknown.

        Raises:
            ServiceError: Open Food Facts answered with a server error.
            httpx.HTTPError: network failure.
        """
        url = f"{self._base_url}/{code}.json"
        if self._client is not None:
            resp = await self._client.get(url, headers=self._headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=self._headers)

        if resp.status_code == 404:
            return None
        if resp.status_code >= 500:
            raise ServiceError(f"Open Food Facts error {resp.status_code}", resp.status_code)
        if resp.status_code >= 400:
            return None

        payload = resp.json()
        if payload.get("status") != 1 or not payload.get("product"):
            return None
        product = map_product(payload["product"], code)
        if product is None:
            logger.info("Open Food Facts has %s but no usable data", code)
        return product
