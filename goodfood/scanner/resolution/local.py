"""In-process tiered lookup: catalog first, then Open Food Facts."""

from __future__ import annotations

import logging

import httpx

from ..db import CatalogDB, UsageQuota
from ..db.usage import LOOKUP
from ..errors import ServiceError
from ..models import LimitReached, LookupHit, LookupMiss, LookupOutcome, ResolvedProduct
from . import ProductService
from .openfoodfacts import OpenFoodFactsClient

logger = logging.getLogger(__name__)


class LocalProductService(ProductService):
    """Resolves codes against a local SQLite catalog and Open Food Facts.

    Quota is checked before each lookup and counted only after a hit.
    """

    def __init__(
        self,
        catalog: CatalogDB,
        openfoodfacts: OpenFoodFactsClient | None = None,
        quota: UsageQuota | None = None,
    ) -> None:
        self._catalog = catalog
        self._off = openfoodfacts
        self._quota = quota

    async def lookup(self, code: str, user_id: str | None = None) -> LookupOutcome:
        if self._quota is not None:
            status = self._quota.check(user_id, LOOKUP)
            if not status.allowed:
                return LimitReached(limit=status.limit, used=status.used, kind=LOOKUP)

        product = self._catalog.get(code)
        if product is not None:
            self._catalog.increment_scan(code)
            logger.info("found %s in catalog: %s", code, product.name)
            return self._hit(product, user_id)

        if self._off is not None:
            try:
                product = await self._off.fetch(code)
            except (httpx.HTTPError, ServiceError) as e:
                logger.warning("Open Food Facts lookup for %s failed: %s", code, e)
                product = None
            if product is not None:
                logger.info("found %s in Open Food Facts: %s", code, product.name)
                return self._hit(product, user_id)

        return LookupMiss(reason="not_found", message=f"no product data for {code}")

    async def persist(self, product: ResolvedProduct, user_id: str | None = None) -> None:
        action = self._catalog.upsert(product, created_by=user_id)
        logger.info("catalog %s: %s", action, product.code)

    async def aclose(self) -> None:
        self._catalog.close()
        if self._quota is not None:
            self._quota.close()

    def _hit(self, product: ResolvedProduct, user_id: str | None) -> LookupHit:
        if self._quota is not None:
            self._quota.record(user_id, LOOKUP)
        return LookupHit(product=product)
