"""Product-code resolution: service boundary, client, and factory."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import httpx

from ..errors import ServiceError
from ..models import LimitReached, LookupHit, LookupMiss, LookupOutcome, ResolvedProduct

if TYPE_CHECKING:
    from ..config import ScannerConfig

logger = logging.getLogger(__name__)


class ProductService(ABC):
    """Remote product-data service.

    The service is authoritative for whether a code is in the catalog, in a
    public database, or unknown.
    """

    @abstractmethod
    async def lookup(self, code: str, user_id: str | None = None) -> LookupOutcome:
        """Resolve ``code`` to nutrition data.

        Raises:
            ServiceError, httpx.HTTPError: the service could not be reached or
                answered with an error.
        """
        ...

    @abstractmethod
    async def persist(self, product: ResolvedProduct, user_id: str | None = None) -> None:
        """Write ``product`` to the catalog keyed by its code."""
        ...

    async def aclose(self) -> None:
        """Release any held connections."""


class CodeResolutionClient:
    """Single-attempt lookups that never raise.

    Service and network failures are reported as a miss with
    ``reason="error"`` so the caller can route to the label-photo fallback.
    """

    def __init__(self, service: ProductService) -> None:
        self._service = service

    @property
    def service(self) -> ProductService:
        return self._service

    async def resolve(self, code: str, user_id: str | None = None) -> LookupOutcome:
        try:
            outcome = await self._service.lookup(code, user_id)
        except (httpx.HTTPError, ServiceError, OSError, ValueError) as e:
            logger.warning("lookup for %s failed: %s", code, e)
            return LookupMiss(reason="error", message=str(e))

        match outcome:
            case LookupHit(product=product):
                logger.info("lookup hit for %s (%s)", code, product.provenance.value)
            case LimitReached(limit=limit, used=used):
                logger.info("lookup limit reached for %s: %d/%d", user_id, used, limit)
            case LookupMiss():
                logger.info("lookup miss for %s", code)
        return outcome

    async def persist(self, product: ResolvedProduct, user_id: str | None = None) -> bool:
        """Write ``product`` through to the catalog; failures are logged, not raised."""
        try:
            await self._service.persist(product, user_id)
        except (httpx.HTTPError, ServiceError, OSError, ValueError):
            logger.exception("failed to save %s to the catalog", product.code)
            return False
        logger.info("saved %s to the catalog (%s)", product.code, product.provenance.value)
        return True


def create_product_service(config: ScannerConfig) -> ProductService:
    """Create a product service based on configuration."""
    backend_name = config.service.backend

    match backend_name:
        case "http":
            from .http import HttpProductService

            return HttpProductService(
                base_url=config.service.base_url,
                timeout=config.service.timeout,
            )
        case "local":
            from ..db import CatalogDB, UsageQuota
            from .local import LocalProductService
            from .openfoodfacts import OpenFoodFactsClient

            return LocalProductService(
                catalog=CatalogDB(config.database.path),
                openfoodfacts=OpenFoodFactsClient(
                    base_url=config.openfoodfacts.base_url,
                    user_agent=config.openfoodfacts.user_agent,
                    timeout=config.openfoodfacts.timeout,
                ),
                quota=UsageQuota(
                    config.database.path,
                    limits={
                        "lookup": config.quota.lookup_limit,
                        "analysis": config.quota.analysis_limit,
                    },
                    utc_offset_hours=config.quota.utc_offset_hours,
                ),
            )
        case _:
            raise ValueError(
                f"unknown product service backend: {backend_name!r} "
                f"(choose http or local)"
            )


__all__ = [
    "ProductService",
    "CodeResolutionClient",
    "create_product_service",
]
