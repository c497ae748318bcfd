"""Product-data service reached over the GoodFood HTTP API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import ServiceError
from ..models import (
    LimitReached,
    LookupHit,
    LookupMiss,
    LookupOutcome,
    ResolvedProduct,
    provenance_from_wire,
)
from . import ProductService

logger = logging.getLogger(__name__)


def parse_limit_reached(payload: dict[str, Any], kind: str) -> LimitReached | None:
    if not payload.get("limitReached"):
        return None
    return LimitReached(
        limit=int(payload.get("limit") or payload.get("limitCount") or 0),
        used=int(payload.get("used") or payload.get("usedCount") or 0),
        kind=kind,
    )


def read_json(resp: httpx.Response) -> dict[str, Any]:
    try:
        payload = resp.json()
    except ValueError:
        raise ServiceError(
            f"invalid JSON from {resp.request.url}", resp.status_code
        ) from None
    if not isinstance(payload, dict):
        raise ServiceError(f"unexpected payload from {resp.request.url}", resp.status_code)
    return payload


class HttpProductService(ProductService):
    """Calls ``GET/POST {base_url}/api/barcode/{code}``."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def lookup(self, code: str, user_id: str | None = None) -> LookupOutcome:
        params = {"userId": user_id} if user_id else None
        resp = await self._client.get(
            f"{self._base_url}/api/barcode/{code}", params=params
        )
        payload = read_json(resp)

        limit = parse_limit_reached(payload, "lookup")
        if limit is not None:
            return limit
        if resp.status_code >= 500:
            raise ServiceError(
                payload.get("error") or f"lookup failed with {resp.status_code}",
                resp.status_code,
            )

        if payload.get("success") and payload.get("data"):
            provenance = provenance_from_wire(payload.get("source"))
            product = ResolvedProduct.from_dict(
                payload["data"], code=code, provenance=provenance
            )
            return LookupHit(product=product)

        return LookupMiss(
            reason="not_found",
            message=payload.get("message") or payload.get("error") or "",
        )

    async def persist(self, product: ResolvedProduct, user_id: str | None = None) -> None:
        body = product.to_dict()
        if user_id:
            body["memberId"] = user_id
        resp = await self._client.post(
            f"{self._base_url}/api/barcode/{product.code}", json=body
        )
        if resp.status_code >= 400:
            payload = read_json(resp)
            raise ServiceError(
                payload.get("error") or f"save failed with {resp.status_code}",
                resp.status_code,
            )
        logger.debug("persisted %s: %s", product.code, read_json(resp).get("action"))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
