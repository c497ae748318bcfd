"""Label analysis through the GoodFood HTTP API."""

from __future__ import annotations

import httpx

from ..errors import ServiceError
from ..models import AnalysisSuccess, CapturedImage, LimitReached, Provenance, ResolvedProduct
from ..resolution.http import parse_limit_reached, read_json
from . import LabelAnalyzer


class HttpLabelAnalyzer(LabelAnalyzer):
    """Calls ``POST {base_url}/api/barcode/analyze``.

    The service meters usage itself and answers ``limitReached`` when the
    user's daily analysis quota is exhausted.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    async def analyze(
        self,
        image: CapturedImage,
        code: str | None = None,
        user_id: str | None = None,
    ) -> AnalysisSuccess | LimitReached:
        body = {"image": image.to_data_url(), "barcode": code}
        if user_id:
            body["userId"] = user_id

        url = f"{self._base_url}/api/barcode/analyze"
        if self._client is not None:
            resp = await self._client.post(url, json=body)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body)

        payload = read_json(resp)
        limit = parse_limit_reached(payload, "analysis")
        if limit is not None:
            return limit
        # The service still returns placeholder data alongside an error
        if payload.get("error") or resp.status_code >= 400:
            raise ServiceError(
                payload.get("error") or f"analysis failed with {resp.status_code}",
                resp.status_code,
            )
        if not payload.get("data"):
            raise ServiceError("analysis response has no data", resp.status_code)

        product = ResolvedProduct.from_dict(
            payload["data"], code=code or "", provenance=Provenance.AI_ESTIMATE
        )
        return AnalysisSuccess(product=product)
